"""Triage manager.

Consumes chat events from the change feed and routes them to one
TriageSession per room. Sessions are created lazily on the first student
message a room sees after startup, hydrated from the stored transcript,
and cancelled when the room closes or the service shuts down.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import logfire

from carepath.config import get_settings
from carepath.core.enums import UserRole
from carepath.core.errors import (
    ClassifierUnavailableError,
    StaffNoteConflictError,
    ValidationError,
)
from carepath.core.events import MessagePosted, RoomClosed
from carepath.core.models import Unavailable
from carepath.triage.assistant import TriageSession
from carepath.triage.history import ConversationHistory

if TYPE_CHECKING:
    from carepath.config import Settings
    from carepath.core.events import BaseEvent
    from carepath.core.models import TriageAssessment
    from carepath.core.types import ClassifierProtocol
    from carepath.infra.feed import ChangeFeed, Subscription
    from carepath.triage.notes import CaseNotes
    from carepath.triage.rooms import ChatRoomService

TRIAGE_EVENT_TYPES = ["chat.message.posted", "chat.room.closed"]


class TriageManager:
    """Owns the per-room assistant sessions.

    Example:
        manager = TriageManager(rooms, notes, gateway, feed)
        task = asyncio.create_task(manager.run())
        ...
        task.cancel()
        await manager.shutdown()
    """

    def __init__(
        self,
        rooms: ChatRoomService,
        notes: CaseNotes,
        gateway: ClassifierProtocol,
        feed: ChangeFeed,
        settings: Settings | None = None,
    ) -> None:
        self.rooms = rooms
        self.notes = notes
        self.gateway = gateway
        self.feed = feed
        self.settings = settings or get_settings()
        self.sessions: dict[str, TriageSession] = {}

    async def session_for(self, room_id: str, until: str | None = None) -> TriageSession:
        """Get the room's session, hydrating a new one from the store.

        Args:
            room_id: Chat room id
            until: Message id that triggered creation; hydration stops
                before it so the session handles it as new

        Raises:
            RecordNotFoundError: If the room does not exist
        """
        session = self.sessions.get(room_id)
        if session is not None:
            return session

        room = await self.rooms.get_room(room_id)
        transcript = await self.rooms.transcript(room_id)
        session = TriageSession(
            room_id=room.id,
            student_id=room.student_id,
            rooms=self.rooms,
            notes=self.notes,
            gateway=self.gateway,
            feed=self.feed,
            settings=self.settings,
        )
        session.hydrate(
            transcript,
            staff_replied=room.counselor_first_reply_at is not None,
            until=until,
        )
        # A concurrent dispatch may have won while the store was read
        return self.sessions.setdefault(room_id, session)

    async def dispatch(self, event: BaseEvent) -> None:
        """Route one change event to the session it concerns."""
        if isinstance(event, RoomClosed):
            session = self.sessions.pop(event.room_id, None)
            if session is not None:
                await session.close()
                logfire.info("Triage session closed", room_id=event.room_id)
            return

        if not isinstance(event, MessagePosted):
            return

        session = self.sessions.get(event.room_id)
        if session is None:
            # Staff and system messages never start a session; the store
            # stamp covers staff replies for sessions created later
            if not event.from_student:
                return
            session = await self.session_for(event.room_id, until=event.message_id)
        await session.handle(event)

    def subscribe(self) -> Subscription:
        return self.feed.subscribe(TRIAGE_EVENT_TYPES)

    async def run(self, subscription: Subscription | None = None) -> None:
        """Consume chat events until the subscription closes.

        A failure while handling one event is logged and does not stop
        the loop.

        Args:
            subscription: Existing subscription (defaults to a new one)
        """
        subscription = subscription or self.subscribe()
        logfire.info("Triage manager starting", event_types=TRIAGE_EVENT_TYPES)
        try:
            async for event in subscription:
                try:
                    with logfire.span(
                        "triage.dispatch",
                        event_id=event.id,
                        event_type=getattr(event, "type", "unknown"),
                    ):
                        await self.dispatch(event)
                except Exception as e:
                    logfire.error(
                        "Triage dispatch failed",
                        event_id=event.id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
        finally:
            subscription.close()
            logfire.info("Triage manager stopped")

    async def drain(self) -> None:
        """Wait for every session's scheduled work to finish."""
        for session in list(self.sessions.values()):
            await session.drain()

    async def shutdown(self) -> None:
        """Cancel every session."""
        sessions = list(self.sessions.values())
        self.sessions.clear()
        for session in sessions:
            await session.close()
        logfire.info("Triage sessions shut down", count=len(sessions))

    async def refresh_assessment(self, room_id: str) -> TriageAssessment:
        """Re-assess a room's recent transcript on staff request.

        The result is stored on the room and, while the assistant still
        owns them, in the student's case notes.

        Raises:
            RecordNotFoundError: If the room does not exist
            ValidationError: If the student has not written anything yet
            ClassifierUnavailableError: If the classifier gave no assessment
        """
        room = await self.rooms.get_room(room_id)
        transcript = await self.rooms.transcript(room_id, limit=self.settings.history_max_turns)

        history = ConversationHistory(self.settings.history_max_turns)
        has_student_turn = False
        for message in transcript:
            if message.is_assistant:
                history.add_assistant(self.rooms.strip_assistant_prefix(message.content))
            elif not message.is_system and message.sender_role == UserRole.STUDENT:
                history.add_student(message.content)
                has_student_turn = True
        if not has_student_turn:
            msg = f"Chat room {room_id} has no student messages to assess"
            raise ValidationError(msg, details={"room_id": room_id})

        with logfire.span("triage.refresh_assessment", room_id=room_id):
            assessment = await self.gateway.summarize(history.turns())
            if isinstance(assessment, Unavailable):
                msg = "The assessment service is unavailable. Please try again later."
                raise ClassifierUnavailableError(
                    msg, details={"room_id": room_id, "reason": assessment.reason}
                )

            await self.rooms.update_assessment(room_id, assessment)
            try:
                await self.notes.add_assessment(room.student_id, assessment)
            except StaffNoteConflictError:
                logfire.info(
                    "Staff own the notes, skipping AI assessment", student_id=room.student_id
                )
            return assessment
