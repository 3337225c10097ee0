"""Chat room lifecycle.

One room per student. This service owns every write to chat rooms and
chat messages, and announces each one on the change feed. Two rules
live here because they must hold no matter who posts:

- The first staff (counselor or admin, non-system) message stamps
  counselor_first_reply_at. The stamp is never cleared, not even when
  that message is deleted, and assistant messages are refused once it
  is set.
- A student message in a room marked handled reopens the room: urgency
  goes back to the level recorded before it was handled (or NORMAL).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import logfire
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import col, select

from carepath.config import get_settings
from carepath.core.enums import UrgencyLevel, UserRole
from carepath.core.errors import RecordNotFoundError, StoreError, ValidationError
from carepath.core.events import MessageDeleted, MessagePosted, RoomClosed, RoomUpdated
from carepath.infra.tables import ChatMessage, ChatRoom, utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

    from carepath.config import Settings
    from carepath.core.models import TriageAssessment
    from carepath.infra.feed import ChangeFeed

FEEDBACK_PROMPT = """Nếu phiên tư vấn đã hoàn thành, hy vọng em có thể giúp chúng mình \
cải thiện dịch vụ bằng cách đánh giá phiên tư vấn
Mọi phản hồi của em đều rất quý giá với chúng mình! ❤️

[ Phản hồi ](/feedback)"""


class ChatRoomService:
    """Chat rooms, their messages and their triage state."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
        settings: Settings | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.feed = feed
        self.settings = settings or get_settings()

    @property
    def assistant_prefix(self) -> str:
        return f"🤖 **{self.settings.assistant_name}:** "

    async def _load(self, session: AsyncSession, room_id: str) -> ChatRoom:
        room = await session.get(ChatRoom, room_id)
        if room is None:
            msg = f"Chat room {room_id} not found"
            raise RecordNotFoundError(msg, details={"room_id": room_id})
        return room

    async def _room_updated(self, room: ChatRoom) -> None:
        await self.feed.publish(
            RoomUpdated(
                source="chat",
                room_id=room.id,
                urgency_level=UrgencyLevel(room.urgency_level),
                is_counseled=room.is_counseled,
            )
        )

    async def _message_posted(self, message: ChatMessage) -> None:
        await self.feed.publish(
            MessagePosted(
                source="chat",
                room_id=message.chat_room_id,
                message_id=message.id,
                sender_id=message.sender_id,
                sender_role=message.sender_role,
                content=message.content,
                image_url=message.image_url,
                is_system=message.is_system,
                is_assistant=message.is_assistant,
            )
        )

    async def open_room(self, student_id: str) -> ChatRoom:
        """Return the student's room, creating it on first use."""
        async with self.session_factory() as session:
            result = await session.exec(
                select(ChatRoom).where(col(ChatRoom.student_id) == student_id)
            )
            room = result.first()
            if room is not None:
                return room

            room = ChatRoom(student_id=student_id)
            session.add(room)
            try:
                await session.commit()
            except IntegrityError:
                # Another request created the room first
                await session.rollback()
                result = await session.exec(
                    select(ChatRoom).where(col(ChatRoom.student_id) == student_id)
                )
                return result.one()

        logfire.info("Chat room opened", room_id=room.id, student_id=student_id)
        await self._room_updated(room)
        return room

    async def get_room(self, room_id: str) -> ChatRoom:
        async with self.session_factory() as session:
            return await self._load(session, room_id)

    async def list_active(self) -> list[ChatRoom]:
        """Active rooms, most recent activity first."""
        async with self.session_factory() as session:
            result = await session.exec(
                select(ChatRoom)
                .where(col(ChatRoom.status) == "active")
                .order_by(
                    col(ChatRoom.last_message_at).desc().nulls_last(),
                    col(ChatRoom.created_at).desc(),
                )
            )
            return list(result.all())

    async def post_message(
        self,
        room_id: str,
        sender_id: str | None,
        content: str,
        sender_role: UserRole | None = None,
        is_system: bool = False,
    ) -> ChatMessage:
        """Insert a user or system message.

        Args:
            room_id: Target room
            sender_id: Author, None for system messages
            content: Message text
            sender_role: Author's role
            is_system: System notice rather than a person's message

        Returns:
            The stored message

        Raises:
            ValidationError: If the message is empty
            RecordNotFoundError: If the room does not exist
            StoreError: If the message could not be written
        """
        if not content or not content.strip():
            msg = "Message content cannot be empty"
            raise ValidationError(msg)

        with logfire.span("rooms.post_message", room_id=room_id, is_system=is_system):
            reopened = False
            try:
                async with self.session_factory() as session:
                    room = await self._load(session, room_id)
                    message = ChatMessage(
                        chat_room_id=room_id,
                        sender_id=sender_id,
                        sender_role=sender_role,
                        content=content,
                        is_system=is_system,
                    )
                    if message.from_staff and room.counselor_first_reply_at is None:
                        room.counselor_first_reply_at = message.created_at
                        logfire.info("First staff reply", room_id=room_id, staff_id=sender_id)
                    if (
                        not is_system
                        and sender_role == UserRole.STUDENT
                        and room.is_counseled
                    ):
                        room.mark_reopened()
                        reopened = True
                    room.last_message_at = message.created_at
                    session.add(message)
                    session.add(room)
                    await session.commit()
            except SQLAlchemyError as e:
                logfire.error("Failed to post message", room_id=room_id, error=str(e))
                msg = "Could not send the message. Please try again."
                raise StoreError(msg, details={"room_id": room_id}) from e

            await self._message_posted(message)
            if reopened:
                logfire.info("Chat room reopened by student", room_id=room_id)
                await self._room_updated(room)
            return message

    async def post_system_message(self, room_id: str, content: str) -> ChatMessage:
        return await self.post_message(room_id, None, content, is_system=True)

    async def post_assistant_message(self, room_id: str, content: str) -> ChatMessage | None:
        """Insert an assistant-authored message.

        The staff-reply stamp is checked in the same transaction as the
        insert.

        Returns:
            The stored message, or None if staff have already replied
        """
        with logfire.span("rooms.post_assistant_message", room_id=room_id):
            try:
                async with self.session_factory() as session:
                    room = await self._load(session, room_id)
                    if room.counselor_first_reply_at is not None:
                        logfire.info("Assistant message refused, staff replied", room_id=room_id)
                        return None
                    message = ChatMessage(
                        chat_room_id=room_id,
                        sender_id=None,
                        content=f"{self.assistant_prefix}{content}",
                        is_system=True,
                        is_assistant=True,
                    )
                    room.last_message_at = message.created_at
                    session.add(message)
                    session.add(room)
                    await session.commit()
            except SQLAlchemyError as e:
                logfire.error("Failed to post assistant message", room_id=room_id, error=str(e))
                msg = "Could not send the assistant message."
                raise StoreError(msg, details={"room_id": room_id}) from e

            await self._message_posted(message)
            return message

    def strip_assistant_prefix(self, content: str) -> str:
        return content.removeprefix(self.assistant_prefix)

    async def delete_message(self, room_id: str, message_id: str) -> None:
        """Delete a message. The staff-reply stamp is kept.

        Raises:
            RecordNotFoundError: If the message is not in the room
        """
        async with self.session_factory() as session:
            message = await session.get(ChatMessage, message_id)
            if message is None or message.chat_room_id != room_id:
                msg = f"Message {message_id} not found in room {room_id}"
                raise RecordNotFoundError(msg, details={"message_id": message_id})
            await session.delete(message)
            await session.commit()

        logfire.info("Chat message deleted", room_id=room_id, message_id=message_id)
        await self.feed.publish(
            MessageDeleted(source="chat", room_id=room_id, message_id=message_id)
        )

    async def transcript(self, room_id: str, limit: int | None = None) -> list[ChatMessage]:
        """Messages in a room, oldest first (the last `limit` if given)."""
        async with self.session_factory() as session:
            await self._load(session, room_id)
            query = select(ChatMessage).where(col(ChatMessage.chat_room_id) == room_id)
            if limit is None:
                result = await session.exec(query.order_by(col(ChatMessage.created_at)))
                return list(result.all())
            result = await session.exec(
                query.order_by(col(ChatMessage.created_at).desc()).limit(limit)
            )
            return list(reversed(result.all()))

    async def staff_has_replied(self, room_id: str) -> bool:
        """Whether any staff member has ever replied in the room."""
        room = await self.get_room(room_id)
        return room.counselor_first_reply_at is not None

    async def mark_handled(self, room_id: str, staff_id: str) -> ChatRoom:
        """Mark a room as handled and ask the student for feedback.

        The current urgency is kept as previous_urgency_level so a
        reopened room gets it back.
        """
        with logfire.span("rooms.mark_handled", room_id=room_id, staff_id=staff_id):
            async with self.session_factory() as session:
                room = await self._load(session, room_id)
                if room.urgency_level != UrgencyLevel.COMPLETED:
                    room.previous_urgency_level = room.urgency_level
                room.urgency_level = int(UrgencyLevel.COMPLETED)
                room.is_counseled = True
                room.counseled_at = utc_now()
                room.counseled_by = staff_id
                prompt = ChatMessage(
                    chat_room_id=room_id,
                    sender_id=None,
                    content=FEEDBACK_PROMPT,
                    is_system=True,
                )
                room.last_message_at = prompt.created_at
                session.add(room)
                session.add(prompt)
                await session.commit()

            logfire.info("Chat room marked handled", room_id=room_id)
            await self._room_updated(room)
            await self._message_posted(prompt)
            return room

    async def reopen(self, room_id: str) -> ChatRoom:
        """Clear the handled mark and restore the recorded urgency."""
        async with self.session_factory() as session:
            room = await self._load(session, room_id)
            if not room.is_counseled:
                return room
            room.mark_reopened()
            session.add(room)
            await session.commit()

        logfire.info("Chat room reopened", room_id=room_id)
        await self._room_updated(room)
        return room

    async def update_assessment(self, room_id: str, assessment: TriageAssessment) -> ChatRoom:
        """Store an assessment and its urgency on the room.

        While a room is marked handled the new urgency is recorded as the
        level to restore on reopening.
        """
        async with self.session_factory() as session:
            room = await self._load(session, room_id)
            if room.is_counseled:
                room.previous_urgency_level = int(assessment.urgency_level)
            else:
                room.urgency_level = int(assessment.urgency_level)
            room.ai_assessment = assessment.model_dump(mode="json", by_alias=True)
            room.ai_triage_complete = True
            session.add(room)
            await session.commit()

        logfire.info(
            "Chat room assessment updated",
            room_id=room_id,
            urgency_level=int(assessment.urgency_level),
            suicide_risk=assessment.suicide_risk.value,
        )
        await self._room_updated(room)
        return room

    async def close_room(self, room_id: str) -> None:
        """Delete a room and its transcript."""
        async with self.session_factory() as session:
            room = await self._load(session, room_id)
            await session.execute(  # pyright: ignore[reportDeprecated]
                delete(ChatMessage).where(col(ChatMessage.chat_room_id) == room_id)
            )
            await session.delete(room)
            await session.commit()

        logfire.info("Chat room closed", room_id=room_id)
        await self.feed.publish(RoomClosed(source="chat", room_id=room_id))
