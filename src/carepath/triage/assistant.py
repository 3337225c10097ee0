"""Per-room triage assistant.

Each chat room gets one TriageSession, a small state machine:

    INACTIVE --first student message--> TIMER_PENDING
    TIMER_PENDING --timer, no staff reply--> ACTIVE (introduction posted)
    any state --staff message--> SUSPENDED (terminal)

While ACTIVE, every student message is assessed by the classifier and
answered. The store's staff-reply stamp is re-read before every
assistant action, and the room service refuses assistant messages once
it is set, so a staff reply stops the assistant even across restarts or
after the staff message is deleted.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import logfire
from sqlalchemy.exc import SQLAlchemyError

from carepath.config import get_settings
from carepath.core.enums import AssistantState, UserRole
from carepath.core.errors import CarepathError, StaffNoteConflictError
from carepath.core.events import CriticalRiskDetected
from carepath.core.models import Unavailable
from carepath.triage.history import ConversationHistory

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from carepath.config import Settings
    from carepath.core.events import MessagePosted
    from carepath.core.models import TriageAssessment
    from carepath.core.types import ClassifierProtocol
    from carepath.infra.feed import ChangeFeed
    from carepath.infra.tables import ChatMessage
    from carepath.triage.notes import CaseNotes
    from carepath.triage.rooms import ChatRoomService

INTRO_MESSAGE = """Chào em! 👋 Hiện tại các thầy cô đang bận, nhưng mình là {name} - \
trợ lý tâm lý của trường để giúp em trong quá trình chờ thầy cô nha!

Mình sẵn sàng lắng nghe em chia sẻ. Em có thể kể cho mình nghe em đang cảm thấy \
như thế nào không? 💭"""

CRITICAL_REASSURANCE = (
    "⚠️ Mình hiểu bạn đang trải qua thời điểm rất khó khăn. Tư vấn viên sẽ liên hệ "
    "với bạn ngay lập tức. Trong lúc chờ đợi, hãy nhớ rằng bạn không đơn độc và việc "
    "tìm kiếm sự giúp đỡ là điều rất dũng cảm. ❤️"
)

FALLBACK_REPLY = (
    "Mình xin lỗi, hiện mình chưa thể trả lời em ngay được. Em cứ tiếp tục chia sẻ nhé, "
    "thầy cô sẽ sớm vào trò chuyện cùng em. 💙"
)


class TriageSession:
    """Assistant state for one chat room.

    Work that talks to the classifier or posts messages runs in tasks
    serialized by a per-session lock; handle() only updates state and
    schedules that work, so a staff reply is seen immediately even while
    a reply is being generated.
    """

    def __init__(
        self,
        room_id: str,
        student_id: str,
        rooms: ChatRoomService,
        notes: CaseNotes,
        gateway: ClassifierProtocol,
        feed: ChangeFeed,
        settings: Settings | None = None,
    ) -> None:
        self.room_id = room_id
        self.student_id = student_id
        self.rooms = rooms
        self.notes = notes
        self.gateway = gateway
        self.feed = feed
        self.settings = settings or get_settings()

        self.state = AssistantState.INACTIVE
        self.history = ConversationHistory(self.settings.history_max_turns)
        self.processed: set[str] = set()
        self._lock = asyncio.Lock()
        self._timer: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def intro_text(self) -> str:
        return INTRO_MESSAGE.format(name=self.settings.assistant_name)

    def hydrate(
        self,
        transcript: list[ChatMessage],
        staff_replied: bool,
        until: str | None = None,
    ) -> None:
        """Rebuild state and history from a stored transcript.

        Args:
            transcript: Room messages, oldest first
            staff_replied: Whether the room carries the staff-reply stamp
            until: Stop before this message id (it is handled separately)
        """
        if staff_replied:
            self.state = AssistantState.SUSPENDED

        for message in transcript:
            if message.id == until:
                break
            self.processed.add(message.id)
            if message.is_assistant:
                self.history.add_assistant(self.rooms.strip_assistant_prefix(message.content))
                if self.state == AssistantState.INACTIVE:
                    self.state = AssistantState.ACTIVE
            elif not message.is_system and message.sender_role == UserRole.STUDENT:
                self.history.add_student(message.content)

        logfire.debug(
            "Triage session hydrated",
            room_id=self.room_id,
            state=self.state.value,
            history_length=len(self.history),
        )

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=f"{name}:{self.room_id}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logfire.error(
                "Triage task failed",
                room_id=self.room_id,
                task=task.get_name(),
                error=str(task.exception()),
            )

    async def handle(self, event: MessagePosted) -> None:
        """Apply one posted message to the state machine.

        Messages already seen by this session are ignored.
        """
        if event.message_id in self.processed:
            return
        self.processed.add(event.message_id)

        if event.from_staff:
            self.suspend("staff replied")
            return
        if not event.from_student or self.state == AssistantState.SUSPENDED:
            return

        if self.state == AssistantState.INACTIVE:
            if await self.rooms.staff_has_replied(self.room_id):
                self.suspend("staff replied before first message")
                return
            self.history.add_student(event.content)
            self.state = AssistantState.TIMER_PENDING
            self._timer = self._spawn(self._introduce(), "triage-intro")
            logfire.info("Assistant timer started", room_id=self.room_id)
        elif self.state == AssistantState.TIMER_PENDING:
            # Context for the first reply; the introduction answers it
            self.history.add_student(event.content)
        else:
            self._spawn(self._respond(event.content), "triage-reply")

    def suspend(self, reason: str) -> None:
        """Stop the assistant for good and cancel its pending work."""
        if self.state == AssistantState.SUSPENDED:
            return
        self.state = AssistantState.SUSPENDED
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._timer = None
        logfire.info("Assistant suspended", room_id=self.room_id, reason=reason)

    async def _still_allowed(self, expected: AssistantState) -> bool:
        """Check-then-act guard run right before posting."""
        if self.state != expected:
            return False
        if await self.rooms.staff_has_replied(self.room_id):
            self.suspend("staff reply found in store")
            return False
        return True

    async def _post(self, text: str) -> ChatMessage | None:
        message = await self.rooms.post_assistant_message(self.room_id, text)
        if message is None:
            self.suspend("assistant message refused")
            return None
        self.processed.add(message.id)
        self.history.add_assistant(text)
        return message

    async def _introduce(self) -> None:
        await asyncio.sleep(self.settings.assistant_intro_delay)
        async with self._lock:
            if not await self._still_allowed(AssistantState.TIMER_PENDING):
                return
            try:
                message = await self._post(self.intro_text)
            except CarepathError as e:
                # Let the next student message start a fresh timer
                self.state = AssistantState.INACTIVE
                logfire.error("Failed to post introduction", room_id=self.room_id, error=e.message)
                return
            if message is not None:
                self.state = AssistantState.ACTIVE
                logfire.info("Assistant introduced", room_id=self.room_id)

    async def _respond(self, content: str) -> None:
        async with self._lock:
            if self.state != AssistantState.ACTIVE:
                return
            context = self.history.turns()
            self.history.add_student(content)

            with logfire.span("triage.respond", room_id=self.room_id):
                reply = await self.gateway.assess(context, content)
                if not await self._still_allowed(AssistantState.ACTIVE):
                    return

                if isinstance(reply, Unavailable):
                    logfire.warning(
                        "Triage classifier unavailable",
                        room_id=self.room_id,
                        reason=reply.reason,
                    )
                    await self._post(FALLBACK_REPLY)
                    return

                if await self._post(reply.response) is None:
                    return
                if reply.assessment is not None:
                    await self._record_assessment(reply.assessment)

    async def _record_assessment(self, assessment: TriageAssessment) -> None:
        """Write the assessment to the room and the case notes.

        Both writes are best-effort; failures are logged.
        """
        try:
            await self.rooms.update_assessment(self.room_id, assessment)
        except (CarepathError, SQLAlchemyError) as e:
            logfire.error("Failed to store room assessment", room_id=self.room_id, error=str(e))

        try:
            await self.notes.add_assessment(self.student_id, assessment)
        except StaffNoteConflictError:
            logfire.info("Staff own the notes, skipping AI assessment", student_id=self.student_id)
        except SQLAlchemyError as e:
            logfire.error(
                "Failed to save AI assessment to notes",
                student_id=self.student_id,
                error=str(e),
            )

        if assessment.is_critical:
            logfire.warning(
                "Critical suicide risk detected",
                room_id=self.room_id,
                urgency_level=int(assessment.urgency_level),
            )
            await self.feed.publish(
                CriticalRiskDetected(
                    source="triage",
                    room_id=self.room_id,
                    student_id=self.student_id,
                    suicide_risk=assessment.suicide_risk,
                    summary=assessment.summary,
                )
            )
            self._spawn(self._reassure(), "triage-reassure")

    async def _reassure(self) -> None:
        await asyncio.sleep(self.settings.critical_followup_delay)
        async with self._lock:
            if not await self._still_allowed(AssistantState.ACTIVE):
                return
            await self._post(CRITICAL_REASSURANCE)

    async def drain(self) -> None:
        """Wait until no assistant work is scheduled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel all pending work."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timer = None
