"""Submission moderation pipeline.

Wires the gateway, policy engine, ledger, queue and live stores together:

    submission -> classify -> decide -> publish | flag | enqueue | discard

Publication and enqueueing are the primary path and raise StoreError on
failure so the client can retry with its draft intact. Flag writes are
the audit path and never fail a submission.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import logfire
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from carepath.core.enums import ContentType, ModerationAction, UserRole
from carepath.core.errors import StoreError, ValidationError
from carepath.core.events import ContentPublished
from carepath.core.models import ModerationDecision  # noqa: TC001 - Pydantic needs this at runtime
from carepath.infra.tables import PublishedContent
from carepath.moderation.policy import decide

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

    from carepath.core.models import ContentSubmission, Verdict
    from carepath.core.types import ClassifierProtocol
    from carepath.infra.feed import ChangeFeed
    from carepath.moderation.ledger import FlagLedger
    from carepath.moderation.queue import PendingQueue
    from carepath.triage.rooms import ChatRoomService


class SubmissionOutcome(BaseModel):
    """What happened to a submission.

    Attributes:
        decision: Policy decision, including the user-facing message
        published_id: Published content or chat message id, if published
        pending_id: Pending record id, if held for review
        flag_id: Flag record id, if a flag was written
    """

    decision: ModerationDecision
    published_id: str | None = None
    pending_id: str | None = None
    flag_id: str | None = None

    @property
    def action(self) -> ModerationAction:
        return self.decision.action

    @property
    def message(self) -> str:
        return self.decision.message


class ModerationPipeline:
    """Runs one submission through classification and routing."""

    def __init__(
        self,
        gateway: ClassifierProtocol,
        ledger: FlagLedger,
        queue: PendingQueue,
        rooms: ChatRoomService,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
    ) -> None:
        self.gateway = gateway
        self.ledger = ledger
        self.queue = queue
        self.rooms = rooms
        self.session_factory = session_factory
        self.feed = feed

    async def submit(self, submission: ContentSubmission) -> SubmissionOutcome:
        """Moderate and route a submission.

        Submissions with an attachment go straight to the review queue
        without a classifier call.

        Args:
            submission: Content to moderate

        Returns:
            SubmissionOutcome describing the routing

        Raises:
            ValidationError: If a comment or message has no target
            RecordNotFoundError: If a message targets an unknown chat room
            StoreError: If publishing or enqueueing failed
        """
        if submission.content_type != ContentType.POST and not submission.target_id:
            msg = f"A {submission.content_type.value} needs a target_id"
            raise ValidationError(msg, details={"content_type": submission.content_type.value})

        with logfire.span(
            "pipeline.submit",
            user_id=submission.author_id,
            content_type=submission.content_type.value,
            has_attachment=submission.has_attachment,
        ):
            verdict: Verdict | None = None
            if not submission.has_attachment:
                verdict = await self.gateway.classify(submission.text)

            decision = decide(verdict, submission.content_type, submission.has_attachment)
            logfire.info(
                "Moderation decision",
                user_id=submission.author_id,
                action=decision.action.value,
            )
            outcome = SubmissionOutcome(decision=decision)

            if decision.action == ModerationAction.PENDING:
                record = await self.queue.enqueue(
                    submission, decision.pending_reason or "manual review"
                )
                outcome.pending_id = record.id
            elif decision.publishes:
                outcome.published_id = await self._publish(submission)

            if decision.severity is not None:
                # Rejected content was never stored; flag the draft
                content_id = (
                    outcome.published_id
                    if decision.action == ModerationAction.FLAG_MILD
                    else submission.content_id
                )
                flag = await self.ledger.record(
                    user_id=submission.author_id,
                    content_type=submission.content_type,
                    content_id=content_id,
                    text=submission.text,
                    severity=decision.severity,
                    reason=getattr(verdict, "reasoning", None),
                )
                outcome.flag_id = flag.id if flag is not None else None

            return outcome

    async def _publish(self, submission: ContentSubmission) -> str:
        if submission.content_type == ContentType.MESSAGE:
            assert submission.target_id is not None
            message = await self.rooms.post_message(
                submission.target_id,
                submission.author_id,
                submission.text,
                sender_role=UserRole.STUDENT,
            )
            return message.id

        content = PublishedContent(
            author_id=None if submission.is_anonymous else submission.author_id,
            content_type=submission.content_type,
            content=submission.text,
            topic=submission.topic,
            is_anonymous=submission.is_anonymous,
            parent_id=submission.target_id,
        )
        try:
            async with self.session_factory() as session:
                session.add(content)
                await session.commit()
        except SQLAlchemyError as e:
            logfire.error("Failed to publish content", user_id=submission.author_id, error=str(e))
            msg = "Could not publish your content. Please try again."
            raise StoreError(msg) from e

        await self.feed.publish(
            ContentPublished(
                source="pipeline",
                content_id=content.id,
                content_type=content.content_type,
            )
        )
        return content.id
