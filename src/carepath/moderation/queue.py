"""Pending content queue.

Holds content that must not be published without a human decision:
submissions with an attachment and submissions the classifier could not
score. Staff approve (publish), reject (discard) or flag-and-reject.
Review decisions are status-guarded conditional updates, so a record
can only leave the pending state once.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import logfire
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select

from carepath.core.enums import ContentType, PendingStatus, UrgencyLevel, UserRole
from carepath.core.errors import (
    DuplicateResolutionError,
    RecordNotFoundError,
    StoreError,
    ValidationError,
)
from carepath.core.events import (
    ContentPublished,
    ContentQueued,
    ContentReviewed,
    MessagePosted,
    RoomUpdated,
)
from carepath.infra.tables import (
    ChatMessage,
    ChatRoom,
    PendingContentRecord,
    PublishedContent,
    utc_now,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

    from carepath.core.enums import FlagSeverity
    from carepath.core.models import ContentSubmission
    from carepath.infra.feed import ChangeFeed
    from carepath.moderation.ledger import FlagLedger


class PendingQueue:
    """Manual review queue for unclassified or attachment-bearing content."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
        ledger: FlagLedger,
    ) -> None:
        self.session_factory = session_factory
        self.feed = feed
        self.ledger = ledger

    async def enqueue(self, submission: ContentSubmission, reason: str) -> PendingContentRecord:
        """Hold a submission for review.

        Args:
            submission: The submitted content
            reason: Why the content needs a human decision

        Returns:
            The stored pending record

        Raises:
            StoreError: If the record could not be written
        """
        with logfire.span(
            "queue.enqueue",
            user_id=submission.author_id,
            content_type=submission.content_type.value,
        ):
            record = PendingContentRecord(
                user_id=submission.author_id,
                content_type=submission.content_type,
                content=submission.text,
                image_url=submission.image_url or None,
                pending_reason=reason,
                topic=submission.topic,
                is_anonymous=submission.is_anonymous,
                target_id=submission.target_id,
            )
            try:
                async with self.session_factory() as session:
                    session.add(record)
                    await session.commit()
            except SQLAlchemyError as e:
                logfire.error("Failed to queue content", user_id=submission.author_id, error=str(e))
                msg = "Could not save your submission for review. Please try again."
                raise StoreError(msg) from e

            logfire.info("Content queued for review", record_id=record.id, reason=reason)
            await self.feed.publish(
                ContentQueued(
                    source="queue",
                    record_id=record.id,
                    user_id=record.user_id,
                    content_type=record.content_type,
                )
            )
            return record

    async def get(self, record_id: str) -> PendingContentRecord:
        async with self.session_factory() as session:
            record = await session.get(PendingContentRecord, record_id)
        if record is None:
            msg = f"Pending record {record_id} not found"
            raise RecordNotFoundError(msg, details={"record_id": record_id})
        return record

    async def list_pending(self) -> list[PendingContentRecord]:
        """Records awaiting review, oldest first."""
        async with self.session_factory() as session:
            result = await session.exec(
                select(PendingContentRecord)
                .where(col(PendingContentRecord.status) == PendingStatus.PENDING)
                .order_by(col(PendingContentRecord.created_at))
            )
            return list(result.all())

    async def _transition(
        self,
        session: AsyncSession,
        record_id: str,
        status: PendingStatus,
        reviewer_id: str | None,
    ) -> PendingContentRecord:
        """Move a record out of pending inside the caller's transaction."""
        result = await session.execute(  # pyright: ignore[reportDeprecated]
            update(PendingContentRecord)
            .where(
                col(PendingContentRecord.id) == record_id,
                col(PendingContentRecord.status) == PendingStatus.PENDING,
            )
            .values(status=status, reviewed_at=utc_now(), reviewed_by=reviewer_id)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            existing = await session.get(PendingContentRecord, record_id)
            if existing is None:
                msg = f"Pending record {record_id} not found"
                raise RecordNotFoundError(msg, details={"record_id": record_id})
            msg = f"Pending record {record_id} was already {existing.status.value}"
            raise DuplicateResolutionError(
                msg, details={"record_id": record_id, "status": existing.status.value}
            )

        record = await session.get(PendingContentRecord, record_id)
        assert record is not None
        return record

    async def approve(
        self,
        record_id: str,
        topic: str | None = None,
        reviewer_id: str | None = None,
    ) -> str:
        """Approve a record and publish its content.

        Posts and comments are copied into the published content store;
        messages are inserted into their chat room with their attachment,
        reopening the room if it was marked handled. Anonymous content is
        published without its author. The status change and the copy
        commit together.

        Args:
            record_id: Pending record to approve
            topic: Topic override chosen by the reviewer
            reviewer_id: Staff member approving

        Returns:
            Id of the published content or chat message

        Raises:
            RecordNotFoundError: If the record does not exist
            DuplicateResolutionError: If the record was already reviewed
            StoreError: If publishing failed
        """
        with logfire.span("queue.approve", record_id=record_id):
            try:
                async with self.session_factory() as session:
                    record = await self._transition(
                        session, record_id, PendingStatus.APPROVED, reviewer_id
                    )
                    reopened: ChatRoom | None = None
                    if record.content_type == ContentType.MESSAGE:
                        published: PublishedContent | ChatMessage
                        published, reopened = await self._message_from(session, record)
                    else:
                        published = PublishedContent(
                            author_id=None if record.is_anonymous else record.user_id,
                            content_type=record.content_type,
                            content=record.content,
                            image_url=record.image_url,
                            topic=topic or record.topic,
                            is_anonymous=record.is_anonymous,
                            parent_id=record.target_id,
                            pending_id=record.id,
                        )
                    session.add(published)
                    await session.commit()
            except SQLAlchemyError as e:
                logfire.error(
                    "Failed to publish approved content", record_id=record_id, error=str(e)
                )
                msg = "Could not publish the approved content. Please try again."
                raise StoreError(msg, details={"record_id": record_id}) from e

            logfire.info("Pending content approved", record_id=record_id, published_id=published.id)
            await self.feed.publish(
                ContentReviewed(source="queue", record_id=record_id, status=PendingStatus.APPROVED)
            )
            if isinstance(published, ChatMessage):
                await self.feed.publish(
                    MessagePosted(
                        source="queue",
                        room_id=published.chat_room_id,
                        message_id=published.id,
                        sender_id=published.sender_id,
                        sender_role=published.sender_role,
                        content=published.content,
                        image_url=published.image_url,
                    )
                )
                if reopened is not None:
                    logfire.info("Chat room reopened by approved message", room_id=reopened.id)
                    await self.feed.publish(
                        RoomUpdated(
                            source="queue",
                            room_id=reopened.id,
                            urgency_level=UrgencyLevel(reopened.urgency_level),
                            is_counseled=reopened.is_counseled,
                        )
                    )
            else:
                await self.feed.publish(
                    ContentPublished(
                        source="queue",
                        content_id=published.id,
                        content_type=published.content_type,
                    )
                )
            return published.id

    async def _message_from(
        self, session: AsyncSession, record: PendingContentRecord
    ) -> tuple[ChatMessage, ChatRoom | None]:
        """Build the approved chat message; a handled room is reopened by it."""
        if record.target_id is None:
            msg = f"Pending message {record.id} has no chat room"
            raise ValidationError(msg, details={"record_id": record.id})
        room = await session.get(ChatRoom, record.target_id)
        if room is None:
            msg = f"Chat room {record.target_id} not found"
            raise RecordNotFoundError(msg, details={"room_id": record.target_id})

        reopened: ChatRoom | None = None
        message = ChatMessage(
            chat_room_id=room.id,
            sender_id=record.user_id,
            sender_role=UserRole.STUDENT,
            content=record.content,
            image_url=record.image_url,
        )
        if room.is_counseled:
            room.mark_reopened()
            reopened = room
        room.last_message_at = message.created_at
        session.add(room)
        return message, reopened

    async def reject(self, record_id: str, reviewer_id: str | None = None) -> PendingContentRecord:
        """Reject a record; its content is never published.

        Raises:
            RecordNotFoundError: If the record does not exist
            DuplicateResolutionError: If the record was already reviewed
        """
        with logfire.span("queue.reject", record_id=record_id):
            async with self.session_factory() as session:
                record = await self._transition(
                    session, record_id, PendingStatus.REJECTED, reviewer_id
                )
                await session.commit()

            logfire.info("Pending content rejected", record_id=record_id)
            await self.feed.publish(
                ContentReviewed(source="queue", record_id=record_id, status=PendingStatus.REJECTED)
            )
            return record

    async def flag_and_reject(
        self,
        record_id: str,
        severity: FlagSeverity,
        category: str,
        reviewer_id: str | None = None,
    ) -> PendingContentRecord:
        """Reject a record and flag its author.

        Used when a reviewer finds concerning content the classifier
        could not score. The category becomes the flag reason.

        Raises:
            RecordNotFoundError: If the record does not exist
            DuplicateResolutionError: If the record was already reviewed
        """
        record = await self.reject(record_id, reviewer_id)
        await self.ledger.record(
            user_id=record.user_id,
            content_type=record.content_type,
            content_id=record.id,
            text=record.content,
            severity=severity,
            reason=category,
        )
        return record
