"""Tests for the pending content queue."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest
from sqlmodel import select

from carepath.core.enums import (
    ContentType,
    FlagSeverity,
    PendingStatus,
    UrgencyLevel,
    UserRole,
)
from carepath.core.errors import DuplicateResolutionError, RecordNotFoundError
from carepath.core.events import ContentPublished, ContentReviewed, MessagePosted, RoomUpdated
from carepath.core.models import ContentSubmission, TriageAssessment
from carepath.infra.tables import PublishedContent
from conftest import collect

if TYPE_CHECKING:
    from carepath.core.deps import CarepathDeps
    from carepath.infra.tables import PendingContentRecord


def _submission(**kwargs: object) -> ContentSubmission:
    data: dict[str, object] = {
        "text": "Ảnh lớp mình đi dã ngoại",
        "author_id": "student-1",
        "content_type": ContentType.POST,
        "image_url": "https://cdn.example.com/a.jpg",
        "topic": "school",
    }
    data.update(kwargs)
    return ContentSubmission.model_validate(data)


async def _published(deps: CarepathDeps) -> list[PublishedContent]:
    async with deps.session_factory() as session:
        result = await session.exec(select(PublishedContent))
        return list(result.all())


class TestEnqueue:
    """Tests for holding content back."""

    async def test_enqueue_stores_submission(self, deps: CarepathDeps) -> None:
        record = await deps.queue.enqueue(_submission(), "needs review")

        stored = await deps.queue.get(record.id)
        assert stored.status == PendingStatus.PENDING
        assert stored.content == "Ảnh lớp mình đi dã ngoại"
        assert stored.image_url == "https://cdn.example.com/a.jpg"
        assert stored.pending_reason == "needs review"
        assert await _published(deps) == []

    async def test_list_pending_oldest_first(self, deps: CarepathDeps) -> None:
        first = await deps.queue.enqueue(_submission(text="one"), "r")
        await asyncio.sleep(0.002)
        second = await deps.queue.enqueue(_submission(text="two"), "r")

        pending = await deps.queue.list_pending()

        assert [r.id for r in pending] == [first.id, second.id]


class TestApprove:
    """Tests for approval and publication."""

    async def test_approve_publishes_once(self, deps: CarepathDeps) -> None:
        record = await deps.queue.enqueue(_submission(), "attachment")
        subscription = deps.feed.subscribe(["content.published", "pending.reviewed"])

        published_id = await deps.queue.approve(record.id, reviewer_id="counselor-1")

        published = await _published(deps)
        assert [p.id for p in published] == [published_id]
        assert published[0].author_id == "student-1"
        assert published[0].topic == "school"
        assert published[0].pending_id == record.id
        assert await deps.queue.list_pending() == []

        stored = await deps.queue.get(record.id)
        assert stored.status == PendingStatus.APPROVED
        assert stored.reviewed_by == "counselor-1"
        assert stored.reviewed_at is not None

        events = await collect(subscription)
        assert {type(e) for e in events} == {ContentPublished, ContentReviewed}

    async def test_approve_twice_raises(self, deps: CarepathDeps) -> None:
        record = await deps.queue.enqueue(_submission(), "attachment")
        await deps.queue.approve(record.id)

        with pytest.raises(DuplicateResolutionError):
            await deps.queue.approve(record.id)

        assert len(await _published(deps)) == 1

    async def test_concurrent_approvals_publish_once(self, deps: CarepathDeps) -> None:
        record = await deps.queue.enqueue(_submission(), "attachment")

        results = await asyncio.gather(
            deps.queue.approve(record.id),
            deps.queue.approve(record.id),
            return_exceptions=True,
        )

        assert sum(isinstance(r, DuplicateResolutionError) for r in results) == 1
        assert len(await _published(deps)) == 1

    async def test_topic_override(self, deps: CarepathDeps) -> None:
        record = await deps.queue.enqueue(_submission(), "attachment")

        await deps.queue.approve(record.id, topic="friends")

        assert (await _published(deps))[0].topic == "friends"

    async def test_anonymous_content_has_no_author(self, deps: CarepathDeps) -> None:
        record = await deps.queue.enqueue(_submission(is_anonymous=True), "attachment")

        await deps.queue.approve(record.id)

        published = (await _published(deps))[0]
        assert published.author_id is None
        assert published.is_anonymous

    async def test_approve_message_posts_into_room(self, deps: CarepathDeps) -> None:
        room = await deps.rooms.open_room("student-1")
        record = await deps.queue.enqueue(
            _submission(content_type=ContentType.MESSAGE, target_id=room.id, text="Em chào cô"),
            "classifier unavailable",
        )
        subscription = deps.feed.subscribe(["chat.message.posted"])

        message_id = await deps.queue.approve(record.id)

        transcript = await deps.rooms.transcript(room.id)
        assert [m.id for m in transcript] == [message_id]
        assert transcript[0].sender_role == UserRole.STUDENT
        assert transcript[0].content == "Em chào cô"
        assert transcript[0].image_url == "https://cdn.example.com/a.jpg"
        assert await _published(deps) == []
        events = await collect(subscription)
        assert len(events) == 1
        assert isinstance(events[0], MessagePosted)
        assert events[0].from_student
        assert events[0].image_url == "https://cdn.example.com/a.jpg"

    async def test_approved_message_reopens_handled_room(self, deps: CarepathDeps) -> None:
        room = await deps.rooms.open_room("student-1")
        await deps.rooms.update_assessment(
            room.id, TriageAssessment(urgency_level=UrgencyLevel.URGENT)
        )
        await deps.rooms.mark_handled(room.id, "counselor-1")
        record = await deps.queue.enqueue(
            _submission(content_type=ContentType.MESSAGE, target_id=room.id, text="Ảnh này"),
            "attachment",
        )
        subscription = deps.feed.subscribe(["chat.room.updated"])

        message_id = await deps.queue.approve(record.id)

        reopened = await deps.rooms.get_room(room.id)
        assert reopened.urgency_level == UrgencyLevel.URGENT
        assert not reopened.is_counseled
        assert reopened.counseled_by is None
        transcript = await deps.rooms.transcript(room.id)
        assert transcript[-1].id == message_id
        assert transcript[-1].image_url == "https://cdn.example.com/a.jpg"
        events = await collect(subscription)
        assert len(events) == 1
        assert isinstance(events[0], RoomUpdated)
        assert events[0].urgency_level == UrgencyLevel.URGENT
        assert not events[0].is_counseled

    async def test_approved_message_leaves_open_room_alone(self, deps: CarepathDeps) -> None:
        room = await deps.rooms.open_room("student-1")
        record = await deps.queue.enqueue(
            _submission(content_type=ContentType.MESSAGE, target_id=room.id), "attachment"
        )
        subscription = deps.feed.subscribe(["chat.room.updated"])

        await deps.queue.approve(record.id)

        assert await collect(subscription) == []
        assert (await deps.rooms.get_room(room.id)).urgency_level == UrgencyLevel.NORMAL

    async def test_approve_unknown_record(self, deps: CarepathDeps) -> None:
        with pytest.raises(RecordNotFoundError):
            await deps.queue.approve("missing")


class TestReject:
    """Tests for rejection and flag-and-reject."""

    async def _pending(self, deps: CarepathDeps) -> PendingContentRecord:
        return await deps.queue.enqueue(_submission(text="Ảnh tự làm đau bản thân"), "attachment")

    async def test_reject_never_publishes(self, deps: CarepathDeps) -> None:
        record = await self._pending(deps)

        rejected = await deps.queue.reject(record.id, reviewer_id="counselor-1")

        assert rejected.status == PendingStatus.REJECTED
        assert await _published(deps) == []
        assert await deps.queue.list_pending() == []

    async def test_reject_after_approve_raises(self, deps: CarepathDeps) -> None:
        record = await self._pending(deps)
        await deps.queue.approve(record.id)

        with pytest.raises(DuplicateResolutionError):
            await deps.queue.reject(record.id)

        assert (await deps.queue.get(record.id)).status == PendingStatus.APPROVED

    async def test_flag_and_reject(self, deps: CarepathDeps) -> None:
        record = await self._pending(deps)

        await deps.queue.flag_and_reject(
            record.id, FlagSeverity.HIGH, "self-harm imagery", reviewer_id="counselor-1"
        )

        assert (await deps.queue.get(record.id)).status == PendingStatus.REJECTED
        flags = await deps.ledger.list_for_user("student-1")
        assert len(flags) == 1
        assert flags[0].severity == FlagSeverity.HIGH
        assert flags[0].ai_reason == "self-harm imagery"
        assert flags[0].content_id == record.id
        assert flags[0].content_text == "Ảnh tự làm đau bản thân"
        assert await _published(deps) == []

    async def test_flag_and_reject_reviewed_record(self, deps: CarepathDeps) -> None:
        """A second reviewer cannot flag content that was already rejected."""
        record = await self._pending(deps)
        await deps.queue.reject(record.id)

        with pytest.raises(DuplicateResolutionError):
            await deps.queue.flag_and_reject(record.id, FlagSeverity.MEDIUM, "sadness")

        assert await deps.ledger.list_for_user("student-1") == []
