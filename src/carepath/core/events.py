"""Change-feed events.

Every mutation the services make against the store is announced on the
change feed as one of these events, identified by its 'type' literal.
Each class registers itself with EventRegistry so subscribers can only
ask for types that exist. Further types can be added the same way:

    @EventRegistry.register
    class BookingCreated(BaseEvent):
        type: Literal["booking.created"] = "booking.created"
        booking_id: str
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import ClassVar, Literal, TypeVar
from uuid import uuid4

from pydantic import BaseModel, Field

from carepath.core.enums import (  # noqa: TC001 - Pydantic needs these at runtime
    ContentType,
    FlagSeverity,
    PendingStatus,
    SuicideRisk,
    UrgencyLevel,
    UserRole,
)

_EventT = TypeVar("_EventT", bound="BaseEvent")


class EventMeta(BaseModel):
    """Links an event to the request or event that produced it.

    Attributes:
        trace_id: Fresh per event unless the publisher passes one through
        correlation_id: Optional id grouping events of one workflow
        causation_id: Optional id of the event this one reacts to
    """

    trace_id: str = Field(default_factory=lambda: str(uuid4()))
    correlation_id: str | None = None
    causation_id: str | None = None


class BaseEvent(BaseModel):
    """Fields every change event carries.

    Concrete events add a defaulted `type` Literal and register with
    EventRegistry.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    source: str = Field(description="Service that made the change, e.g. 'chat'")
    meta: EventMeta = Field(default_factory=EventMeta)


class EventRegistry:
    """Known change-event types, keyed by their 'type' literal.

    Every built-in event registers itself at import time. The change feed
    checks subscription filters against this table so a misspelled type
    name fails loudly instead of silently matching nothing.
    """

    _types: ClassVar[dict[str, type[BaseEvent]]] = {}

    @classmethod
    def register(cls, event_class: type[_EventT]) -> type[_EventT]:
        """Add an event class. Usable as a class decorator.

        Raises:
            ValueError: If the class has no defaulted 'type' field, or another
                class already claimed the same type name
        """
        type_field = event_class.model_fields.get("type")
        if type_field is None or type_field.default is None:
            msg = f"{event_class.__name__} needs a 'type' field with a default"
            raise ValueError(msg)

        name = type_field.default
        existing = cls._types.get(name)
        if existing is not None and existing is not event_class:
            msg = f"Event type '{name}' already registered by {existing.__name__}"
            raise ValueError(msg)
        cls._types[name] = event_class
        return event_class

    @classmethod
    def get(cls, type_value: str) -> type[BaseEvent] | None:
        return cls._types.get(type_value)

    @classmethod
    def type_names(cls) -> list[str]:
        return sorted(cls._types)


# --- Chat ---


@EventRegistry.register
class MessagePosted(BaseEvent):
    """A message was inserted into a chat room."""

    type: Literal["chat.message.posted"] = "chat.message.posted"
    room_id: str
    message_id: str
    sender_id: str | None
    sender_role: UserRole | None = None
    content: str
    image_url: str | None = None
    is_system: bool = False
    is_assistant: bool = False

    @property
    def from_staff(self) -> bool:
        """A staff reply: counselor or admin, and not a system message."""
        return (
            not self.is_system and self.sender_role is not None and self.sender_role.is_staff
        )

    @property
    def from_student(self) -> bool:
        return not self.is_system and self.sender_role == UserRole.STUDENT


@EventRegistry.register
class MessageDeleted(BaseEvent):
    """A chat message was deleted."""

    type: Literal["chat.message.deleted"] = "chat.message.deleted"
    room_id: str
    message_id: str


@EventRegistry.register
class RoomUpdated(BaseEvent):
    """Chat room state changed (urgency, assessment, handled flag)."""

    type: Literal["chat.room.updated"] = "chat.room.updated"
    room_id: str
    urgency_level: UrgencyLevel
    is_counseled: bool = False


@EventRegistry.register
class RoomClosed(BaseEvent):
    """Chat room was deleted; any assistant session must stop."""

    type: Literal["chat.room.closed"] = "chat.room.closed"
    room_id: str


@EventRegistry.register
class CriticalRiskDetected(BaseEvent):
    """An assessment reported the highest suicide-risk tier.

    A signal for staff dashboards; the assistant takes no further action on it.
    """

    type: Literal["triage.critical_risk"] = "triage.critical_risk"
    room_id: str
    student_id: str
    suicide_risk: SuicideRisk
    summary: str = ""


# --- Moderation ---


@EventRegistry.register
class FlagRecorded(BaseEvent):
    """A flag record was written to the ledger."""

    type: Literal["flag.recorded"] = "flag.recorded"
    flag_id: str
    user_id: str
    severity: FlagSeverity


@EventRegistry.register
class FlagResolved(BaseEvent):
    """Staff resolved a flag."""

    type: Literal["flag.resolved"] = "flag.resolved"
    flag_id: str
    user_id: str


@EventRegistry.register
class ContentQueued(BaseEvent):
    """Content was held for manual review."""

    type: Literal["pending.queued"] = "pending.queued"
    record_id: str
    user_id: str
    content_type: ContentType


@EventRegistry.register
class ContentReviewed(BaseEvent):
    """Staff approved or rejected pending content."""

    type: Literal["pending.reviewed"] = "pending.reviewed"
    record_id: str
    status: PendingStatus


@EventRegistry.register
class ContentPublished(BaseEvent):
    """A post or comment became visible in the live feed."""

    type: Literal["content.published"] = "content.published"
    content_id: str
    content_type: ContentType
