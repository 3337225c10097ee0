"""Persistent entities.

Status lifecycles:
    FlagRecord:             unresolved -> resolved (one way, never deleted)
    PendingContentRecord:   pending -> approved | rejected (terminal)
    StudentNote.owner:      ai -> staff (one way)
    ChatRoom.counselor_first_reply_at: NULL -> timestamp (never cleared)
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Index
from sqlmodel import Field as SQLField
from sqlmodel import SQLModel

from carepath.core.enums import (
    ContentType,
    FlagSeverity,
    NoteOwner,
    PendingStatus,
    UrgencyLevel,
    UserRole,
)


def _new_id() -> str:
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(UTC)


class UserProfile(SQLModel, table=True):
    """Platform user, as far as moderation needs to know."""

    __tablename__ = "users"  # type: ignore[assignment]

    id: str = SQLField(default_factory=_new_id, primary_key=True)
    full_name: str = ""
    role: UserRole = SQLField(default=UserRole.STUDENT, index=True)
    # Denormalized for fast staff-dashboard filtering
    has_active_flags: bool = SQLField(default=False, index=True)


class FlagRecord(SQLModel, table=True):
    """Durable audit record of concerning content."""

    __tablename__ = "flagged_users"  # type: ignore[assignment]

    id: str = SQLField(default_factory=_new_id, primary_key=True)
    user_id: str = SQLField(index=True)
    content_type: ContentType
    content_id: str
    content_text: str
    severity: FlagSeverity = SQLField(index=True)
    ai_reason: str | None = None
    flagged_at: datetime = SQLField(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
    )
    resolved: bool = SQLField(default=False, index=True)
    resolved_at: datetime | None = SQLField(
        default=None,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
    )
    notes: str | None = None

    __table_args__ = (Index("ix_flagged_users_resolved_flagged_at", "resolved", "flagged_at"),)


class PendingContentRecord(SQLModel, table=True):
    """Content held back from publication until staff review it."""

    __tablename__ = "pending_content"  # type: ignore[assignment]

    id: str = SQLField(default_factory=_new_id, primary_key=True)
    user_id: str = SQLField(index=True)
    content_type: ContentType
    content: str
    image_url: str | None = None
    pending_reason: str
    status: PendingStatus = SQLField(default=PendingStatus.PENDING, index=True)
    topic: str | None = None
    is_anonymous: bool = False
    target_id: str | None = None
    created_at: datetime = SQLField(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
    )
    reviewed_at: datetime | None = SQLField(
        default=None,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
    )
    reviewed_by: str | None = None


class PublishedContent(SQLModel, table=True):
    """Live community content (posts and comments)."""

    __tablename__ = "published_content"  # type: ignore[assignment]

    id: str = SQLField(default_factory=_new_id, primary_key=True)
    author_id: str | None = SQLField(default=None, index=True)  # NULL when anonymous
    content_type: ContentType = SQLField(index=True)
    content: str
    image_url: str | None = None
    topic: str | None = None
    is_anonymous: bool = False
    parent_id: str | None = SQLField(default=None, index=True)
    pending_id: str | None = SQLField(default=None, unique=True)
    created_at: datetime = SQLField(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
    )


class ChatRoom(SQLModel, table=True):
    """One support conversation per student, plus its triage state."""

    __tablename__ = "chat_rooms"  # type: ignore[assignment]

    id: str = SQLField(default_factory=_new_id, primary_key=True)
    student_id: str = SQLField(index=True, unique=True)
    status: str = SQLField(default="active", index=True)

    urgency_level: int = SQLField(default=int(UrgencyLevel.NORMAL), index=True)
    previous_urgency_level: int | None = None
    ai_assessment: dict[str, Any] | None = SQLField(default=None, sa_column=Column(JSON))
    ai_triage_complete: bool = False
    counselor_first_reply_at: datetime | None = SQLField(
        default=None,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
    )

    is_counseled: bool = False
    counseled_at: datetime | None = SQLField(
        default=None,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
    )
    counseled_by: str | None = None

    last_message_at: datetime | None = SQLField(
        default=None,
        index=True,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
    )
    created_at: datetime = SQLField(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
    )

    def mark_reopened(self) -> None:
        """Clear the handled mark; urgency returns to the recorded level or NORMAL."""
        self.urgency_level = (
            self.previous_urgency_level
            if self.previous_urgency_level is not None
            else int(UrgencyLevel.NORMAL)
        )
        self.is_counseled = False
        self.counseled_at = None
        self.counseled_by = None


class ChatMessage(SQLModel, table=True):
    """A message in a chat room transcript."""

    __tablename__ = "chat_messages"  # type: ignore[assignment]

    id: str = SQLField(default_factory=_new_id, primary_key=True)
    chat_room_id: str = SQLField(index=True)
    sender_id: str | None = None  # NULL for system and assistant messages
    sender_role: UserRole | None = None
    content: str
    image_url: str | None = None
    is_system: bool = False
    is_assistant: bool = False
    created_at: datetime = SQLField(
        default_factory=utc_now,
        index=True,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
    )

    @property
    def from_staff(self) -> bool:
        return not self.is_system and self.sender_role is not None and self.sender_role.is_staff


class StudentNote(SQLModel, table=True):
    """Running case notes for a student."""

    __tablename__ = "student_notes"  # type: ignore[assignment]

    id: str = SQLField(default_factory=_new_id, primary_key=True)
    student_id: str = SQLField(index=True, unique=True)
    content: str = ""
    owner: NoteOwner = SQLField(default=NoteOwner.AI)
    updated_by: str | None = None
    updated_at: datetime = SQLField(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
    )
