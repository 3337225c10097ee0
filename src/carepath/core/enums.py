"""Closed enumerations for the moderation and triage taxonomy.

Every severity, urgency and status value used across the service lives
here. Persisted columns store the enum value; code compares against the
enum, never against bare strings or numbers.
"""

from __future__ import annotations

from enum import Enum, IntEnum


class ContentType(str, Enum):
    """Surface a submission came from."""

    POST = "post"
    COMMENT = "comment"
    MESSAGE = "message"


class VerdictLevel(str, Enum):
    """Four-tier classifier label, most severe first."""

    BLOCK = "BLOCK"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    SAFE = "SAFE"


class ModerationAction(str, Enum):
    """Routing outcome of the policy engine."""

    ALLOW = "allow"
    FLAG_MILD = "flag_mild"
    PENDING = "pending"
    REJECT = "reject"
    BLOCK = "block"


class FlagSeverity(str, Enum):
    """Severity stored on a flag record."""

    MILD = "mild"
    MEDIUM = "medium"
    HIGH = "high"


class PendingStatus(str, Enum):
    """Review status of a pending content record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UrgencyLevel(IntEnum):
    """Urgency of a chat room.

    COMPLETED is the sentinel written when staff mark a room handled.
    """

    COMPLETED = -1
    NORMAL = 0
    ATTENTION = 1
    URGENT = 2
    CRITICAL = 3


class SuicideRisk(str, Enum):
    """Suicide-risk tier reported by a triage assessment."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class UserRole(str, Enum):
    """Platform roles."""

    STUDENT = "student"
    COUNSELOR = "counselor"
    ADMIN = "admin"

    @property
    def is_staff(self) -> bool:
        return self in (UserRole.COUNSELOR, UserRole.ADMIN)


class NoteOwner(str, Enum):
    """Who last owned a student's case notes."""

    AI = "ai"
    STAFF = "staff"


class AssistantState(str, Enum):
    """Lifecycle of the triage assistant in one chat room."""

    INACTIVE = "inactive"
    TIMER_PENDING = "timer_pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
