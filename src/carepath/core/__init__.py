"""Core domain types - enums, models, events, errors, protocols."""

from carepath.core.deps import CarepathDeps
from carepath.core.enums import (
    AssistantState,
    ContentType,
    FlagSeverity,
    ModerationAction,
    NoteOwner,
    PendingStatus,
    SuicideRisk,
    UrgencyLevel,
    UserRole,
    VerdictLevel,
)
from carepath.core.errors import (
    CarepathError,
    ClassifierUnavailableError,
    DuplicateResolutionError,
    ErrorCode,
    RateLimitError,
    RecordNotFoundError,
    StaffNoteConflictError,
    StoreError,
    ValidationError,
)
from carepath.core.events import (
    BaseEvent,
    ContentPublished,
    ContentQueued,
    ContentReviewed,
    CriticalRiskDetected,
    EventMeta,
    EventRegistry,
    FlagRecorded,
    FlagResolved,
    MessageDeleted,
    MessagePosted,
    RoomClosed,
    RoomUpdated,
)
from carepath.core.models import (
    ContentSubmission,
    ConversationTurn,
    ModerationDecision,
    ModerationVerdict,
    TriageAssessment,
    TriageReply,
    Unavailable,
    Verdict,
)
from carepath.core.types import ClassifierProtocol

__all__ = [
    "AssistantState",
    "BaseEvent",
    "CarepathDeps",
    "CarepathError",
    "ClassifierProtocol",
    "ClassifierUnavailableError",
    "ContentPublished",
    "ContentQueued",
    "ContentReviewed",
    "ContentSubmission",
    "ContentType",
    "ConversationTurn",
    "CriticalRiskDetected",
    "DuplicateResolutionError",
    "ErrorCode",
    "EventMeta",
    "EventRegistry",
    "FlagRecorded",
    "FlagResolved",
    "FlagSeverity",
    "MessageDeleted",
    "MessagePosted",
    "ModerationAction",
    "ModerationDecision",
    "ModerationVerdict",
    "NoteOwner",
    "PendingStatus",
    "RateLimitError",
    "RecordNotFoundError",
    "RoomClosed",
    "RoomUpdated",
    "StaffNoteConflictError",
    "StoreError",
    "SuicideRisk",
    "TriageAssessment",
    "TriageReply",
    "Unavailable",
    "UrgencyLevel",
    "UserRole",
    "ValidationError",
    "Verdict",
    "VerdictLevel",
]
