"""Carepath - moderation and triage orchestrator for school counseling.

Carepath classifies community posts, comments and chat messages with an
external language model, routes each submission to publication, the flag
ledger or the manual review queue, and runs an automated triage assistant
in student chat rooms until a counselor takes over.

Quick Start:
    from carepath import CarepathDeps, ContentSubmission, ContentType
    from carepath.infra import ChangeFeed, create_engine, create_session_factory
    from carepath.moderation import ClassifierGateway

    engine = create_engine()
    deps = CarepathDeps.build(
        create_session_factory(engine), ChangeFeed(), ClassifierGateway()
    )
    outcome = await deps.pipeline.submit(
        ContentSubmission(text="...", author_id=user_id, content_type=ContentType.POST)
    )

Moderation:
    - ClassifierGateway: model call and verdict parsing
    - decide: pure verdict-to-action policy
    - FlagLedger / PendingQueue: staff review workflows

Triage:
    - ChatRoomService: chat room lifecycle
    - TriageManager: per-room assistant sessions fed by the change feed
"""

from carepath.config import Settings, configure_settings, get_settings, settings
from carepath.core import (
    BaseEvent,
    CarepathDeps,
    CarepathError,
    ContentSubmission,
    ContentType,
    DuplicateResolutionError,
    ErrorCode,
    EventRegistry,
    FlagSeverity,
    ModerationAction,
    ModerationDecision,
    ModerationVerdict,
    RecordNotFoundError,
    StaffNoteConflictError,
    StoreError,
    TriageAssessment,
    Unavailable,
    UrgencyLevel,
    UserRole,
    VerdictLevel,
)

__version__ = settings.version

__all__ = [
    "BaseEvent",
    "CarepathDeps",
    "CarepathError",
    "ContentSubmission",
    "ContentType",
    "DuplicateResolutionError",
    "ErrorCode",
    "EventRegistry",
    "FlagSeverity",
    "ModerationAction",
    "ModerationDecision",
    "ModerationVerdict",
    "RecordNotFoundError",
    "Settings",
    "StaffNoteConflictError",
    "StoreError",
    "TriageAssessment",
    "Unavailable",
    "UrgencyLevel",
    "UserRole",
    "VerdictLevel",
    "__version__",
    "configure_settings",
    "get_settings",
    "settings",
]
