"""Infrastructure layer - database, tables, change feed, observability."""

from carepath.infra.database import (
    create_engine,
    create_session_factory,
    dispose_engine,
    init_database,
)
from carepath.infra.feed import ChangeFeed, Subscription
from carepath.infra.observability import configure_observability, instrument_app
from carepath.infra.tables import (
    ChatMessage,
    ChatRoom,
    FlagRecord,
    PendingContentRecord,
    PublishedContent,
    StudentNote,
    UserProfile,
)

__all__ = [
    "ChangeFeed",
    "ChatMessage",
    "ChatRoom",
    "FlagRecord",
    "PendingContentRecord",
    "PublishedContent",
    "StudentNote",
    "Subscription",
    "UserProfile",
    "configure_observability",
    "create_engine",
    "create_session_factory",
    "dispose_engine",
    "init_database",
    "instrument_app",
]
