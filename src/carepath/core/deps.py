"""Dependency container for the moderation and triage services.

The API layer and the triage manager receive one CarepathDeps instance
built at startup; tests build their own over an SQLite session factory.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

    from carepath.config import Settings
    from carepath.core.types import ClassifierProtocol
    from carepath.infra.feed import ChangeFeed
    from carepath.moderation.ledger import FlagLedger
    from carepath.moderation.pipeline import ModerationPipeline
    from carepath.moderation.queue import PendingQueue
    from carepath.triage.manager import TriageManager
    from carepath.triage.notes import CaseNotes
    from carepath.triage.rooms import ChatRoomService


@dataclass
class CarepathDeps:
    """Wired service graph.

    Attributes:
        session_factory: Async session factory for the store
        feed: In-process change feed
        gateway: Classifier gateway (or any ClassifierProtocol)
        ledger: Flag ledger
        queue: Pending content queue
        rooms: Chat room lifecycle service
        notes: Case notes service
        pipeline: Submission moderation pipeline
        triage: Triage manager owning per-room assistant sessions
    """

    session_factory: async_sessionmaker[AsyncSession]
    feed: ChangeFeed
    gateway: ClassifierProtocol
    ledger: FlagLedger
    queue: PendingQueue
    rooms: ChatRoomService
    notes: CaseNotes
    pipeline: ModerationPipeline
    triage: TriageManager

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
        gateway: ClassifierProtocol,
        settings: Settings | None = None,
    ) -> CarepathDeps:
        """Wire every service over one store, feed and gateway.

        Args:
            session_factory: Async session factory
            feed: Change feed shared by all services
            gateway: Classifier used by the pipeline and the assistant
            settings: Settings override (defaults to get_settings())

        Returns:
            Fully wired dependency container
        """
        # Import here to avoid circular dependency
        from carepath.moderation.ledger import FlagLedger
        from carepath.moderation.pipeline import ModerationPipeline
        from carepath.moderation.queue import PendingQueue
        from carepath.triage.manager import TriageManager
        from carepath.triage.notes import CaseNotes
        from carepath.triage.rooms import ChatRoomService

        ledger = FlagLedger(session_factory, feed)
        rooms = ChatRoomService(session_factory, feed, settings=settings)
        notes = CaseNotes(session_factory)
        queue = PendingQueue(session_factory, feed, ledger)
        pipeline = ModerationPipeline(gateway, ledger, queue, rooms, session_factory, feed)
        triage = TriageManager(rooms, notes, gateway, feed, settings=settings)
        return cls(
            session_factory=session_factory,
            feed=feed,
            gateway=gateway,
            ledger=ledger,
            queue=queue,
            rooms=rooms,
            notes=notes,
            pipeline=pipeline,
            triage=triage,
        )
