"""Flag ledger.

Durable audit trail of concerning content. Records are created by the
moderation pipeline or by manual review and only ever move from
unresolved to resolved. Writing a flag is best-effort: a failed write is
logged and never blocks the submission that caused it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import logfire
from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select

from carepath.core.enums import FlagSeverity
from carepath.core.errors import DuplicateResolutionError, RecordNotFoundError
from carepath.core.events import FlagRecorded, FlagResolved
from carepath.infra.tables import FlagRecord, UserProfile, utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

    from carepath.core.enums import ContentType
    from carepath.infra.feed import ChangeFeed

# Placeholder content id for content that was never stored
DRAFT_CONTENT_ID = "draft"


@dataclass
class UnresolvedFlags:
    """Unresolved flags partitioned by severity, each newest first."""

    high: list[FlagRecord] = field(default_factory=list)
    medium: list[FlagRecord] = field(default_factory=list)
    mild: list[FlagRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.high) + len(self.medium) + len(self.mild)


class FlagLedger:
    """Flag records with a one-way staff resolution workflow."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
    ) -> None:
        self.session_factory = session_factory
        self.feed = feed

    async def record(
        self,
        user_id: str,
        content_type: ContentType,
        content_id: str | None,
        text: str,
        severity: FlagSeverity,
        reason: str | None = None,
    ) -> FlagRecord | None:
        """Insert an unresolved flag and mark the user as flagged.

        Args:
            user_id: Author of the content
            content_type: Surface the content came from
            content_id: Stored content id, or None for content never stored
            text: Exact text that was flagged
            severity: Flag severity
            reason: Classifier or reviewer explanation

        Returns:
            The stored record, or None if the write failed
        """
        with logfire.span("ledger.record", user_id=user_id, severity=severity.value):
            try:
                async with self.session_factory() as session:
                    flag = FlagRecord(
                        user_id=user_id,
                        content_type=content_type,
                        content_id=content_id or DRAFT_CONTENT_ID,
                        content_text=text,
                        severity=severity,
                        ai_reason=reason,
                    )
                    session.add(flag)
                    await session.execute(  # pyright: ignore[reportDeprecated]
                        update(UserProfile)
                        .where(col(UserProfile.id) == user_id)
                        .values(has_active_flags=True)
                    )
                    await session.commit()
            except SQLAlchemyError as e:
                logfire.error(
                    "Failed to record flag",
                    user_id=user_id,
                    severity=severity.value,
                    error=str(e),
                )
                return None

            logfire.info("User flagged", user_id=user_id, flag_id=flag.id, severity=severity.value)
            await self.feed.publish(
                FlagRecorded(source="ledger", flag_id=flag.id, user_id=user_id, severity=severity)
            )
            return flag

    async def get(self, flag_id: str) -> FlagRecord:
        async with self.session_factory() as session:
            flag = await session.get(FlagRecord, flag_id)
        if flag is None:
            msg = f"Flag {flag_id} not found"
            raise RecordNotFoundError(msg, details={"flag_id": flag_id})
        return flag

    async def list_unresolved(self) -> UnresolvedFlags:
        """Unresolved flags: high, then medium, then mild, each newest first."""
        async with self.session_factory() as session:
            result = await session.exec(
                select(FlagRecord)
                .where(col(FlagRecord.resolved).is_(False))
                .order_by(col(FlagRecord.flagged_at).desc())
            )
            flags = list(result.all())

        grouped = UnresolvedFlags()
        for flag in flags:
            if flag.severity == FlagSeverity.HIGH:
                grouped.high.append(flag)
            elif flag.severity == FlagSeverity.MEDIUM:
                grouped.medium.append(flag)
            else:
                grouped.mild.append(flag)
        return grouped

    async def list_for_user(self, user_id: str, include_resolved: bool = True) -> list[FlagRecord]:
        """All flags for one user, newest first."""
        async with self.session_factory() as session:
            query = select(FlagRecord).where(col(FlagRecord.user_id) == user_id)
            if not include_resolved:
                query = query.where(col(FlagRecord.resolved).is_(False))
            result = await session.exec(query.order_by(col(FlagRecord.flagged_at).desc()))
            return list(result.all())

    async def resolve(self, flag_id: str, notes: str | None = None) -> FlagRecord:
        """Resolve a flag.

        The update only matches unresolved records, so two staff members
        resolving the same flag cannot both succeed.

        Args:
            flag_id: Flag to resolve
            notes: Optional staff notes

        Returns:
            The resolved record

        Raises:
            RecordNotFoundError: If the flag does not exist
            DuplicateResolutionError: If the flag was already resolved
        """
        with logfire.span("ledger.resolve", flag_id=flag_id):
            async with self.session_factory() as session:
                result = await session.execute(  # pyright: ignore[reportDeprecated]
                    update(FlagRecord)
                    .where(col(FlagRecord.id) == flag_id, col(FlagRecord.resolved).is_(False))
                    .values(resolved=True, resolved_at=utc_now(), notes=notes)
                )
                if result.rowcount == 0:  # type: ignore[attr-defined]
                    existing = await session.get(FlagRecord, flag_id)
                    if existing is None:
                        msg = f"Flag {flag_id} not found"
                        raise RecordNotFoundError(msg, details={"flag_id": flag_id})
                    msg = f"Flag {flag_id} is already resolved"
                    raise DuplicateResolutionError(msg, details={"flag_id": flag_id})

                flag = await session.get(FlagRecord, flag_id)
                assert flag is not None

                remaining = await session.exec(
                    select(func.count())
                    .select_from(FlagRecord)
                    .where(
                        col(FlagRecord.user_id) == flag.user_id,
                        col(FlagRecord.resolved).is_(False),
                    )
                )
                if remaining.one() == 0:
                    await session.execute(  # pyright: ignore[reportDeprecated]
                        update(UserProfile)
                        .where(col(UserProfile.id) == flag.user_id)
                        .values(has_active_flags=False)
                    )
                await session.commit()

            logfire.info("Flag resolved", flag_id=flag_id, user_id=flag.user_id)
            await self.feed.publish(
                FlagResolved(source="ledger", flag_id=flag_id, user_id=flag.user_id)
            )
            return flag
