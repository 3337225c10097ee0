"""Per-student case notes.

Notes carry an owner tag. Automatic assessments may only write while
the owner is "ai"; the first staff save flips the owner to "staff" for
good, after which automatic updates are refused with
StaffNoteConflictError. Staff edits always win.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import logfire
from sqlalchemy import String, literal, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from carepath.core.enums import NoteOwner, SuicideRisk, UrgencyLevel
from carepath.core.errors import StaffNoteConflictError, ValidationError
from carepath.infra.tables import StudentNote, utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

    from carepath.core.models import TriageAssessment

URGENCY_LABELS = {
    UrgencyLevel.NORMAL: "🟢 Bình thường",
    UrgencyLevel.ATTENTION: "🟡 Cần chú ý",
    UrgencyLevel.URGENT: "🟠 Khẩn cấp",
    UrgencyLevel.CRITICAL: "🔴 Rất khẩn cấp",
}

SUICIDE_RISK_LABELS = {
    SuicideRisk.NONE: "Không có",
    SuicideRisk.LOW: "Thấp",
    SuicideRisk.MEDIUM: "Trung bình",
    SuicideRisk.HIGH: "Cao",
}

_RULE = "═" * 39
_THIN_RULE = "─" * 39


def format_assessment_note(assessment: TriageAssessment, at: datetime | None = None) -> str:
    """Render an assessment as an AI-tagged note entry."""
    timestamp = (at or utc_now()).strftime("%H:%M:%S %d/%m/%Y")
    lines = [
        _RULE,
        f"🤖 ĐÁNH GIÁ TỰ ĐỘNG BỞI AI - {timestamp}",
        _RULE,
        f"📊 Mức độ khẩn cấp: {URGENCY_LABELS.get(assessment.urgency_level, 'Chưa xác định')}",
        f"⚠️ Nguy cơ tự hại: {SUICIDE_RISK_LABELS[assessment.suicide_risk]}",
    ]
    if assessment.main_issues:
        lines.append(f"📋 Vấn đề chính: {', '.join(assessment.main_issues)}")
    if assessment.emotional_state:
        lines.append(f"💭 Trạng thái cảm xúc: {assessment.emotional_state}")
    if assessment.summary:
        lines.append(f"📝 Tóm tắt: {assessment.summary}")
    lines += [
        _THIN_RULE,
        "⚡ Đây là đánh giá tự động, cần xác nhận bởi tư vấn viên",
        _RULE,
    ]
    return "\n".join(lines) + "\n\n"


class CaseNotes:
    """Running case notes, one document per student."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def _find(self, session: AsyncSession, student_id: str) -> StudentNote | None:
        result = await session.exec(
            select(StudentNote).where(col(StudentNote.student_id) == student_id)
        )
        return result.first()

    async def get(self, student_id: str) -> StudentNote | None:
        async with self.session_factory() as session:
            return await self._find(session, student_id)

    async def save_staff_notes(self, student_id: str, content: str, staff_id: str) -> StudentNote:
        """Write staff-authored notes; the document becomes staff-owned.

        If an automatic entry creates the document between the lookup and
        the insert, the save is retried as an update over it.
        """
        if not staff_id:
            msg = "Staff notes require a staff id"
            raise ValidationError(msg)

        with logfire.span("notes.save_staff", student_id=student_id, staff_id=staff_id):
            async with self.session_factory() as session:
                note = await self._find(session, student_id) or StudentNote(
                    student_id=student_id
                )
                note.content = content
                note.owner = NoteOwner.STAFF
                note.updated_by = staff_id
                note.updated_at = utc_now()
                session.add(note)
                try:
                    await session.commit()
                    logfire.info("Staff notes saved", student_id=student_id, staff_id=staff_id)
                    return note
                except IntegrityError:
                    await session.rollback()

            async with self.session_factory() as session:
                await session.execute(  # pyright: ignore[reportDeprecated]
                    update(StudentNote)
                    .where(col(StudentNote.student_id) == student_id)
                    .values(
                        content=content,
                        owner=NoteOwner.STAFF,
                        updated_by=staff_id,
                        updated_at=utc_now(),
                    )
                )
                await session.commit()
                note = await self._find(session, student_id)
                assert note is not None

            logfire.info(
                "Staff notes saved over concurrent entry", student_id=student_id, staff_id=staff_id
            )
            return note

    async def add_assessment(self, student_id: str, assessment: TriageAssessment) -> StudentNote:
        """Prepend an AI assessment entry to the student's notes.

        Creates the document if needed. The prepend is a conditional
        update on owner == ai, so a staff save that lands first always
        wins.

        Raises:
            StaffNoteConflictError: If staff own the notes
        """
        entry = format_assessment_note(assessment)
        with logfire.span("notes.add_assessment", student_id=student_id):
            async with self.session_factory() as session:
                note = StudentNote(student_id=student_id, content=entry, owner=NoteOwner.AI)
                session.add(note)
                try:
                    await session.commit()
                    logfire.info("AI assessment saved to new notes", student_id=student_id)
                    return note
                except IntegrityError:
                    # Notes already exist for this student
                    await session.rollback()

            async with self.session_factory() as session:
                result = await session.execute(  # pyright: ignore[reportDeprecated]
                    update(StudentNote)
                    .where(
                        col(StudentNote.student_id) == student_id,
                        col(StudentNote.owner) == NoteOwner.AI,
                    )
                    .values(
                        content=literal(entry, String) + col(StudentNote.content),
                        updated_at=utc_now(),
                    )
                )
                if result.rowcount == 0:  # type: ignore[attr-defined]
                    msg = f"Notes for student {student_id} are owned by staff"
                    raise StaffNoteConflictError(msg, details={"student_id": student_id})
                await session.commit()

                updated = await self._find(session, student_id)
                assert updated is not None

            logfire.info("AI assessment prepended to notes", student_id=student_id)
            return updated
