"""Tests for per-student case notes."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from carepath.core.enums import NoteOwner
from carepath.core.errors import StaffNoteConflictError, ValidationError
from carepath.core.models import TriageAssessment
from carepath.triage.notes import CaseNotes, format_assessment_note

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

    from carepath.infra.tables import StudentNote


@pytest.fixture
def notes(session_factory: async_sessionmaker[AsyncSession]) -> CaseNotes:
    return CaseNotes(session_factory)


def _assessment(summary: str, urgency: int = 1) -> TriageAssessment:
    return TriageAssessment.model_validate(
        {
            "urgencyLevel": urgency,
            "suicideRisk": "low",
            "mainIssues": ["áp lực học tập", "mất ngủ"],
            "emotionalState": "căng thẳng",
            "summary": summary,
        }
    )


class TestFormatting:
    """Tests for the rendered assessment entry."""

    def test_entry_contains_assessment(self) -> None:
        entry = format_assessment_note(
            _assessment("Em lo lắng vì kỳ thi", urgency=2),
            at=datetime(2025, 5, 4, 9, 30, 0, tzinfo=UTC),
        )

        assert "ĐÁNH GIÁ TỰ ĐỘNG BỞI AI - 09:30:00 04/05/2025" in entry
        assert "🟠 Khẩn cấp" in entry
        assert "Nguy cơ tự hại: Thấp" in entry
        assert "áp lực học tập, mất ngủ" in entry
        assert "Tóm tắt: Em lo lắng vì kỳ thi" in entry
        assert entry.endswith("\n\n")

    def test_empty_fields_are_omitted(self) -> None:
        entry = format_assessment_note(TriageAssessment())
        assert "Vấn đề chính" not in entry
        assert "Tóm tắt" not in entry
        assert "🟢 Bình thường" in entry


class TestAiAssessments:
    """Automatic entries while the assistant owns the notes."""

    async def test_first_assessment_creates_notes(self, notes: CaseNotes) -> None:
        note = await notes.add_assessment("student-1", _assessment("lần một"))

        assert note.owner == NoteOwner.AI
        assert "lần một" in note.content
        stored = await notes.get("student-1")
        assert stored is not None
        assert stored.content == note.content

    async def test_newer_assessment_is_prepended(self, notes: CaseNotes) -> None:
        await notes.add_assessment("student-1", _assessment("lần một"))

        note = await notes.add_assessment("student-1", _assessment("lần hai"))

        assert note.content.index("lần hai") < note.content.index("lần một")
        assert note.owner == NoteOwner.AI

    async def test_missing_notes(self, notes: CaseNotes) -> None:
        assert await notes.get("nobody") is None


class TestStaffOwnership:
    """Staff edits always win over automatic updates."""

    async def test_staff_save_takes_ownership(self, notes: CaseNotes) -> None:
        await notes.add_assessment("student-1", _assessment("tự động"))

        note = await notes.save_staff_notes("student-1", "Ghi chú của cô Lan", "counselor-1")

        assert note.owner == NoteOwner.STAFF
        assert note.content == "Ghi chú của cô Lan"
        assert note.updated_by == "counselor-1"

    async def test_assessment_after_staff_save_is_refused(self, notes: CaseNotes) -> None:
        await notes.save_staff_notes("student-1", "Ghi chú của cô Lan", "counselor-1")

        with pytest.raises(StaffNoteConflictError):
            await notes.add_assessment("student-1", _assessment("tự động"))

        stored = await notes.get("student-1")
        assert stored is not None
        assert stored.content == "Ghi chú của cô Lan"
        assert stored.owner == NoteOwner.STAFF

    async def test_staff_can_keep_editing(self, notes: CaseNotes) -> None:
        await notes.save_staff_notes("student-1", "v1", "counselor-1")

        note = await notes.save_staff_notes("student-1", "v2", "counselor-2")

        assert note.content == "v2"
        assert note.updated_by == "counselor-2"

    async def test_staff_id_required(self, notes: CaseNotes) -> None:
        with pytest.raises(ValidationError):
            await notes.save_staff_notes("student-1", "text", "")

    async def test_first_save_racing_assistant_entry(
        self, notes: CaseNotes, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """An AI entry created after the lookup is overwritten, not a 500."""
        await notes.add_assessment("student-1", _assessment("tự động"))
        find = notes._find
        calls = 0

        async def stale_find(session: AsyncSession, student_id: str) -> StudentNote | None:
            nonlocal calls
            calls += 1
            if calls == 1:
                return None
            return await find(session, student_id)

        monkeypatch.setattr(notes, "_find", stale_find)

        note = await notes.save_staff_notes("student-1", "Ghi chú của cô Lan", "counselor-1")

        assert note.owner == NoteOwner.STAFF
        assert note.content == "Ghi chú của cô Lan"
        assert note.updated_by == "counselor-1"
        monkeypatch.undo()
        with pytest.raises(StaffNoteConflictError):
            await notes.add_assessment("student-1", _assessment("lần hai"))
