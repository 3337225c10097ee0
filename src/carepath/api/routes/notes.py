"""Case notes endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path
from pydantic import BaseModel, Field

from carepath.api.deps import DepsDep  # noqa: TC001 - FastAPI needs this at runtime
from carepath.core.errors import RecordNotFoundError
from carepath.infra.tables import StudentNote

router = APIRouter(prefix="/notes", tags=["notes"])


class StaffNoteRequest(BaseModel):
    """Staff-authored notes; saving makes the document staff-owned."""

    content: str = Field(description="Full notes document")
    staff_id: str = Field(min_length=1, description="Staff member saving the notes")


@router.get(
    "/{student_id}",
    response_model=StudentNote,
    summary="Get a student's case notes",
    responses={404: {"description": "No notes for this student"}},
)
async def get_notes(
    student_id: Annotated[str, Path(description="The student")],
    deps: DepsDep,
) -> StudentNote:
    note = await deps.notes.get(student_id)
    if note is None:
        msg = f"No notes for student {student_id}"
        raise RecordNotFoundError(msg, details={"student_id": student_id})
    return note


@router.put(
    "/{student_id}",
    response_model=StudentNote,
    summary="Save staff notes",
)
async def save_notes(
    student_id: Annotated[str, Path(description="The student")],
    body: StaffNoteRequest,
    deps: DepsDep,
) -> StudentNote:
    return await deps.notes.save_staff_notes(student_id, body.content, body.staff_id)
