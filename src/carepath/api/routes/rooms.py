"""Chat room endpoints.

Student chat messages are moderated and go through POST /submissions;
this router posts staff replies directly.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path, Query, Response, status
from pydantic import BaseModel, Field

from carepath.api.deps import DepsDep  # noqa: TC001 - FastAPI needs this at runtime
from carepath.core.enums import UserRole
from carepath.core.errors import ValidationError
from carepath.core.models import TriageAssessment
from carepath.infra.tables import ChatMessage, ChatRoom

router = APIRouter(prefix="/rooms", tags=["rooms"])

_ROOM_NOT_FOUND: dict[int | str, dict[str, str]] = {
    404: {"description": "Chat room not found"},
}


class OpenRoomRequest(BaseModel):
    """Open (or fetch) a student's room."""

    student_id: str = Field(min_length=1)


class StaffMessageRequest(BaseModel):
    """A counselor or admin reply."""

    sender_id: str = Field(min_length=1, description="Staff member replying")
    sender_role: UserRole = Field(default=UserRole.COUNSELOR)
    content: str = Field(description="Message text")


class HandledRequest(BaseModel):
    """Staff marking a room as handled."""

    staff_id: str = Field(min_length=1)


@router.post(
    "",
    response_model=ChatRoom,
    status_code=status.HTTP_201_CREATED,
    summary="Open a chat room",
    description="Return the student's chat room, creating it on first use.",
)
async def open_room(body: OpenRoomRequest, deps: DepsDep) -> ChatRoom:
    return await deps.rooms.open_room(body.student_id)


@router.get(
    "",
    response_model=list[ChatRoom],
    summary="List active chat rooms",
    description="Most recently active first.",
)
async def list_rooms(deps: DepsDep) -> list[ChatRoom]:
    return await deps.rooms.list_active()


@router.get(
    "/{room_id}",
    response_model=ChatRoom,
    summary="Get a chat room",
    responses=_ROOM_NOT_FOUND,
)
async def get_room(
    room_id: Annotated[str, Path(description="The chat room")],
    deps: DepsDep,
) -> ChatRoom:
    return await deps.rooms.get_room(room_id)


@router.delete(
    "/{room_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Close a chat room",
    description="Delete a room and its transcript; its assistant session stops.",
    responses=_ROOM_NOT_FOUND,
)
async def close_room(
    room_id: Annotated[str, Path(description="The chat room")],
    deps: DepsDep,
) -> Response:
    await deps.rooms.close_room(room_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{room_id}/messages",
    response_model=list[ChatMessage],
    summary="Get a room's transcript",
    responses=_ROOM_NOT_FOUND,
)
async def list_messages(
    room_id: Annotated[str, Path(description="The chat room")],
    deps: DepsDep,
    limit: Annotated[int | None, Query(ge=1, le=1000, description="Last N messages")] = None,
) -> list[ChatMessage]:
    return await deps.rooms.transcript(room_id, limit=limit)


@router.post(
    "/{room_id}/messages",
    response_model=ChatMessage,
    status_code=status.HTTP_201_CREATED,
    summary="Post a staff reply",
    description="The first staff reply permanently stops the triage assistant.",
    responses=_ROOM_NOT_FOUND,
)
async def post_staff_message(
    room_id: Annotated[str, Path(description="The chat room")],
    body: StaffMessageRequest,
    deps: DepsDep,
) -> ChatMessage:
    """Post a counselor or admin message.

    Raises:
        ValidationError: If the sender role is not a staff role
    """
    if not body.sender_role.is_staff:
        msg = "Student messages must be submitted through /submissions"
        raise ValidationError(msg, details={"sender_role": body.sender_role.value})
    return await deps.rooms.post_message(
        room_id, body.sender_id, body.content, sender_role=body.sender_role
    )


@router.delete(
    "/{room_id}/messages/{message_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a message",
    responses={404: {"description": "Message not found in this room"}},
)
async def delete_message(
    room_id: Annotated[str, Path(description="The chat room")],
    message_id: Annotated[str, Path(description="The message to delete")],
    deps: DepsDep,
) -> Response:
    await deps.rooms.delete_message(room_id, message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{room_id}/handled",
    response_model=ChatRoom,
    summary="Mark a room as handled",
    description="Sets urgency to COMPLETED and asks the student for feedback.",
    responses=_ROOM_NOT_FOUND,
)
async def mark_handled(
    room_id: Annotated[str, Path(description="The chat room")],
    body: HandledRequest,
    deps: DepsDep,
) -> ChatRoom:
    return await deps.rooms.mark_handled(room_id, body.staff_id)


@router.post(
    "/{room_id}/reopen",
    response_model=ChatRoom,
    summary="Reopen a handled room",
    responses=_ROOM_NOT_FOUND,
)
async def reopen(
    room_id: Annotated[str, Path(description="The chat room")],
    deps: DepsDep,
) -> ChatRoom:
    return await deps.rooms.reopen(room_id)


@router.post(
    "/{room_id}/assessment",
    response_model=TriageAssessment,
    summary="Refresh the AI assessment",
    description="Re-assess the recent transcript and store the result on the room.",
    responses={
        404: {"description": "Chat room not found"},
        422: {"description": "No student messages to assess"},
        503: {"description": "Classifier unavailable"},
    },
)
async def refresh_assessment(
    room_id: Annotated[str, Path(description="The chat room")],
    deps: DepsDep,
) -> TriageAssessment:
    return await deps.triage.refresh_assessment(room_id)
