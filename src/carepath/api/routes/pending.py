"""Manual review endpoints for pending content."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path
from pydantic import BaseModel, Field

from carepath.api.deps import DepsDep  # noqa: TC001 - FastAPI needs this at runtime
from carepath.core.enums import FlagSeverity  # noqa: TC001 - FastAPI needs this at runtime
from carepath.infra.tables import PendingContentRecord

router = APIRouter(prefix="/pending", tags=["pending"])

_REVIEW_RESPONSES: dict[int | str, dict[str, str]] = {
    404: {"description": "Pending record not found"},
    409: {"description": "Record was already reviewed"},
}


class ReviewRequest(BaseModel):
    """Reviewer identity for a decision."""

    reviewer_id: str | None = Field(default=None, description="Staff member reviewing")


class ApproveRequest(ReviewRequest):
    """Approval with an optional topic override."""

    topic: str | None = Field(default=None, description="Topic to publish under")


class FlagRejectRequest(ReviewRequest):
    """Rejection that also flags the author."""

    severity: FlagSeverity = Field(description="Severity of the flag to record")
    category: str = Field(min_length=1, description="Why the content is concerning")


class ApproveResponse(BaseModel):
    """Result of an approval."""

    record_id: str
    published_id: str = Field(description="Published content or chat message id")


@router.get(
    "",
    response_model=list[PendingContentRecord],
    summary="List pending content",
    description="Records awaiting review, oldest first.",
)
async def list_pending(deps: DepsDep) -> list[PendingContentRecord]:
    return await deps.queue.list_pending()


@router.post(
    "/{record_id}/approve",
    response_model=ApproveResponse,
    summary="Approve pending content",
    responses=_REVIEW_RESPONSES,
)
async def approve(
    record_id: Annotated[str, Path(description="The pending record")],
    body: ApproveRequest,
    deps: DepsDep,
) -> ApproveResponse:
    """Approve a record and publish its content."""
    published_id = await deps.queue.approve(
        record_id, topic=body.topic, reviewer_id=body.reviewer_id
    )
    return ApproveResponse(record_id=record_id, published_id=published_id)


@router.post(
    "/{record_id}/reject",
    response_model=PendingContentRecord,
    summary="Reject pending content",
    responses=_REVIEW_RESPONSES,
)
async def reject(
    record_id: Annotated[str, Path(description="The pending record")],
    body: ReviewRequest,
    deps: DepsDep,
) -> PendingContentRecord:
    return await deps.queue.reject(record_id, reviewer_id=body.reviewer_id)


@router.post(
    "/{record_id}/flag-reject",
    response_model=PendingContentRecord,
    summary="Reject pending content and flag its author",
    responses=_REVIEW_RESPONSES,
)
async def flag_and_reject(
    record_id: Annotated[str, Path(description="The pending record")],
    body: FlagRejectRequest,
    deps: DepsDep,
) -> PendingContentRecord:
    return await deps.queue.flag_and_reject(
        record_id,
        severity=body.severity,
        category=body.category,
        reviewer_id=body.reviewer_id,
    )
