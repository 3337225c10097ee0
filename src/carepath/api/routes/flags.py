"""Flag ledger endpoints for staff."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path, Query
from pydantic import BaseModel, Field

from carepath.api.deps import DepsDep  # noqa: TC001 - FastAPI needs this at runtime
from carepath.infra.tables import FlagRecord

router = APIRouter(tags=["flags"])


class UnresolvedFlagsResponse(BaseModel):
    """Unresolved flags grouped by severity, each newest first."""

    count: int = Field(description="Total unresolved flags")
    high: list[FlagRecord]
    medium: list[FlagRecord]
    mild: list[FlagRecord]


class ResolveRequest(BaseModel):
    """Staff resolution of a flag."""

    notes: str | None = Field(default=None, description="Follow-up notes")


@router.get(
    "/flags",
    response_model=UnresolvedFlagsResponse,
    summary="List unresolved flags",
)
async def list_unresolved(deps: DepsDep) -> UnresolvedFlagsResponse:
    flags = await deps.ledger.list_unresolved()
    return UnresolvedFlagsResponse(
        count=len(flags),
        high=flags.high,
        medium=flags.medium,
        mild=flags.mild,
    )


@router.post(
    "/flags/{flag_id}/resolve",
    response_model=FlagRecord,
    summary="Resolve a flag",
    responses={
        200: {"description": "Flag resolved"},
        404: {"description": "Flag not found"},
        409: {"description": "Flag already resolved"},
    },
)
async def resolve_flag(
    flag_id: Annotated[str, Path(description="The flag to resolve")],
    body: ResolveRequest,
    deps: DepsDep,
) -> FlagRecord:
    """Resolve a flag. A flag can be resolved only once."""
    return await deps.ledger.resolve(flag_id, notes=body.notes)


@router.get(
    "/users/{user_id}/flags",
    response_model=list[FlagRecord],
    summary="List a user's flags",
)
async def list_user_flags(
    user_id: Annotated[str, Path(description="The flagged user")],
    deps: DepsDep,
    include_resolved: Annotated[bool, Query(description="Include resolved flags")] = True,
) -> list[FlagRecord]:
    return await deps.ledger.list_for_user(user_id, include_resolved=include_resolved)
