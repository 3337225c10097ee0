"""Liveness, readiness and component health.

/health never touches a dependency. /ready answers whether the store is
reachable. /health/detailed reports the store, the review backlog and
the triage loop so a dashboard can tell a stuck moderation queue from a
dead assistant.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Literal

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import func, text
from sqlmodel import col, select

from carepath.core.enums import PendingStatus
from carepath.infra.tables import PendingContentRecord

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fastapi import FastAPI

router = APIRouter(tags=["health"])

HealthStatus = Literal["healthy", "degraded", "unhealthy"]

# Review backlog above which the queue reports degraded
PENDING_BACKLOG_THRESHOLD = 500


class HealthResponse(BaseModel):
    status: str


class ReadyResponse(BaseModel):
    status: str
    database: str


class ComponentHealth(BaseModel):
    """State of one component.

    Attributes:
        name: database, pending_queue or triage
        status: healthy, degraded or unhealthy
        message: Short human-readable detail
        latency_ms: Round trip, for checks that make one
    """

    name: str
    status: HealthStatus
    message: str | None = None
    latency_ms: float | None = None


class DetailedHealthResponse(BaseModel):
    status: HealthStatus
    indicators: list[ComponentHealth]


async def check_database(app: FastAPI) -> ComponentHealth:
    started = time.monotonic()
    try:
        async with app.state.deps.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        return ComponentHealth(name="database", status="unhealthy", message=str(e))
    elapsed = (time.monotonic() - started) * 1000
    return ComponentHealth(name="database", status="healthy", latency_ms=elapsed)


async def check_pending_queue(app: FastAPI) -> ComponentHealth:
    """Count records waiting for a reviewer.

    A backlog past PENDING_BACKLOG_THRESHOLD means staff are not keeping
    up, which is reported as degraded rather than unhealthy.
    """
    try:
        async with app.state.deps.session_factory() as session:
            result = await session.exec(
                select(func.count())
                .select_from(PendingContentRecord)
                .where(col(PendingContentRecord.status) == PendingStatus.PENDING)
            )
            backlog = result.one()
    except Exception as e:
        return ComponentHealth(name="pending_queue", status="unhealthy", message=str(e))

    state: HealthStatus = "degraded" if backlog > PENDING_BACKLOG_THRESHOLD else "healthy"
    return ComponentHealth(
        name="pending_queue", status=state, message=f"{backlog} awaiting review"
    )


async def check_triage(app: FastAPI) -> ComponentHealth:
    """Report the triage supervisor task and its live session count."""
    task: asyncio.Task[None] | None = getattr(app.state, "triage_task", None)
    if task is None:
        return ComponentHealth(
            name="triage", status="healthy", message="background loop disabled"
        )
    if task.done():
        return ComponentHealth(
            name="triage", status="unhealthy", message="background loop stopped"
        )
    sessions = len(app.state.deps.triage.sessions)
    return ComponentHealth(name="triage", status="healthy", message=f"{sessions} active sessions")


def overall_status(indicators: Sequence[ComponentHealth]) -> HealthStatus:
    """Worst status wins."""
    states = {indicator.status for indicator in indicators}
    if "unhealthy" in states:
        return "unhealthy"
    if "degraded" in states:
        return "degraded"
    return "healthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness probe",
    description="Always 200 while the process is serving requests.",
)
async def health() -> HealthResponse:
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness probe",
    description="200 once the store answers, 503 otherwise.",
    responses={
        200: {"description": "Accepting submissions"},
        503: {"description": "Store unreachable"},
    },
)
async def ready(request: Request) -> JSONResponse:
    """Readiness depends only on the store.

    A classifier outage does not make the service unready: submissions
    are still accepted and held for manual review.
    """
    database = await check_database(request.app)
    if database.status != "healthy":
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "database": "disconnected"},
        )
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"status": "ready", "database": "connected"},
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    summary="Component health",
    description="Store, review backlog and triage loop, checked concurrently.",
)
async def detailed_health(request: Request) -> DetailedHealthResponse:
    indicators = await asyncio.gather(
        check_database(request.app),
        check_pending_queue(request.app),
        check_triage(request.app),
    )
    return DetailedHealthResponse(status=overall_status(indicators), indicators=list(indicators))
