"""FastAPI application factory.

The lifespan owns every long-lived resource: the engine, the change
feed, the wired services and the triage supervisor task. Routes reach
the services through app.state.deps.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from carepath.infra.feed import Subscription
    from carepath.triage.manager import TriageManager

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from carepath.api.errors import carepath_exception_handler
from carepath.api.rate_limiting import limiter, rate_limit_exceeded_handler
from carepath.api.routes import flags, health, notes, pending, rooms, submissions
from carepath.config import get_settings
from carepath.core.deps import CarepathDeps
from carepath.core.errors import CarepathError
from carepath.infra.database import (
    create_engine,
    create_session_factory,
    dispose_engine,
    init_database,
)
from carepath.infra.feed import ChangeFeed
from carepath.infra.observability import configure_observability, instrument_app
from carepath.moderation.gateway import ClassifierGateway

logger = logging.getLogger(__name__)

RESTART_DELAY = 1.0
MAX_RESTART_DELAY = 60.0


async def supervise_triage(
    triage: TriageManager,
    stopping: asyncio.Event,
    subscription: Subscription,
    restart_delay: float = RESTART_DELAY,
) -> None:
    """Keep the triage manager consuming chat events.

    A crash is retried on a fresh subscription after a delay that doubles
    up to MAX_RESTART_DELAY. Returns once the feed closes or stopping is
    set.
    """
    while not stopping.is_set():
        try:
            await triage.run(subscription)
            return
        except Exception:
            logger.exception("Triage manager crashed, restarting in %.1fs", restart_delay)
        try:
            await asyncio.wait_for(stopping.wait(), timeout=restart_delay)
            return
        except TimeoutError:
            pass
        restart_delay = min(restart_delay * 2, MAX_RESTART_DELAY)
        subscription = triage.subscribe()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the service graph on startup and tear it down in reverse.

    The triage supervisor is not started when environment is "test";
    tests drive TriageManager directly.
    """
    settings = get_settings()
    configure_observability()

    engine = create_engine(settings)
    await init_database(engine)
    feed = ChangeFeed()
    deps = CarepathDeps.build(
        create_session_factory(engine), feed, ClassifierGateway(settings=settings), settings
    )
    app.state.engine = engine
    app.state.deps = deps

    stopping = asyncio.Event()
    supervisor: asyncio.Task[None] | None = None
    if settings.environment != "test":
        # Subscribed before the first request so no chat message is missed
        supervisor = asyncio.create_task(
            supervise_triage(deps.triage, stopping, deps.triage.subscribe())
        )
        app.state.triage_task = supervisor

    instrument_app(app)
    logger.info("Carepath started (environment=%s)", settings.environment)

    try:
        yield
    finally:
        stopping.set()
        if supervisor is not None:
            supervisor.cancel()
            try:
                await supervisor
            except asyncio.CancelledError:
                pass
        await deps.triage.shutdown()
        feed.close()
        await dispose_engine(engine)
        logger.info("Carepath stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Carepath",
        description="Content moderation and triage for school counseling",
        version=get_settings().version,
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]
    app.add_exception_handler(CarepathError, carepath_exception_handler)  # type: ignore[arg-type]

    for module in (health, submissions, flags, pending, rooms, notes):
        app.include_router(module.router)

    return app


app = create_app()
