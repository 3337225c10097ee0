"""Logfire setup for the service and its integrations."""

from __future__ import annotations

from typing import TYPE_CHECKING

import logfire

from carepath.config import get_settings

if TYPE_CHECKING:
    from fastapi import FastAPI

# Attribute names that may carry what a student wrote
STUDENT_TEXT_PATTERNS = [r"^content$", r"^text$", r"^ai_reason$", r"^notes?$"]


def configure_observability() -> None:
    """Set up Logfire once per process, before the app starts serving.

    Spans go to the console in development and to Logfire only when a
    token is configured. Student text is scrubbed from span attributes
    on top of Logfire's default credential patterns.
    """
    settings = get_settings()
    console = logfire.ConsoleOptions() if settings.environment == "development" else False
    logfire.configure(
        token=settings.logfire_token,
        service_name="carepath",
        service_version=settings.version,
        environment=settings.environment,
        console=console,
        send_to_logfire=True if settings.logfire_token else "if-token-present",
        scrubbing=logfire.ScrubbingOptions(extra_patterns=STUDENT_TEXT_PATTERNS),
    )


def instrument_app(app: FastAPI) -> None:
    """Trace requests, classifier runs and the store.

    asyncpg is only instrumented against PostgreSQL; httpx covers the
    model provider calls made by pydantic-ai.
    """
    logfire.instrument_fastapi(app)
    logfire.instrument_pydantic_ai()
    if get_settings().database_url.startswith("postgresql"):
        logfire.instrument_asyncpg()
    logfire.instrument_httpx()
