"""Maps CarepathError to the JSON error body every route shares."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse

from carepath.core.errors import CarepathError  # noqa: TC001 - Runtime annotation

if TYPE_CHECKING:
    from fastapi import Request

logger = logging.getLogger(__name__)


async def carepath_exception_handler(request: Request, exc: CarepathError) -> JSONResponse:
    """Render a service error as {"error": {...}} with its own status code.

    Server-side failures (store down, classifier down) log at error level;
    client mistakes such as a duplicate resolve only warn.
    """
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "%s %s failed with %s: %s",
        request.method,
        request.url.path,
        exc.code.value,
        exc.message,
        extra={"error_code": exc.code.value, "details": exc.details},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())
