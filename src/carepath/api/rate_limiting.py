"""Per-address limit on content submissions (slowapi).

Each submission costs a classifier call. The limit string is resolved per
request so a settings change applies without rebuilding the app.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from carepath.config import get_settings
from carepath.core.errors import RateLimitError

if TYPE_CHECKING:
    from fastapi import Request
    from slowapi.errors import RateLimitExceeded


def submission_rate_limit() -> str:
    """Current submission limit, read from settings on every request."""
    settings = get_settings()
    return f"{settings.rate_limit_requests}/{settings.rate_limit_window}second"


limiter = Limiter(key_func=get_remote_address)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Answer 429 with the shared RATE_LIMITED error body."""
    error = RateLimitError(
        f"Rate limit exceeded: {exc.detail}",
        details={"path": request.url.path},
    )
    return JSONResponse(status_code=error.status_code, content=error.to_response())
