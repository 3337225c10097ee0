"""Content submission endpoint.

Every post, comment and student chat message enters the system here and
is routed by the moderation pipeline.
"""

# No `from __future__ import annotations`: the slowapi decorator wraps the
# endpoint and FastAPI resolves its annotations against the wrapper.

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from carepath.api.deps import DepsDep
from carepath.api.rate_limiting import limiter, submission_rate_limit
from carepath.core.enums import ModerationAction
from carepath.core.models import ContentSubmission

router = APIRouter(prefix="/submissions", tags=["submissions"])


class SubmissionResponse(BaseModel):
    """Routing outcome returned to the author."""

    action: ModerationAction = Field(description="Routing outcome")
    message: str = Field(description="User-facing explanation")
    published_id: str | None = Field(default=None, description="Published content id")
    pending_id: str | None = Field(default=None, description="Pending review record id")
    flag_id: str | None = Field(default=None, description="Flag record id")


@router.post(
    "",
    response_model=SubmissionResponse,
    summary="Submit content for moderation",
    description="Classify a post, comment or chat message and route it.",
    responses={
        200: {"description": "Submission routed"},
        422: {"description": "Invalid submission"},
        429: {"description": "Too many submissions"},
        500: {"description": "Content could not be stored; retry with the same draft"},
    },
)
@limiter.limit(submission_rate_limit)
async def submit_content(
    request: Request,
    submission: ContentSubmission,
    deps: DepsDep,
) -> SubmissionResponse:
    """Moderate a submission.

    Args:
        request: The current request (used for rate limiting)
        submission: Content to moderate
        deps: Service graph

    Returns:
        The action taken and the fixed user-facing message
    """
    outcome = await deps.pipeline.submit(submission)
    return SubmissionResponse(
        action=outcome.action,
        message=outcome.message,
        published_id=outcome.published_id,
        pending_id=outcome.pending_id,
        flag_id=outcome.flag_id,
    )
