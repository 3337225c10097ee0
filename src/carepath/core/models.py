"""Value models passed between the gateway, policy engine and services.

These are transient Pydantic models. Persisted entities live in
``carepath.infra.tables``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from carepath.core.enums import (
    ContentType,
    FlagSeverity,
    ModerationAction,
    SuicideRisk,
    UrgencyLevel,
    VerdictLevel,
)


class ContentSubmission(BaseModel):
    """Free text entering the moderation pipeline.

    Attributes:
        text: The submitted text
        author_id: Submitting user
        content_type: post, comment or message
        content_id: Id of an existing content item, if any
        target_id: Parent post for comments, chat room for messages
        image_url: Attached image; any attachment forces manual review
        topic: Feed topic chosen by the author
        is_anonymous: Publish without the author's identity
    """

    text: str
    author_id: str
    content_type: ContentType
    content_id: str | None = None
    target_id: str | None = None
    image_url: str | None = None
    topic: str | None = None
    is_anonymous: bool = False

    @property
    def has_attachment(self) -> bool:
        return bool(self.image_url and self.image_url.strip())


class ModerationVerdict(BaseModel):
    """Structured classifier output for one piece of text."""

    model_config = ConfigDict(frozen=True)

    level: VerdictLevel
    reasoning: str = ""
    confidence: int = Field(default=0, ge=0, le=100)


class Unavailable(BaseModel):
    """The classifier could not produce a verdict.

    Never equivalent to SAFE: the policy engine routes it to manual review.
    """

    model_config = ConfigDict(frozen=True)

    reason: str


# Sum type returned by ClassifierGateway.classify()
Verdict = ModerationVerdict | Unavailable


class ModerationDecision(BaseModel):
    """Policy engine output.

    Attributes:
        action: Routing outcome
        message: Fixed user-facing text for the outcome
        severity: Flag severity to record, if the action records one
        pending_reason: Reason stored on the pending record, for PENDING
    """

    model_config = ConfigDict(frozen=True)

    action: ModerationAction
    message: str
    severity: FlagSeverity | None = None
    pending_reason: str | None = None

    @property
    def publishes(self) -> bool:
        """Whether the content becomes visible immediately."""
        return self.action in (ModerationAction.ALLOW, ModerationAction.FLAG_MILD)


class TriageAssessment(BaseModel):
    """Risk assessment of a student conversation.

    Accepts both the camelCase keys the model is prompted with and
    snake_case keys used in storage.
    """

    model_config = ConfigDict(populate_by_name=True)

    urgency_level: UrgencyLevel = Field(default=UrgencyLevel.NORMAL, alias="urgencyLevel")
    suicide_risk: SuicideRisk = Field(default=SuicideRisk.NONE, alias="suicideRisk")
    main_issues: list[str] = Field(default_factory=list, alias="mainIssues")
    emotional_state: str = Field(default="", alias="emotionalState")
    summary: str = ""

    @field_validator("urgency_level", mode="before")
    @classmethod
    def clamp_urgency(cls, v: Any) -> int:
        """Assessments only use the 0-3 scale; COMPLETED is staff-only."""
        try:
            level = int(v)
        except (TypeError, ValueError) as e:
            msg = f"urgency level must be an integer, got {v!r}"
            raise ValueError(msg) from e
        return max(int(UrgencyLevel.NORMAL), min(level, int(UrgencyLevel.CRITICAL)))

    @field_validator("suicide_risk", mode="before")
    @classmethod
    def normalize_risk(cls, v: Any) -> str:
        value = str(v or "none").strip().lower()
        return value if value in {r.value for r in SuicideRisk} else SuicideRisk.NONE.value

    @property
    def is_critical(self) -> bool:
        return self.suicide_risk == SuicideRisk.HIGH


class TriageReply(BaseModel):
    """Assistant reply plus an optional assessment."""

    response: str
    assessment: TriageAssessment | None = None


class ConversationTurn(BaseModel):
    """One entry of the assistant's conversation history."""

    model_config = ConfigDict(frozen=True)

    content: str
    is_assistant: bool = False
