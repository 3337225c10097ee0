"""Turn free-form model text into typed verdicts.

Everything that looks for a JSON object inside model output lives here,
so the rest of the service only sees ModerationVerdict, TriageReply,
TriageAssessment or Unavailable.
"""

from __future__ import annotations

import json
from typing import Any

import logfire
from pydantic import ValidationError

from carepath.core.enums import VerdictLevel
from carepath.core.models import (
    ModerationVerdict,
    TriageAssessment,
    TriageReply,
    Unavailable,
)

_LEVELS = {level.value for level in VerdictLevel}


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Return the first JSON object found in text, or None.

    Tries the whole string first, then decodes from the first '{' so
    prose or code fences around the object are ignored.
    """
    raw = (text or "").strip()
    if not raw:
        return None
    try:
        obj = json.loads(raw)
        return obj if isinstance(obj, dict) else None
    except json.JSONDecodeError:
        pass

    start = raw.find("{")
    if start < 0:
        return None
    try:
        obj, _ = json.JSONDecoder().raw_decode(raw, start)
    except json.JSONDecodeError:
        end = raw.rfind("}")
        if end <= start:
            return None
        try:
            obj = json.loads(raw[start : end + 1])
        except json.JSONDecodeError:
            return None
    return obj if isinstance(obj, dict) else None


def clamp_confidence(value: Any) -> int:
    try:
        confidence = int(float(value))
    except (TypeError, ValueError):
        return 0
    return max(0, min(confidence, 100))


def parse_verdict(text: str | None, max_reason_chars: int) -> ModerationVerdict | Unavailable:
    """Parse a moderation response.

    Args:
        text: Raw model output
        max_reason_chars: Cap applied to the reasoning string

    Returns:
        ModerationVerdict, or Unavailable for empty, unparseable or
        unknown-level output
    """
    data = extract_json_object(text)
    if data is None:
        return Unavailable(reason="unparseable classifier response")

    level = str(data.get("level") or "").strip().upper()
    if level not in _LEVELS:
        return Unavailable(reason=f"unknown verdict level: {level or 'missing'}")

    # Older prompts used "reason" instead of "reasoning"
    reasoning = str(data.get("reasoning") or data.get("reason") or "").strip()
    return ModerationVerdict(
        level=VerdictLevel(level),
        reasoning=reasoning[:max_reason_chars],
        confidence=clamp_confidence(data.get("confidence")),
    )


def parse_assessment(data: Any) -> TriageAssessment | None:
    if not isinstance(data, dict):
        return None
    try:
        return TriageAssessment.model_validate(data)
    except ValidationError as e:
        logfire.warning("Discarding invalid assessment", error=str(e))
        return None


def parse_triage_reply(text: str | None) -> TriageReply | Unavailable:
    """Parse a triage response into a reply plus optional assessment.

    A missing or invalid assessment still yields a reply; a missing
    reply is Unavailable.
    """
    data = extract_json_object(text)
    if data is None:
        return Unavailable(reason="unparseable triage response")

    response = str(data.get("response") or "").strip()
    if not response:
        return Unavailable(reason="triage response has no reply text")

    return TriageReply(response=response, assessment=parse_assessment(data.get("assessment")))


def parse_summary(text: str | None) -> TriageAssessment | Unavailable:
    """Parse an assessment-only response."""
    data = extract_json_object(text)
    if data is None:
        return Unavailable(reason="unparseable summary response")
    # Accept both a bare assessment and one wrapped in {"assessment": ...}
    assessment = parse_assessment(data.get("assessment", data))
    if assessment is None:
        return Unavailable(reason="summary response has no valid assessment")
    return assessment
