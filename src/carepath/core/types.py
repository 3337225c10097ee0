"""Protocol definitions for cross-module type hints.

Services type their classifier dependency against ClassifierProtocol
rather than the concrete gateway, so the moderation and triage modules
never import each other's implementations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence

    from carepath.core.models import (
        ConversationTurn,
        TriageAssessment,
        TriageReply,
        Unavailable,
        Verdict,
    )


class ClassifierProtocol(Protocol):
    """Protocol for the classifier gateway."""

    async def classify(self, text: str) -> Verdict:
        """Classify one piece of text for moderation."""
        ...

    async def assess(
        self, history: Sequence[ConversationTurn], message: str
    ) -> TriageReply | Unavailable:
        """Generate a triage reply and risk assessment."""
        ...

    async def summarize(
        self, history: Sequence[ConversationTurn]
    ) -> TriageAssessment | Unavailable:
        """Assess a whole transcript without replying."""
        ...
