"""Classifier gateway.

The only component that talks to the external language model. It sends
a single-turn prompt through PydanticAI, extracts the JSON object from
the text reply and returns a typed result. Every failure (provider
error, timeout, empty or malformed output) becomes Unavailable; a
failed classification is never reported as SAFE.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import logfire
from pydantic_ai import Agent
from pydantic_ai.settings import ModelSettings

from carepath.config import get_settings
from carepath.core.enums import VerdictLevel
from carepath.core.models import ModerationVerdict, Unavailable
from carepath.moderation.parsing import parse_summary, parse_triage_reply, parse_verdict
from carepath.moderation.prompts import moderation_prompt, summary_prompt, triage_prompt

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pydantic_ai.models import Model

    from carepath.config import Settings
    from carepath.core.models import (
        ConversationTurn,
        TriageAssessment,
        TriageReply,
        Verdict,
    )


class ClassifierGateway:
    """Moderation and triage calls against a PydanticAI model.

    Example:
        gateway = ClassifierGateway()
        verdict = await gateway.classify("Hôm nay mình thấy rất mệt mỏi")
        if isinstance(verdict, Unavailable):
            ...
    """

    def __init__(
        self,
        model: Model | str | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            model: PydanticAI model or "provider:model-name" string
                (defaults to settings.classifier_model)
            settings: Settings override (defaults to get_settings())
        """
        self.settings = settings or get_settings()
        self.model = model or self.settings.classifier_model
        self._agent: Agent[None, str] | None = None

    def _get_agent(self) -> Agent[None, str]:
        """Get or create the PydanticAI agent instance.

        Creation is deferred to the first call so a missing provider key
        surfaces as Unavailable instead of an import-time failure.
        """
        if self._agent is None:
            self.settings.export_provider_keys()
            self._agent = Agent(self.model, output_type=str)
        return self._agent

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        """Run one prompt with low temperature and a hard timeout."""
        agent = self._get_agent()
        model_settings = ModelSettings(
            temperature=self.settings.classifier_temperature,
            max_tokens=max_tokens,
        )
        result = await asyncio.wait_for(
            agent.run(prompt, model_settings=model_settings),
            timeout=self.settings.classifier_timeout,
        )
        return result.output

    async def _call(self, operation: str, prompt: str, max_tokens: int) -> str | Unavailable:
        try:
            return await self._complete(prompt, max_tokens)
        except TimeoutError:
            logfire.warning(
                "Classifier timed out",
                operation=operation,
                timeout=self.settings.classifier_timeout,
            )
            return Unavailable(reason="classifier timed out")
        except Exception as e:
            logfire.warning(
                "Classifier call failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            return Unavailable(reason=f"classifier error: {type(e).__name__}")

    async def classify(self, text: str) -> Verdict:
        """Classify text for moderation.

        Empty or whitespace-only text is SAFE without a model call.

        Args:
            text: Submitted text

        Returns:
            ModerationVerdict or Unavailable
        """
        if not text or not text.strip():
            return ModerationVerdict(level=VerdictLevel.SAFE, confidence=100)

        with logfire.span("gateway.classify", text_length=len(text)):
            raw = await self._call(
                "classify",
                moderation_prompt(text, self.settings.classifier_reason_max_chars),
                self.settings.classifier_max_output_tokens,
            )
            if isinstance(raw, Unavailable):
                return raw

            verdict = parse_verdict(raw, self.settings.classifier_reason_max_chars)
            self._log_result("classify", verdict)
            return verdict

    async def assess(
        self, history: Sequence[ConversationTurn], message: str
    ) -> TriageReply | Unavailable:
        """Generate an assistant reply and a risk assessment.

        Args:
            history: Conversation so far, oldest first
            message: Latest student message

        Returns:
            TriageReply (assessment may be None) or Unavailable
        """
        with logfire.span("gateway.assess", history_length=len(history)):
            raw = await self._call(
                "assess",
                triage_prompt(history, message, self.settings.assistant_name),
                self.settings.triage_max_output_tokens,
            )
            if isinstance(raw, Unavailable):
                return raw

            reply = parse_triage_reply(raw)
            self._log_result("assess", reply)
            return reply

    async def summarize(
        self, history: Sequence[ConversationTurn]
    ) -> TriageAssessment | Unavailable:
        """Assess a whole transcript for staff, without replying."""
        with logfire.span("gateway.summarize", history_length=len(history)):
            raw = await self._call(
                "summarize",
                summary_prompt(history, self.settings.assistant_name),
                self.settings.triage_max_output_tokens,
            )
            if isinstance(raw, Unavailable):
                return raw

            assessment = parse_summary(raw)
            self._log_result("summarize", assessment)
            return assessment

    def _log_result(self, operation: str, result: Any) -> None:
        if isinstance(result, Unavailable):
            logfire.warning("Classifier output rejected", operation=operation, reason=result.reason)
        elif isinstance(result, ModerationVerdict):
            logfire.info(
                "Content classified",
                level=result.level.value,
                confidence=result.confidence,
            )
        else:
            logfire.info("Classifier completed", operation=operation)
