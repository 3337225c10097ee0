"""Prompt templates for the classifier gateway.

Each prompt asks the model for a single JSON object and nothing else;
the gateway extracts the first object from whatever text comes back.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from carepath.core.models import ConversationTurn

MODERATION_PROMPT = """You are a mental health content moderator for a Vietnamese school \
counseling platform. Analyze this content for concerning language.

Content: "{content}"

Categorize into ONE of these levels:
1. BLOCK - Contains aggressive, violent, hateful, or harmful language toward others
2. HIGH - Contains suicide ideation, self-harm intent, or severe depression requiring \
immediate attention
3. MEDIUM - Contains mild depression, sadness, or distress but no immediate danger
4. SAFE - Normal content, no concerns

Respond in this EXACT JSON format:
{{
  "level": "BLOCK|HIGH|MEDIUM|SAFE",
  "reasoning": "Brief explanation in Vietnamese (max {max_chars} characters)",
  "confidence": 0-100
}}

Only respond with the JSON, nothing else."""


TRIAGE_PROMPT = """You are {assistant_name}, a warm and supportive psychological assistant \
for students of a Vietnamese school counseling service. A counselor will join the \
conversation later; until then you listen, comfort and gently ask questions. Never \
diagnose, never give medical advice, and always answer in Vietnamese.

Conversation so far:
{history}

Latest message from the student: "{message}"

Reply to the student, then assess their situation. Respond in this EXACT JSON format:
{{
  "response": "Your reply to the student in Vietnamese (2-4 sentences)",
  "assessment": {{
    "urgencyLevel": 0-3,
    "suicideRisk": "none|low|medium|high",
    "mainIssues": ["short issue labels in Vietnamese"],
    "emotionalState": "Short description in Vietnamese",
    "summary": "One or two sentence summary for the counselor, in Vietnamese"
  }}
}}

Urgency levels: 0 = normal, 1 = needs attention, 2 = urgent, 3 = critical \
(immediate danger to self or others).

Only respond with the JSON, nothing else."""


SUMMARY_PROMPT = """You are assisting a school counselor. Read the whole conversation \
between a student and the support team and assess the student's situation.

Conversation:
{history}

Respond in this EXACT JSON format:
{{
  "urgencyLevel": 0-3,
  "suicideRisk": "none|low|medium|high",
  "mainIssues": ["short issue labels in Vietnamese"],
  "emotionalState": "Short description in Vietnamese",
  "summary": "Two to four sentence summary for the counselor, in Vietnamese"
}}

Urgency levels: 0 = normal, 1 = needs attention, 2 = urgent, 3 = critical.

Only respond with the JSON, nothing else."""


def format_history(history: Sequence[ConversationTurn], assistant_name: str) -> str:
    """Render conversation turns as speaker-prefixed lines."""
    if not history:
        return "(no previous messages)"
    lines = []
    for turn in history:
        speaker = assistant_name if turn.is_assistant else "Student"
        lines.append(f"{speaker}: {turn.content}")
    return "\n".join(lines)


def moderation_prompt(content: str, max_chars: int) -> str:
    return MODERATION_PROMPT.format(content=content, max_chars=max_chars)


def triage_prompt(
    history: Sequence[ConversationTurn], message: str, assistant_name: str
) -> str:
    return TRIAGE_PROMPT.format(
        assistant_name=assistant_name,
        history=format_history(history, assistant_name),
        message=message,
    )


def summary_prompt(history: Sequence[ConversationTurn], assistant_name: str) -> str:
    return SUMMARY_PROMPT.format(history=format_history(history, assistant_name))
