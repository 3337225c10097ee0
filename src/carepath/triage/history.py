"""Assistant-local conversation history for one chat room."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

from carepath.core.models import ConversationTurn

if TYPE_CHECKING:
    from collections.abc import Iterator


class ConversationHistory:
    """Ordered student/assistant turns sent to the classifier as context.

    Only the most recent `max_turns` entries are kept.
    """

    def __init__(self, max_turns: int = 20) -> None:
        self._turns: deque[ConversationTurn] = deque(maxlen=max_turns)

    def add_student(self, content: str) -> None:
        self._turns.append(ConversationTurn(content=content, is_assistant=False))

    def add_assistant(self, content: str) -> None:
        self._turns.append(ConversationTurn(content=content, is_assistant=True))

    def turns(self) -> list[ConversationTurn]:
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(self._turns)
