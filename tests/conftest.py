"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
from collections import defaultdict
from typing import TYPE_CHECKING, Any

import logfire
import pytest
from pydantic_ai.messages import ModelResponse, TextPart, UserPromptPart
from pydantic_ai.models.function import FunctionModel
from sqlalchemy.ext.asyncio import create_async_engine

from carepath.config import Settings, configure_settings
from carepath.core.deps import CarepathDeps
from carepath.infra.database import create_session_factory, init_database
from carepath.infra.feed import ChangeFeed
from carepath.moderation.gateway import ClassifierGateway

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
    from pathlib import Path

    from pydantic_ai.messages import ModelMessage
    from pydantic_ai.models.function import AgentInfo
    from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

    from carepath.core.events import BaseEvent
    from carepath.infra.feed import Subscription

logfire.configure(send_to_logfire=False, console=False)


def verdict_json(level: str, reasoning: str = "", confidence: int = 90) -> str:
    return json.dumps({"level": level, "reasoning": reasoning, "confidence": confidence})


def triage_json(response: str, assessment: dict[str, Any] | None = None) -> str:
    payload: dict[str, Any] = {"response": response}
    if assessment is not None:
        payload["assessment"] = assessment
    return json.dumps(payload, ensure_ascii=False)


async def collect(subscription: Subscription) -> list[BaseEvent]:
    """Everything currently queued on a subscription."""
    events: list[BaseEvent] = []
    while subscription.backlog:
        event = await subscription.get(timeout=1.0)
        if event is not None:
            events.append(event)
    return events


class ScriptedClassifier:
    """Canned model replies served through a PydanticAI FunctionModel.

    Replies are queued per operation, recognised from the prompt text.
    An Exception in the queue is raised from the model call instead.
    """

    DEFAULTS = {
        "classify": verdict_json("SAFE"),
        "assess": triage_json("Mình đang lắng nghe em."),
        "summarize": json.dumps({"urgencyLevel": 0, "suicideRisk": "none"}),
    }

    def __init__(self) -> None:
        self.queues: dict[str, list[str | Exception]] = defaultdict(list)
        self.prompts: dict[str, list[str]] = defaultdict(list)

    def push(self, operation: str, *replies: str | Exception) -> None:
        self.queues[operation].extend(replies)

    def calls(self, operation: str) -> int:
        return len(self.prompts[operation])

    @staticmethod
    def operation_for(prompt: str) -> str:
        if "content moderator" in prompt:
            return "classify"
        if "Reply to the student" in prompt:
            return "assess"
        return "summarize"

    def respond(self, messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        prompt = "".join(
            str(part.content)
            for part in messages[-1].parts
            if isinstance(part, UserPromptPart)
        )
        operation = self.operation_for(prompt)
        self.prompts[operation].append(prompt)
        queue = self.queues[operation]
        reply = queue.pop(0) if queue else self.DEFAULTS[operation]
        if isinstance(reply, Exception):
            raise reply
        return ModelResponse(parts=[TextPart(content=reply)])


# --- Settings ---


@pytest.fixture
def settings() -> Iterator[Settings]:
    """Test settings with immediate assistant timers."""
    test_settings = Settings(
        environment="test",
        database_url="sqlite+aiosqlite://",
        assistant_intro_delay=0.0,
        critical_followup_delay=0.0,
        classifier_timeout=5.0,
    )
    configure_settings(test_settings)
    yield test_settings
    configure_settings(None)


# --- Store fixtures (SQLite file per test) ---


@pytest.fixture
async def engine(tmp_path: Path, settings: Settings) -> AsyncIterator[AsyncEngine]:
    """Create a fresh SQLite database with all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'carepath.db'}")
    await init_database(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def feed() -> Iterator[ChangeFeed]:
    feed = ChangeFeed()
    yield feed
    feed.close()


# --- Classifier fixtures ---


@pytest.fixture
def scripted() -> ScriptedClassifier:
    return ScriptedClassifier()


@pytest.fixture
def gateway(scripted: ScriptedClassifier, settings: Settings) -> ClassifierGateway:
    """Real gateway over a FunctionModel, so parsing is exercised."""
    return ClassifierGateway(model=FunctionModel(scripted.respond), settings=settings)


# --- Service graph ---


@pytest.fixture
async def deps(
    session_factory: async_sessionmaker[AsyncSession],
    feed: ChangeFeed,
    gateway: ClassifierGateway,
    settings: Settings,
) -> AsyncIterator[CarepathDeps]:
    deps = CarepathDeps.build(session_factory, feed, gateway, settings)
    yield deps
    await deps.triage.shutdown()


@pytest.fixture
def triage_subscription(deps: CarepathDeps) -> Iterator[Subscription]:
    """Chat events for the triage manager, opened before the test acts."""
    subscription = deps.triage.subscribe()
    yield subscription
    subscription.close()


@pytest.fixture
def settle(
    deps: CarepathDeps, triage_subscription: Subscription
) -> Callable[[], Awaitable[None]]:
    """Dispatch queued chat events and wait for assistant work until quiet."""

    async def _settle() -> None:
        for _ in range(50):
            while triage_subscription.backlog:
                event = await triage_subscription.get(timeout=1.0)
                if event is not None:
                    await deps.triage.dispatch(event)
            await deps.triage.drain()
            if not triage_subscription.backlog:
                return

    return _settle
