"""In-process change feed.

Services publish a typed change event after every committed mutation.
Subscribers receive the events that match their type list and optional
predicate, in publish order, through an async iterator:

    with feed.subscribe(["chat.message.posted"]) as subscription:
        async for event in subscription:
            ...
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import logfire

from carepath.core.events import EventRegistry

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from carepath.core.events import BaseEvent


_CLOSED = object()


class Subscription:
    """One subscriber's view of the change feed."""

    def __init__(
        self,
        feed: ChangeFeed,
        event_types: list[str] | None = None,
        predicate: Callable[[BaseEvent], bool] | None = None,
    ) -> None:
        self._feed = feed
        self.event_types = set(event_types) if event_types else None
        self.predicate = predicate
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self.closed = False

    def matches(self, event: BaseEvent) -> bool:
        """Check the type list first, then the predicate."""
        event_type = getattr(event, "type", None)
        if self.event_types is not None and event_type not in self.event_types:
            return False
        if self.predicate is None:
            return True
        try:
            return self.predicate(event)
        except Exception as e:
            logfire.warning(
                "Subscription predicate failed",
                event_id=event.id,
                error=str(e),
            )
            return False

    def deliver(self, event: BaseEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    @property
    def backlog(self) -> int:
        """Events delivered but not yet consumed."""
        return self._queue.qsize()

    async def get(self, timeout: float | None = None) -> BaseEvent | None:
        """Wait for the next event.

        Returns:
            The next event, or None if the subscription closed or the
            timeout elapsed
        """
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None
        if item is _CLOSED:
            return None
        return item  # type: ignore[return-value]

    def close(self) -> None:
        """Stop receiving events and wake any pending consumer."""
        if self.closed:
            return
        self.closed = True
        self._feed.unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> BaseEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    def __enter__(self) -> Subscription:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class ChangeFeed:
    """Publish/subscribe of change events keyed by event type.

    Delivery is synchronous with publish: when publish() returns, every
    matching subscriber has the event queued. There is no persistence;
    subscribers that join late do not see earlier events.
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: BaseEvent) -> None:
        """Deliver an event to every matching subscriber.

        Args:
            event: Change event to announce
        """
        event_type = getattr(event, "type", "unknown")
        with logfire.span("feed.publish", event_id=event.id, event_type=event_type):
            delivered = 0
            for subscription in list(self._subscriptions):
                if subscription.matches(event):
                    subscription.deliver(event)
                    delivered += 1
            logfire.debug("Event published", event_id=event.id, delivered=delivered)

    def subscribe(
        self,
        event_types: list[str] | None = None,
        predicate: Callable[[BaseEvent], bool] | None = None,
    ) -> Subscription:
        """Open a subscription.

        Args:
            event_types: Only deliver these event types (None for all)
            predicate: Extra filter applied after the type check

        Returns:
            Subscription usable as an async iterator and context manager

        Raises:
            ValueError: If an event type is not registered
        """
        for event_type in event_types or []:
            if EventRegistry.get(event_type) is None:
                msg = f"Unknown event type: {event_type}"
                raise ValueError(msg)
        subscription = Subscription(self, event_types, predicate)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def close(self) -> None:
        """Close every open subscription."""
        for subscription in list(self._subscriptions):
            subscription.close()
