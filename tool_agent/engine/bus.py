"""Ordered, bounded fan-out of run events to consumers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, AsyncIterator, Awaitable, Callable, Union

from tool_agent.engine.events import AgentEvent

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100

EventObserver = Callable[[AgentEvent], Union[Awaitable[Any], Any]]


class EventSubscription:
    """A FIFO of events for one consumer, bounded unless ``capacity`` is None.

    ``put`` waits while the subscription is full; iteration ends once the bus
    is closed and everything queued before the close has been delivered.
    """

    def __init__(self, capacity: int | None = DEFAULT_CAPACITY) -> None:
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._items: deque[AgentEvent] = deque()
        self._closed = False
        self._readable = asyncio.Event()
        self._writable = asyncio.Event()
        self._writable.set()

    def __len__(self) -> int:
        return len(self._items)

    @property
    def full(self) -> bool:
        return self.capacity is not None and len(self._items) >= self.capacity

    async def put(self, event: AgentEvent) -> None:
        while self.full:
            self._writable.clear()
            await self._writable.wait()
        self._push(event)

    def put_nowait(self, event: AgentEvent) -> bool:
        if self.full:
            return False
        self._push(event)
        return True

    def _push(self, event: AgentEvent) -> None:
        self._items.append(event)
        self._readable.set()

    def close(self) -> None:
        self._closed = True
        self._readable.set()

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        return self

    async def __anext__(self) -> AgentEvent:
        while not self._items:
            if self._closed:
                raise StopAsyncIteration
            self._readable.clear()
            await self._readable.wait()
        event = self._items.popleft()
        self._writable.set()
        return event


class EventBus:
    """Single-producer bus. Strict FIFO per subscription, no coalescing.

    ``publish`` applies backpressure: it returns only when every bounded
    subscription has room for the event. Observer subscriptions are unbounded,
    so a slow observer never holds up the producer.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self.capacity = capacity
        self._subscriptions: list[EventSubscription] = []
        self._observer_tasks: list[asyncio.Task[None]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, capacity: int | None = None, *, bounded: bool = True) -> EventSubscription:
        if self._closed:
            raise RuntimeError("event bus is closed")
        sub = EventSubscription((capacity or self.capacity) if bounded else None)
        self._subscriptions.append(sub)
        return sub

    def add_observer(self, observer: EventObserver) -> asyncio.Task[None]:
        """Run ``observer`` for every event on a separate consumer task.

        The observer reads an unbounded subscription. Its failures are logged
        and never reach the producer.
        """
        sub = self.subscribe(bounded=False)
        task = asyncio.create_task(_drive_observer(sub, observer))
        self._observer_tasks.append(task)
        return task

    async def publish(self, event: AgentEvent) -> None:
        if self._closed:
            raise RuntimeError("event bus is closed")
        for sub in self._subscriptions:
            await sub.put(event)

    def publish_nowait(self, event: AgentEvent) -> bool:
        """Best-effort publish; subscriptions that are full miss the event."""
        if self._closed:
            return False
        delivered = True
        for sub in self._subscriptions:
            delivered = sub.put_nowait(event) and delivered
        return delivered

    def close(self) -> None:
        """Signal end-of-stream. Idempotent."""
        if self._closed:
            return
        self._closed = True
        for sub in self._subscriptions:
            sub.close()

    async def drain_observers(self) -> None:
        """Wait for every observer to consume what was published before ``close``."""
        if self._observer_tasks:
            await asyncio.gather(*self._observer_tasks)


async def _drive_observer(sub: EventSubscription, observer: EventObserver) -> None:
    async for event in sub:
        try:
            outcome = observer(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("event observer %r failed on %s event", observer, event.kind)
