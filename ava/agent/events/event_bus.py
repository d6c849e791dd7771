"""Event layer: bounded in-memory broadcast bus for one (device, topic) pair.

Publishing is synchronous and never waits on subscribers. The bus keeps the
newest ``capacity`` events in a ring buffer; every subscription reads with its
own cursor that starts at the next event published after it subscribed.

Drop policy (drop-oldest): when a subscription falls so far behind that the
events at its cursor have already been overwritten, it resumes at the oldest
event still retained and adds the number of skipped events to ``dropped``.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from itertools import islice
from threading import Lock

from ava.agent.events.event_types import AssistantEvent
from ava.infra.observability.logger import get_logger

logger = get_logger(__name__)


class Subscription:
    """Independent read cursor over one EventBus."""

    def __init__(self, bus: "EventBus", cursor: int) -> None:
        self._bus = bus
        self._cursor = cursor
        self._ready = asyncio.Event()
        try:
            self._loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cursor(self) -> int:
        return self._cursor

    def poll(self) -> list[AssistantEvent]:
        """Return every event available to this subscription without waiting."""
        if self._closed:
            return []
        events, self._cursor, skipped = self._bus._read_from(self._cursor)
        if skipped:
            self.dropped += skipped
            logger.warning(
                "bus.lagged device_id=%s topic=%s skipped=%s dropped_total=%s",
                self._bus.device_id,
                self._bus.topic,
                skipped,
                self.dropped,
            )
        return events

    async def next_batch(self, timeout: float | None = None) -> list[AssistantEvent]:
        """Wait until events are available; return [] on timeout or close."""
        while not self._closed:
            self._ready.clear()
            batch = self.poll()
            if batch:
                return batch
            try:
                await asyncio.wait_for(self._ready.wait(), timeout)
            except asyncio.TimeoutError:
                return []
        return []

    async def __aiter__(self) -> AsyncIterator[AssistantEvent]:
        while not self._closed:
            for event in await self.next_batch():
                yield event

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._unsubscribe(self)
        self._wake()

    def _wake(self) -> None:
        loop = self._loop
        if loop is None:
            self._ready.set()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._ready.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(self._ready.set)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()


class EventBus:
    """Multi-producer/multi-consumer broadcast channel with bounded history."""

    def __init__(self, *, device_id: str, topic: str, capacity: int = 128) -> None:
        self.device_id = device_id
        self.topic = topic
        self._capacity = max(1, capacity)
        self._events: deque[AssistantEvent] = deque(maxlen=self._capacity)
        self._next_seq = 1
        self._subscribers: set[Subscription] = set()
        self._publishers = 0
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def in_use(self) -> bool:
        """True while a subscriber is reading or an invocation still holds a publish lease."""
        with self._lock:
            return bool(self._subscribers) or self._publishers > 0

    def acquire_publisher(self) -> None:
        with self._lock:
            self._publishers += 1

    def release_publisher(self) -> None:
        with self._lock:
            self._publishers = max(0, self._publishers - 1)

    @property
    def published_count(self) -> int:
        with self._lock:
            return self._next_seq - 1

    def publish(self, event: AssistantEvent) -> int:
        """Append one event and wake all subscribers; return its sequence number."""
        with self._lock:
            seq = self._next_seq
            self._next_seq += 1
            self._events.append(event)
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription._wake()
        return seq

    def subscribe(self) -> Subscription:
        """Open a subscription that sees only events published from now on."""
        with self._lock:
            subscription = Subscription(self, self._next_seq)
            self._subscribers.add(subscription)
            return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)

    def _read_from(self, cursor: int) -> tuple[list[AssistantEvent], int, int]:
        with self._lock:
            next_seq = self._next_seq
            if cursor >= next_seq:
                return [], cursor, 0
            oldest = next_seq - len(self._events)
            skipped = 0
            if cursor < oldest:
                skipped = oldest - cursor
                cursor = oldest
            events = list(islice(self._events, cursor - oldest, None))
            return events, next_seq, skipped
