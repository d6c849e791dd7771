"""Event layer: lazily created per-device event buses with bounded lifetime.

Devices are spread over independent shards, each guarded by its own lock, so
lookups for unrelated devices rarely contend. Within a shard, devices are kept
in least-recently-used order. A device becomes evictable once none of its
buses has a live subscription or an in-flight publisher; eviction happens
when a shard exceeds its capacity or when a device stays idle past
``idle_seconds``.
"""

from __future__ import annotations

import math
from collections import OrderedDict
from dataclasses import dataclass, field
from threading import Lock
from time import monotonic
from typing import Callable
from zlib import crc32

from ava.agent.events.event_bus import EventBus
from ava.infra.observability.logger import get_logger

logger = get_logger(__name__)


@dataclass
class DeviceSession:
    """Buses owned by one device, keyed by topic."""

    device_id: str
    buses: dict[str, EventBus] = field(default_factory=dict)
    last_seen: float = 0.0

    def in_use(self) -> bool:
        return any(bus.in_use for bus in self.buses.values())


class _Shard:
    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        self.lock = Lock()
        self.sessions: OrderedDict[str, DeviceSession] = OrderedDict()


class DeviceRegistry:
    """Thread-safe map of device_id -> topic -> EventBus."""

    def __init__(
        self,
        *,
        bus_capacity: int = 128,
        max_devices: int = 1024,
        idle_seconds: float = 3600.0,
        shard_count: int = 16,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._bus_capacity = bus_capacity
        self._idle_seconds = idle_seconds
        self._clock = clock
        count = max(1, shard_count)
        per_shard = max(1, math.ceil(max(1, max_devices) / count))
        self._shards = [_Shard(per_shard) for _ in range(count)]

    def get_or_create(self, device_id: str, topic: str, *, publisher: bool = False) -> EventBus:
        """Return the bus for (device_id, topic), creating device and bus atomically.

        With ``publisher=True`` the bus is also leased to the caller under the
        shard lock; the device stays pinned until ``release_publisher()``.
        """
        shard = self._shard_for(device_id)
        now = self._clock()
        evicted: list[str] = []
        with shard.lock:
            session = shard.sessions.get(device_id)
            if session is None:
                session = DeviceSession(device_id=device_id)
                shard.sessions[device_id] = session
                evicted = self._evict_over_capacity(shard, keep=device_id)
            else:
                shard.sessions.move_to_end(device_id)
            session.last_seen = now
            bus = session.buses.get(topic)
            if bus is None:
                bus = EventBus(device_id=device_id, topic=topic, capacity=self._bus_capacity)
                session.buses[topic] = bus
                logger.debug("registry.bus_created device_id=%s topic=%s", device_id, topic)
            if publisher:
                bus.acquire_publisher()
        for evicted_id in evicted:
            logger.info("registry.evicted device_id=%s reason=capacity", evicted_id)
        return bus

    def get(self, device_id: str, topic: str) -> EventBus | None:
        """Return an existing bus without creating or touching it."""
        shard = self._shard_for(device_id)
        with shard.lock:
            session = shard.sessions.get(device_id)
            if session is None:
                return None
            return session.buses.get(topic)

    def evict_idle(self, now: float | None = None) -> list[str]:
        """Drop devices idle longer than idle_seconds that have no live subscribers or publishers."""
        current = self._clock() if now is None else now
        removed: list[str] = []
        for shard in self._shards:
            with shard.lock:
                for device_id, session in list(shard.sessions.items()):
                    if current - session.last_seen < self._idle_seconds:
                        continue
                    if session.in_use():
                        continue
                    del shard.sessions[device_id]
                    removed.append(device_id)
        for device_id in removed:
            logger.info("registry.evicted device_id=%s reason=idle", device_id)
        return removed

    def stats(self) -> dict[str, int]:
        devices = 0
        buses = 0
        subscribers = 0
        for shard in self._shards:
            with shard.lock:
                devices += len(shard.sessions)
                for session in shard.sessions.values():
                    buses += len(session.buses)
                    subscribers += sum(bus.subscriber_count for bus in session.buses.values())
        return {"devices": devices, "buses": buses, "subscribers": subscribers}

    def __contains__(self, device_id: object) -> bool:
        if not isinstance(device_id, str):
            return False
        shard = self._shard_for(device_id)
        with shard.lock:
            return device_id in shard.sessions

    def _shard_for(self, device_id: str) -> _Shard:
        return self._shards[crc32(device_id.encode("utf-8")) % len(self._shards)]

    def _evict_over_capacity(self, shard: _Shard, *, keep: str) -> list[str]:
        removed: list[str] = []
        overflow = len(shard.sessions) - shard.capacity
        if overflow <= 0:
            return removed
        for device_id, session in list(shard.sessions.items()):
            if overflow <= 0:
                break
            if device_id == keep or session.in_use():
                continue
            del shard.sessions[device_id]
            removed.append(device_id)
            overflow -= 1
        return removed
