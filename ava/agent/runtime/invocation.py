"""Per-upload invocation state: target bus, intermediate results, publish guards."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from ava.agent.events.event_bus import EventBus
from ava.agent.events.event_types import (
    AssistantEvent,
    AssistantStep,
    ReplyEvent,
    ReplySkeletonEvent,
    SignalEvent,
)
from ava.agent.tools.dispatcher import ToolInvocation


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass
class PipelineInvocation:
    """One assistant invocation; discarded once its terminal signal is published.

    The bus arrives leased by the registry; the lease is released with the
    terminal signal so the device cannot be evicted while results are pending.
    """

    invocation_id: str
    device_id: str
    bus: EventBus
    step: AssistantStep | None = None
    transcript: str | None = None
    tool_call: ToolInvocation | None = None
    reply_text: str | None = None
    artifact_url: str | None = None
    error_message: str | None = None
    published: int = 0
    started_at: str = field(default_factory=_utc_now_iso)
    _open_skeletons: set[str] = field(default_factory=set, init=False, repr=False)
    _terminal: SignalEvent | None = field(default=None, init=False, repr=False)

    @property
    def finished(self) -> bool:
        return self._terminal is not None

    @property
    def succeeded(self) -> bool:
        return self._terminal is not None and self._terminal.kind == "complete"

    def publish(self, event: AssistantEvent) -> None:
        """Publish one event in invocation order, enforcing the ordering guarantees."""
        if self._terminal is not None:
            raise RuntimeError(
                f"invocation {self.invocation_id} already finished with '{self._terminal.kind}'"
            )
        if isinstance(event, ReplySkeletonEvent):
            self._open_skeletons.add(event.id)
        elif isinstance(event, ReplyEvent):
            if event.id not in self._open_skeletons:
                raise RuntimeError(f"reply '{event.id}' published without a reply skeleton")
            self._open_skeletons.discard(event.id)
        elif isinstance(event, SignalEvent) and event.is_terminal:
            self._terminal = event
        self.bus.publish(event)
        self.published += 1
        if self._terminal is not None:
            self.bus.release_publisher()
