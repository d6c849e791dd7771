"""Wire encoding for assistant events streamed over server-sent events."""

from __future__ import annotations

import json
from typing import Literal

from ava.agent.events.event_types import (
    AssistantEvent,
    InputEvent,
    InputSkeletonEvent,
    ReplyEvent,
    ReplySkeletonEvent,
    SignalEvent,
)

WireTag = Literal["signal", "input", "reply"]

KEEPALIVE_FRAME = ": keep-alive\n\n"


def wire_tag(event: AssistantEvent) -> WireTag:
    """Map every event variant to its SSE `event:` name."""
    if isinstance(event, SignalEvent):
        return "signal"
    if isinstance(event, (InputSkeletonEvent, InputEvent)):
        return "input"
    if isinstance(event, (ReplySkeletonEvent, ReplyEvent)):
        return "reply"
    raise TypeError(f"unsupported assistant event: {type(event).__name__}")


def correlation_id(event: AssistantEvent) -> str | None:
    if isinstance(event, SignalEvent):
        return None
    if isinstance(event, (InputSkeletonEvent, InputEvent, ReplySkeletonEvent, ReplyEvent)):
        return event.id
    raise TypeError(f"unsupported assistant event: {type(event).__name__}")


def format_sse(event: AssistantEvent) -> str:
    tag = wire_tag(event)
    body = json.dumps(event.model_dump(mode="json"), ensure_ascii=False)
    event_id = correlation_id(event)
    lines = [f"event: {tag}"]
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"data: {body}")
    return "\n".join(lines) + "\n\n"
