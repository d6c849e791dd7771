"""Stream API layer: per-device SSE endpoint with keep-alive and clean disconnects."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from ava.agent.events.encoding import KEEPALIVE_FRAME, format_sse
from ava.agent.events.event_bus import Subscription
from ava.agent.events.event_types import ASSISTANT_TOPIC
from ava.api.deps import get_container, mint_device_id, read_device_id, set_device_cookie
from ava.core.container import AppContainer
from ava.infra.observability.logger import get_logger

router = APIRouter(tags=["stream"])
logger = get_logger(__name__)

RETRY_FRAME = "retry: 3000\n\n"


async def event_frames(
    subscription: Subscription,
    *,
    keepalive_seconds: float,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
) -> AsyncIterator[str]:
    """Encode a subscription as SSE frames, interleaving periodic keep-alives."""
    loop = asyncio.get_running_loop()
    interval = max(0.05, keepalive_seconds)
    next_keepalive = loop.time() + interval
    try:
        yield RETRY_FRAME
        while not subscription.closed:
            if is_disconnected is not None and await is_disconnected():
                break
            batch = await subscription.next_batch(timeout=max(0.0, next_keepalive - loop.time()))
            for event in batch:
                yield format_sse(event)
            if loop.time() >= next_keepalive:
                yield KEEPALIVE_FRAME
                next_keepalive = loop.time() + interval
    finally:
        subscription.close()


@router.get("/events")
async def events(
    request: Request,
    container: AppContainer = Depends(get_container),
) -> StreamingResponse:
    settings = container.settings
    device_id = read_device_id(request, settings.device_cookie_name)
    minted = device_id is None
    if device_id is None:
        device_id = mint_device_id()
    bus = container.registry.get_or_create(device_id, ASSISTANT_TOPIC)
    subscription = bus.subscribe()
    logger.info(
        "sse.connected device_id=%s minted=%s subscribers=%s",
        device_id,
        minted,
        bus.subscriber_count,
    )

    async def iterator() -> AsyncIterator[str]:
        try:
            async for frame in event_frames(
                subscription,
                keepalive_seconds=settings.sse_keepalive_seconds,
                is_disconnected=request.is_disconnected,
            ):
                yield frame
        finally:
            logger.info(
                "sse.disconnected device_id=%s dropped=%s",
                device_id,
                subscription.dropped,
            )

    response = StreamingResponse(
        iterator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        background=BackgroundTask(subscription.close),
    )
    if minted:
        set_device_cookie(response, container, device_id)
    return response
