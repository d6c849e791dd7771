"""Lifecycle hooks: startup diagnostics, registry sweeping and client shutdown."""

from __future__ import annotations

import asyncio

from ava.core.container import AppContainer
from ava.infra.observability.logger import get_logger

logger = get_logger(__name__)


async def _sweep_idle_devices(container: AppContainer) -> None:
    interval = max(1.0, container.settings.device_registry_sweep_seconds)
    while True:
        await asyncio.sleep(interval)
        removed = container.registry.evict_idle()
        if removed:
            logger.info("registry.sweep removed=%s stats=%s", len(removed), container.registry.stats())


def on_startup(container: AppContainer) -> asyncio.Task[None]:
    container.media_store.ensure_root()
    logger.info(
        "Assistant ready: assets=%s chat_model=%s llm_enabled=%s profile=%s",
        container.media_store.root,
        container.llm_config.chat_model,
        container.llm_config.enabled,
        container.llm_config.profile_name,
    )
    if not container.llm_config.enabled:
        logger.warning("OPENAI_API_KEY is not set; every upload will end with an error signal.")
    return asyncio.create_task(_sweep_idle_devices(container), name="registry-sweeper")


async def on_shutdown(container: AppContainer, sweeper: asyncio.Task[None] | None) -> None:
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
    await container.ai_client.aclose()
    logger.info("Ava assistant shutdown complete.")
