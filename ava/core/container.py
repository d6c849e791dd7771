"""Composition layer: build and hold long-lived service objects for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass

from ava.agent.events.device_registry import DeviceRegistry
from ava.agent.llm.llm_config import LLMConfig, resolve_llm_config
from ava.agent.runtime.pipeline import AssistantPipeline, PipelineOptions
from ava.core.config import Settings
from ava.infra.llm.openai_client import OpenAICompatibleClient
from ava.infra.storage.media_store import MediaStore


@dataclass
class AppContainer:
    """Container object attached to FastAPI app state."""

    settings: Settings
    llm_config: LLMConfig
    registry: DeviceRegistry
    media_store: MediaStore
    ai_client: OpenAICompatibleClient
    pipeline: AssistantPipeline


def build_container(settings: Settings) -> AppContainer:
    """Construct runtime dependencies in one place."""
    llm_config = resolve_llm_config(settings)
    registry = DeviceRegistry(
        bus_capacity=settings.event_bus_capacity,
        max_devices=settings.device_registry_max_devices,
        idle_seconds=settings.device_registry_idle_seconds,
        shard_count=settings.device_registry_shards,
    )
    media_store = MediaStore(settings.assets_dir)
    ai_client = OpenAICompatibleClient(llm_config)
    pipeline = AssistantPipeline(
        registry=registry,
        ai_client=ai_client,
        media_store=media_store,
        options=PipelineOptions(
            assistant_name=settings.assistant_name,
            user_name=settings.user_name,
            transcription_language=settings.transcription_language,
            emit_input_skeleton=settings.pipeline_emit_input_skeleton,
            emit_finish_signals=settings.pipeline_emit_finish_signals,
        ),
    )
    return AppContainer(
        settings=settings,
        llm_config=llm_config,
        registry=registry,
        media_store=media_store,
        ai_client=ai_client,
        pipeline=pipeline,
    )
