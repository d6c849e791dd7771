"""Test fixtures shared by unit/integration tests."""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Any

import pytest

from ava.agent.events.device_registry import DeviceRegistry
from ava.infra.llm.openai_client import ChatCompletionResult, GeneratedImage
from ava.infra.storage.media_store import MediaStore

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"fake-image-body" * 4
MP3_BYTES = b"ID3" + b"fake-speech-body" * 4


class FakeAiClient:
    """In-process stand-in for the OpenAI-compatible client."""

    def __init__(self) -> None:
        self.transcript = "hello there"
        self.chat_results: list[ChatCompletionResult | Exception] = []
        self.speech_audio: bytes | Exception = MP3_BYTES
        self.image: GeneratedImage | Exception = GeneratedImage(
            image_base64=base64.b64encode(PNG_BYTES).decode("ascii"),
            revised_prompt="a fluffy cat, watercolor",
        )
        self.transcribe_error: Exception | None = None
        self.calls: list[tuple[str, Any]] = []

    async def transcribe(
        self,
        audio: bytes,
        *,
        language: str,
        filename: str = "audio.webm",
        content_type: str = "application/octet-stream",
    ) -> str:
        self.calls.append(("transcribe", {"bytes": len(audio), "language": language}))
        if self.transcribe_error is not None:
            raise self.transcribe_error
        return self.transcript

    async def chat_completion(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
    ) -> ChatCompletionResult:
        self.calls.append(("chat_completion", {"messages": messages, "tools": tools}))
        if not self.chat_results:
            raise AssertionError("unexpected chat_completion call")
        result = self.chat_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def text_to_speech(self, text: str) -> bytes:
        self.calls.append(("text_to_speech", text))
        if isinstance(self.speech_audio, Exception):
            raise self.speech_audio
        return self.speech_audio

    async def generate_image(self, prompt: str) -> GeneratedImage:
        self.calls.append(("generate_image", prompt))
        if isinstance(self.image, Exception):
            raise self.image
        return self.image

    async def aclose(self) -> None:
        return None

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def fake_ai() -> FakeAiClient:
    return FakeAiClient()


@pytest.fixture
def media_store(tmp_path: Path) -> MediaStore:
    store = MediaStore(tmp_path / "assets")
    store.ensure_root()
    return store


@pytest.fixture
def registry() -> DeviceRegistry:
    return DeviceRegistry(bus_capacity=128, max_devices=64, shard_count=4)
