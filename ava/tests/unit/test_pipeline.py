"""Unit tests for the assistant pipeline state machine and its event ordering."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from ava.agent.errors import StorageError, UpstreamServiceError
from ava.agent.events.device_registry import DeviceRegistry
from ava.agent.events.event_types import (
    ASSISTANT_TOPIC,
    ImageReply,
    InputEvent,
    InputSkeletonEvent,
    MarkdownReply,
    ReplyEvent,
    ReplySkeletonEvent,
    SignalEvent,
    SpeechReply,
)
from ava.agent.runtime.pipeline import AssistantPipeline, PipelineOptions, UploadField
from ava.infra.llm.openai_client import ChatCompletionResult, GeneratedImage, ModelToolCall
from ava.infra.storage.media_store import ASSETS_URL_PREFIX, MediaStore
from conftest import MP3_BYTES, PNG_BYTES, FakeAiClient

DEVICE = "device0001"


def _audio_fields(name: str = "audio") -> list[UploadField]:
    return [
        UploadField(
            name=name,
            content=b"RIFFfake-audio",
            filename="clip.webm",
            content_type="audio/webm",
        )
    ]


def _tool_result(*calls: tuple[str, object]) -> ChatCompletionResult:
    tool_calls = [
        ModelToolCall(
            call_id=f"call_{index}",
            name=name,
            arguments=arguments if isinstance(arguments, str) else json.dumps(arguments),
        )
        for index, (name, arguments) in enumerate(calls)
    ]
    return ChatCompletionResult(finish_reason="tool_calls", tool_calls=tool_calls)


def _pipeline(
    registry: DeviceRegistry,
    fake_ai: FakeAiClient,
    media_store: MediaStore,
    **options: bool,
) -> AssistantPipeline:
    return AssistantPipeline(
        registry=registry,
        ai_client=fake_ai,  # type: ignore[arg-type]
        media_store=media_store,
        options=PipelineOptions(**options),
    )


def _describe(event: object) -> tuple[str, ...]:
    if isinstance(event, SignalEvent):
        if event.kind in {"processing", "finish"}:
            return ("signal", event.kind, event.step.value if event.step else "")
        return ("signal", event.kind)
    if isinstance(event, InputSkeletonEvent):
        return ("input_skeleton",)
    if isinstance(event, InputEvent):
        return ("input", event.content)
    if isinstance(event, ReplySkeletonEvent):
        return ("reply_skeleton",)
    if isinstance(event, ReplyEvent):
        return ("reply", event.data.type)
    raise AssertionError(f"unexpected event {event!r}")


def _artifact_bytes(media_store: MediaStore, url: str) -> bytes:
    relative = url.removeprefix(ASSETS_URL_PREFIX + "/")
    return (media_store.root / Path(relative)).read_bytes()


@pytest.mark.asyncio
async def test_draw_image_publishes_documented_sequence(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.transcript = "draw a cat"
    fake_ai.chat_results = [_tool_result(("draw_image", {"prompt": "a cat"}))]
    subscription = registry.get_or_create(DEVICE, ASSISTANT_TOPIC).subscribe()

    invocation = await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())
    events = subscription.poll()

    assert [_describe(event) for event in events] == [
        ("signal", "processing", "upload_audio"),
        ("signal", "processing", "transcription"),
        ("input", "draw a cat"),
        ("signal", "processing", "thinking"),
        ("reply_skeleton",),
        ("signal", "processing", "draw_image"),
        ("reply", "image"),
        ("signal", "complete"),
    ]
    assert invocation.succeeded
    ids = {event.id for event in events if isinstance(event, (InputEvent, ReplySkeletonEvent, ReplyEvent))}
    assert ids == {invocation.invocation_id}

    reply = events[6]
    assert isinstance(reply, ReplyEvent) and isinstance(reply.data, ImageReply)
    assert reply.data.prompt == "a fluffy cat, watercolor"
    assert reply.data.url.startswith(f"/assets/image/{DEVICE}/")
    assert _artifact_bytes(media_store, reply.data.url) == PNG_BYTES
    assert ("generate_image", "a cat") in fake_ai.calls


@pytest.mark.asyncio
async def test_wrong_field_name_fails_immediately(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    subscription = registry.get_or_create(DEVICE, ASSISTANT_TOPIC).subscribe()

    invocation = await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields("clip"))
    events = subscription.poll()

    assert [_describe(event) for event in events] == [
        ("signal", "processing", "upload_audio"),
        ("signal", "error"),
    ]
    assert events[-1].message == "expected an audio field"
    assert events[-1].severity == "error"
    assert invocation.finished and not invocation.succeeded
    assert fake_ai.calls == []


@pytest.mark.asyncio
async def test_extra_fields_or_text_values_are_rejected(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    pipeline = _pipeline(registry, fake_ai, media_store)

    two_fields = await pipeline.process(DEVICE, _audio_fields() + _audio_fields())
    text_value = await pipeline.process(DEVICE, [UploadField(name="audio", content=None)])

    assert two_fields.error_message == "expected an audio field"
    assert text_value.error_message == "expected an audio field"


@pytest.mark.asyncio
async def test_unsupported_finish_reason_is_fatal(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.chat_results = [ChatCompletionResult(finish_reason="length", content="partial")]
    subscription = registry.get_or_create(DEVICE, ASSISTANT_TOPIC).subscribe()

    invocation = await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())
    events = subscription.poll()

    assert _describe(events[-1]) == ("signal", "error")
    assert events[-1].message == "stop reason not supported"
    assert invocation.error_message == "stop reason not supported"
    assert not any(isinstance(event, ReplySkeletonEvent) for event in events)


@pytest.mark.asyncio
async def test_unknown_tool_name_is_fatal(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.chat_results = [_tool_result(("Draw_Image", {"prompt": "a cat"}))]

    invocation = await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())

    assert invocation.error_message == "no proper tool found"


@pytest.mark.asyncio
async def test_malformed_tool_arguments_propagate_as_error(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.chat_results = [_tool_result(("draw_image", "{not json"))]

    invocation = await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())

    assert invocation.error_message is not None
    assert invocation.error_message.startswith("invalid arguments for tool 'draw_image'")
    assert "generate_image" not in fake_ai.call_names()


@pytest.mark.asyncio
async def test_stop_reason_reuses_text_for_speech(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.transcript = "how are you"
    fake_ai.chat_results = [ChatCompletionResult(finish_reason="stop", content="I am fine, thanks.")]
    subscription = registry.get_or_create(DEVICE, ASSISTANT_TOPIC).subscribe()

    invocation = await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())
    events = subscription.poll()

    assert [_describe(event) for event in events][3:] == [
        ("signal", "processing", "thinking"),
        ("reply_skeleton",),
        ("signal", "processing", "answer"),
        ("signal", "processing", "speech"),
        ("reply", "speech"),
        ("signal", "complete"),
    ]
    assert fake_ai.call_names() == ["transcribe", "chat_completion", "text_to_speech"]
    reply = events[-2]
    assert isinstance(reply, ReplyEvent) and isinstance(reply.data, SpeechReply)
    assert reply.data.text == "I am fine, thanks."
    assert reply.data.url.startswith(f"/assets/audio/{DEVICE}/")
    assert reply.data.url.endswith(".mp3")
    assert _artifact_bytes(media_store, reply.data.url) == MP3_BYTES
    assert invocation.succeeded


@pytest.mark.asyncio
async def test_answer_tool_asks_for_a_fresh_reply(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.chat_results = [
        _tool_result(("answer", {"prompt": "what is the capital of France"})),
        ChatCompletionResult(finish_reason="stop", content="Paris."),
    ]

    invocation = await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())

    assert invocation.succeeded
    assert fake_ai.call_names() == [
        "transcribe",
        "chat_completion",
        "chat_completion",
        "text_to_speech",
    ]
    answer_messages = fake_ai.calls[2][1]["messages"]
    assert answer_messages[-1]["content"] == "what is the capital of France"
    assert fake_ai.calls[2][1]["tools"] is None
    assert ("text_to_speech", "Paris.") in fake_ai.calls


@pytest.mark.asyncio
async def test_only_first_tool_call_is_used(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.chat_results = [
        _tool_result(("draw_image", {"prompt": "a dog"}), ("write_code", {"prompt": "hello world"})),
    ]

    invocation = await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())

    assert invocation.succeeded
    assert invocation.tool_call is not None
    assert invocation.tool_call.tool.value == "draw_image"
    assert fake_ai.call_names().count("chat_completion") == 1


@pytest.mark.asyncio
async def test_write_code_publishes_sanitized_markdown(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.chat_results = [
        _tool_result(("write_code", {"prompt": "fizzbuzz in python"})),
        ChatCompletionResult(
            finish_reason="stop",
            content="Here you go:\n\n```python\nprint('fizz')\n```\n\n<script>alert(1)</script>",
        ),
    ]
    subscription = registry.get_or_create(DEVICE, ASSISTANT_TOPIC).subscribe()

    await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())
    events = subscription.poll()

    assert ("signal", "processing", "write_code") in [_describe(event) for event in events]
    reply = events[-2]
    assert isinstance(reply, ReplyEvent) and isinstance(reply.data, MarkdownReply)
    assert "<pre" in reply.data.html
    assert "style=" in reply.data.html
    assert "<script" not in reply.data.html
    assert "text_to_speech" not in fake_ai.call_names()


@pytest.mark.asyncio
async def test_upstream_failure_after_skeleton_ends_with_single_error(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.chat_results = [ChatCompletionResult(finish_reason="stop", content="Sure.")]
    fake_ai.speech_audio = UpstreamServiceError("speech synthesis", "http_error status=500")
    subscription = registry.get_or_create(DEVICE, ASSISTANT_TOPIC).subscribe()

    await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())
    events = subscription.poll()

    terminal = [event for event in events if isinstance(event, SignalEvent) and event.is_terminal]
    assert len(terminal) == 1
    assert terminal[0].kind == "error"
    assert terminal[0].message == "speech synthesis failed: http_error status=500"
    assert any(isinstance(event, ReplySkeletonEvent) for event in events)
    assert not any(isinstance(event, ReplyEvent) for event in events)


@pytest.mark.asyncio
async def test_transcription_failure_stops_before_input(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.transcribe_error = UpstreamServiceError("transcription", "timeout_error request timed out")
    subscription = registry.get_or_create(DEVICE, ASSISTANT_TOPIC).subscribe()

    await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())

    assert [_describe(event) for event in subscription.poll()] == [
        ("signal", "processing", "upload_audio"),
        ("signal", "processing", "transcription"),
        ("signal", "error"),
    ]


@pytest.mark.asyncio
async def test_invalid_base64_image_is_an_upstream_error(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.chat_results = [_tool_result(("draw_image", {"prompt": "a cat"}))]
    fake_ai.image = GeneratedImage(image_base64="!!not-base64!!", revised_prompt="a cat")

    invocation = await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())

    assert invocation.error_message == "image generation failed: image payload is not valid base64"


@pytest.mark.asyncio
async def test_storage_failure_is_reported(
    registry: DeviceRegistry, fake_ai: FakeAiClient, tmp_path: Path
) -> None:
    blocked = tmp_path / "blocked"
    blocked.write_text("not a directory", encoding="utf-8")
    fake_ai.chat_results = [_tool_result(("draw_image", {"prompt": "a cat"}))]

    invocation = await _pipeline(registry, fake_ai, MediaStore(blocked)).process(
        DEVICE, _audio_fields()
    )

    assert invocation.error_message is not None
    assert invocation.error_message.startswith("failed to store image artifact")


@pytest.mark.asyncio
async def test_unexpected_exception_still_publishes_terminal_error(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.chat_results = [KeyError("boom")]

    invocation = await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())

    assert invocation.error_message == "internal error: KeyError"


@pytest.mark.asyncio
async def test_verbose_mode_adds_input_skeleton_and_finish_signals(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.transcript = "draw a cat"
    fake_ai.chat_results = [_tool_result(("draw_image", {"prompt": "a cat"}))]
    subscription = registry.get_or_create(DEVICE, ASSISTANT_TOPIC).subscribe()
    pipeline = _pipeline(
        registry,
        fake_ai,
        media_store,
        emit_input_skeleton=True,
        emit_finish_signals=True,
    )

    await pipeline.process(DEVICE, _audio_fields())

    assert [_describe(event) for event in subscription.poll()] == [
        ("signal", "processing", "upload_audio"),
        ("signal", "finish", "upload_audio"),
        ("input_skeleton",),
        ("signal", "processing", "transcription"),
        ("signal", "finish", "transcription"),
        ("input", "draw a cat"),
        ("signal", "processing", "thinking"),
        ("signal", "finish", "thinking"),
        ("reply_skeleton",),
        ("signal", "processing", "draw_image"),
        ("signal", "finish", "draw_image"),
        ("reply", "image"),
        ("signal", "complete"),
    ]


@pytest.mark.asyncio
async def test_subscriber_joining_after_completion_sees_nothing(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.chat_results = [ChatCompletionResult(finish_reason="stop", content="Done.")]
    await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields())

    late = registry.get_or_create(DEVICE, ASSISTANT_TOPIC).subscribe()

    assert late.poll() == []


@pytest.mark.asyncio
async def test_every_reply_follows_its_skeleton_across_invocations(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    fake_ai.chat_results = [
        ChatCompletionResult(finish_reason="stop", content="One."),
        _tool_result(("draw_image", {"prompt": "two"})),
        ChatCompletionResult(finish_reason="length"),
    ]
    subscription = registry.get_or_create(DEVICE, ASSISTANT_TOPIC).subscribe()
    pipeline = _pipeline(registry, fake_ai, media_store)

    for _ in range(3):
        await pipeline.process(DEVICE, _audio_fields())

    seen_skeletons: set[str] = set()
    terminals = 0
    for event in subscription.poll():
        if isinstance(event, ReplySkeletonEvent):
            seen_skeletons.add(event.id)
        if isinstance(event, ReplyEvent):
            assert event.id in seen_skeletons
        if isinstance(event, SignalEvent) and event.is_terminal:
            terminals += 1
    assert terminals == 3


def test_storage_error_is_part_of_taxonomy() -> None:
    assert StorageError("x").category == "storage_failure"


@pytest.mark.asyncio
async def test_device_stays_pinned_until_invocation_finishes(
    fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    registry = DeviceRegistry(max_devices=1, shard_count=1)
    fake_ai.chat_results = [ChatCompletionResult(finish_reason="stop", content="Hi.")]
    pipeline = _pipeline(registry, fake_ai, media_store)

    invocation = pipeline.start(DEVICE)
    upload = pipeline.accept_upload(invocation, _audio_fields())
    registry.get_or_create("other-device", ASSISTANT_TOPIC)
    viewer = registry.get_or_create(DEVICE, ASSISTANT_TOPIC).subscribe()

    assert upload is not None
    assert registry.get(DEVICE, ASSISTANT_TOPIC) is invocation.bus
    await pipeline.run(invocation, upload)

    assert _describe(viewer.poll()[-1]) == ("signal", "complete")
    viewer.close()
    assert not invocation.bus.in_use


@pytest.mark.asyncio
async def test_rejected_upload_releases_publisher_lease(
    registry: DeviceRegistry, fake_ai: FakeAiClient, media_store: MediaStore
) -> None:
    invocation = await _pipeline(registry, fake_ai, media_store).process(DEVICE, _audio_fields("clip"))

    assert invocation.finished
    assert not invocation.bus.in_use
