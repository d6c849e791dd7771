"""Assistant pipeline: drive one audio upload through transcription, tool choice and a branch.

States are entered in this order, each announced by a processing signal:

    upload_audio -> transcription -> thinking -> {answer | draw_image | write_code}
    -> (answer only) speech -> complete

Any failure ends the invocation with exactly one error signal. Every branch
publishes a reply skeleton before its slow external call and the matching reply
once it resolves.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from dataclasses import dataclass
from uuid import uuid4

from ava.agent.context.prompts import (
    answer_messages,
    tool_selection_messages,
    write_code_messages,
)
from ava.agent.errors import (
    AssistantError,
    InputValidationError,
    UnsupportedFinishReasonError,
    UpstreamServiceError,
)
from ava.agent.events.device_registry import DeviceRegistry
from ava.agent.events.event_types import (
    ASSISTANT_TOPIC,
    AssistantStep,
    ImageReply,
    InputEvent,
    InputSkeletonEvent,
    MarkdownReply,
    ReplyEvent,
    ReplySkeletonEvent,
    SignalEvent,
    SpeechReply,
)
from ava.agent.render.markdown_renderer import render_markdown
from ava.agent.runtime.invocation import PipelineInvocation
from ava.agent.tools.dispatcher import ToolInvocation, dispatch_tool
from ava.agent.tools.schemas import AnswerArgs, AssistantTool, build_tool_definitions
from ava.infra.llm.openai_client import OpenAICompatibleClient
from ava.infra.observability.logger import get_logger, short_text
from ava.infra.storage.media_store import MediaStore

logger = get_logger(__name__)

AUDIO_FIELD = "audio"


@dataclass(frozen=True)
class UploadField:
    """One multipart field; ``content`` is None for plain (non-file) values."""

    name: str
    content: bytes | None
    filename: str | None = None
    content_type: str | None = None


@dataclass(frozen=True)
class AudioUpload:
    content: bytes
    filename: str
    content_type: str


@dataclass(frozen=True)
class PipelineOptions:
    assistant_name: str = "Ava"
    user_name: str = "User"
    transcription_language: str = "en"
    emit_input_skeleton: bool = False
    emit_finish_signals: bool = False


def extract_audio(fields: list[UploadField]) -> AudioUpload:
    """Require exactly one multipart file field named `audio`."""
    if len(fields) != 1 or fields[0].name != AUDIO_FIELD or fields[0].content is None:
        raise InputValidationError("expected an audio field")
    field = fields[0]
    if not field.content:
        raise InputValidationError("audio field is empty")
    return AudioUpload(
        content=field.content,
        filename=field.filename or "audio.webm",
        content_type=field.content_type or "application/octet-stream",
    )


class AssistantPipeline:
    """Step-sequenced orchestrator publishing progress and results to a device bus."""

    def __init__(
        self,
        *,
        registry: DeviceRegistry,
        ai_client: OpenAICompatibleClient,
        media_store: MediaStore,
        options: PipelineOptions | None = None,
    ) -> None:
        self._registry = registry
        self._ai_client = ai_client
        self._media_store = media_store
        self._options = options or PipelineOptions()
        self._tools = build_tool_definitions()

    def start(self, device_id: str) -> PipelineInvocation:
        """Create an invocation bound to the device bus and enter upload_audio."""
        bus = self._registry.get_or_create(device_id, ASSISTANT_TOPIC, publisher=True)
        invocation = PipelineInvocation(
            invocation_id=uuid4().hex,
            device_id=device_id,
            bus=bus,
        )
        logger.info(
            "pipeline.start device_id=%s invocation_id=%s subscribers=%s",
            device_id,
            invocation.invocation_id,
            bus.subscriber_count,
        )
        self._enter(invocation, AssistantStep.UPLOAD_AUDIO)
        return invocation

    def accept_upload(
        self, invocation: PipelineInvocation, fields: list[UploadField]
    ) -> AudioUpload | None:
        """Validate the upload shape; publish the terminal error and return None if invalid."""
        try:
            upload = extract_audio(fields)
        except InputValidationError as exc:
            logger.info(
                "pipeline.upload_rejected device_id=%s invocation_id=%s fields=%s",
                invocation.device_id,
                invocation.invocation_id,
                [item.name for item in fields],
            )
            self._fail(invocation, exc)
            return None
        self._leave(invocation, AssistantStep.UPLOAD_AUDIO)
        if self._options.emit_input_skeleton:
            invocation.publish(
                InputSkeletonEvent(id=invocation.invocation_id, name=self._options.user_name)
            )
        return upload

    async def run(self, invocation: PipelineInvocation, upload: AudioUpload) -> bool:
        """Execute the remaining states; return True when the invocation completed."""
        try:
            await self._execute(invocation, upload)
        except AssistantError as exc:
            self._fail(invocation, exc)
        except asyncio.CancelledError:
            self._fail_message(invocation, "invocation cancelled")
            raise
        except Exception as exc:
            logger.exception(
                "pipeline.crashed device_id=%s invocation_id=%s step=%s",
                invocation.device_id,
                invocation.invocation_id,
                invocation.step.value if invocation.step else "-",
            )
            self._fail_message(invocation, f"internal error: {type(exc).__name__}")
        return invocation.succeeded

    async def process(self, device_id: str, fields: list[UploadField]) -> PipelineInvocation:
        """Run one upload end to end in the caller's task."""
        invocation = self.start(device_id)
        upload = self.accept_upload(invocation, fields)
        if upload is not None:
            await self.run(invocation, upload)
        return invocation

    async def _execute(self, invocation: PipelineInvocation, upload: AudioUpload) -> None:
        transcript = await self._transcribe(invocation, upload)
        invocation.transcript = transcript
        invocation.publish(InputEvent(id=invocation.invocation_id, content=transcript))

        tool_call, prepared_text = await self._think(invocation, transcript)
        invocation.tool_call = tool_call

        invocation.publish(
            ReplySkeletonEvent(id=invocation.invocation_id, name=self._options.assistant_name)
        )
        tool = tool_call.tool
        if tool is AssistantTool.DRAW_IMAGE:
            reply = await self._draw_image(invocation, tool_call.prompt)
        elif tool is AssistantTool.WRITE_CODE:
            reply = await self._write_code(invocation, tool_call.prompt)
        elif tool is AssistantTool.ANSWER:
            reply = await self._answer(invocation, tool_call.prompt, prepared_text)
        else:
            raise TypeError(f"unhandled tool: {tool!r}")

        invocation.publish(ReplyEvent(id=invocation.invocation_id, data=reply))
        invocation.publish(SignalEvent.complete())
        logger.info(
            "pipeline.complete device_id=%s invocation_id=%s tool=%s events=%s",
            invocation.device_id,
            invocation.invocation_id,
            tool.value,
            invocation.published,
        )

    async def _transcribe(self, invocation: PipelineInvocation, upload: AudioUpload) -> str:
        self._enter(invocation, AssistantStep.TRANSCRIPTION)
        transcript = await self._ai_client.transcribe(
            upload.content,
            language=self._options.transcription_language,
            filename=upload.filename,
            content_type=upload.content_type,
        )
        if not transcript.strip():
            raise UpstreamServiceError("transcription", "transcript is empty")
        self._leave(invocation, AssistantStep.TRANSCRIPTION)
        return transcript

    async def _think(
        self, invocation: PipelineInvocation, transcript: str
    ) -> tuple[ToolInvocation, str | None]:
        """Ask the tool-selecting model which branch to take.

        A plain `stop` answer becomes an implicit answer branch that reuses the
        returned text; `tool_calls` consumes the first call only.
        """
        self._enter(invocation, AssistantStep.THINKING)
        result = await self._ai_client.chat_completion(
            tool_selection_messages(
                transcript,
                assistant_name=self._options.assistant_name,
                user_name=self._options.user_name,
            ),
            tools=self._tools,
        )
        if result.finish_reason == "stop":
            text = (result.content or "").strip()
            if not text:
                raise UpstreamServiceError("chat completion", "stop reply has no content")
            decision = ToolInvocation(tool=AssistantTool.ANSWER, args=AnswerArgs(prompt=transcript))
            prepared: str | None = text
        elif result.finish_reason == "tool_calls":
            if not result.tool_calls:
                raise UpstreamServiceError("chat completion", "tool_calls reply has no tool call")
            first = result.tool_calls[0]
            if len(result.tool_calls) > 1:
                logger.info(
                    "pipeline.extra_tool_calls_ignored invocation_id=%s ignored=%s",
                    invocation.invocation_id,
                    [call.name for call in result.tool_calls[1:]],
                )
            decision = dispatch_tool(first.name, first.arguments)
            prepared = None
        else:
            raise UnsupportedFinishReasonError(result.finish_reason)
        logger.info(
            "pipeline.tool_selected device_id=%s invocation_id=%s tool=%s implicit=%s prompt=%s",
            invocation.device_id,
            invocation.invocation_id,
            decision.tool.value,
            prepared is not None,
            short_text(decision.prompt, limit=80),
        )
        self._leave(invocation, AssistantStep.THINKING)
        return decision, prepared

    async def _draw_image(self, invocation: PipelineInvocation, prompt: str) -> ImageReply:
        self._enter(invocation, AssistantStep.DRAW_IMAGE)
        image = await self._ai_client.generate_image(prompt)
        try:
            content = base64.b64decode(image.image_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise UpstreamServiceError("image generation", "image payload is not valid base64") from exc
        stored = await self._media_store.save("image", invocation.device_id, content)
        invocation.artifact_url = stored.url
        self._leave(invocation, AssistantStep.DRAW_IMAGE)
        return ImageReply(url=stored.url, prompt=image.revised_prompt)

    async def _write_code(self, invocation: PipelineInvocation, prompt: str) -> MarkdownReply:
        self._enter(invocation, AssistantStep.WRITE_CODE)
        text = await self._complete_text(
            write_code_messages(
                prompt,
                assistant_name=self._options.assistant_name,
                user_name=self._options.user_name,
            )
        )
        invocation.reply_text = text
        html = render_markdown(text)
        self._leave(invocation, AssistantStep.WRITE_CODE)
        return MarkdownReply(html=html)

    async def _answer(
        self, invocation: PipelineInvocation, prompt: str, prepared_text: str | None
    ) -> SpeechReply:
        self._enter(invocation, AssistantStep.ANSWER)
        if prepared_text is not None:
            text = prepared_text
        else:
            text = await self._complete_text(
                answer_messages(
                    prompt,
                    assistant_name=self._options.assistant_name,
                    user_name=self._options.user_name,
                )
            )
        invocation.reply_text = text
        self._leave(invocation, AssistantStep.ANSWER)

        self._enter(invocation, AssistantStep.SPEECH)
        audio = await self._ai_client.text_to_speech(text)
        stored = await self._media_store.save("audio", invocation.device_id, audio)
        invocation.artifact_url = stored.url
        self._leave(invocation, AssistantStep.SPEECH)
        return SpeechReply(text=text, url=stored.url)

    async def _complete_text(self, messages: list[dict[str, object]]) -> str:
        result = await self._ai_client.chat_completion(messages)
        text = (result.content or "").strip()
        if not text:
            raise UpstreamServiceError(
                "chat completion",
                f"reply has no content (finish_reason={result.finish_reason})",
            )
        return text

    def _enter(self, invocation: PipelineInvocation, step: AssistantStep) -> None:
        invocation.step = step
        logger.info(
            "pipeline.step device_id=%s invocation_id=%s step=%s",
            invocation.device_id,
            invocation.invocation_id,
            step.value,
        )
        invocation.publish(SignalEvent.processing(step))

    def _leave(self, invocation: PipelineInvocation, step: AssistantStep) -> None:
        if self._options.emit_finish_signals:
            invocation.publish(SignalEvent.finish(step))

    def _fail(self, invocation: PipelineInvocation, exc: AssistantError) -> None:
        logger.warning(
            "pipeline.failed device_id=%s invocation_id=%s step=%s category=%s error=%s",
            invocation.device_id,
            invocation.invocation_id,
            invocation.step.value if invocation.step else "-",
            exc.category,
            short_text(exc.message, limit=200),
        )
        self._fail_message(invocation, exc.message)

    def _fail_message(self, invocation: PipelineInvocation, message: str) -> None:
        if invocation.finished:
            return
        invocation.error_message = message
        invocation.publish(SignalEvent.error(message))
