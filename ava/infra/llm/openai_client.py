"""LLM infra: async OpenAI-compatible client for audio, chat and image endpoints."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import httpx

from ava.agent.errors import UpstreamServiceError
from ava.agent.llm.llm_config import LLMConfig
from ava.infra.observability.logger import get_logger, short_text

logger = get_logger(__name__)

_RETRY_STATUS = {408, 409, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class ModelToolCall:
    """Function call chosen by the model; arguments stay as raw JSON text."""

    call_id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ChatCompletionResult:
    """Normalized first choice of a chat completion."""

    finish_reason: str | None
    content: str | None = None
    tool_calls: list[ModelToolCall] = field(default_factory=list)


@dataclass(frozen=True)
class GeneratedImage:
    image_base64: str
    revised_prompt: str


class OpenAICompatibleClient:
    """Async client for `/audio/*`, `/chat/completions` and `/images/generations`."""

    def __init__(
        self,
        config: LLMConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        retry_backoff_seconds: float = 0.5,
    ) -> None:
        self._config = config
        self._retry_backoff_seconds = max(0.0, retry_backoff_seconds)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_seconds),
        )

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def transcribe(
        self,
        audio: bytes,
        *,
        language: str,
        filename: str = "audio.webm",
        content_type: str = "application/octet-stream",
    ) -> str:
        response = await self._post(
            "transcription",
            "/audio/transcriptions",
            data={
                "model": self._config.transcription_model,
                "language": language,
                "response_format": "json",
            },
            files={"file": (filename, audio, content_type)},
        )
        decoded = self._json(response, "transcription")
        text = decoded.get("text")
        if not isinstance(text, str):
            raise UpstreamServiceError("transcription", "response has no text field")
        logger.info(
            "llm.transcription bytes=%s language=%s text=%s",
            len(audio),
            language,
            short_text(text, limit=80),
        )
        return text.strip()

    async def chat_completion(
        self,
        messages: list[dict[str, Any]],
        *,
        tools: list[dict[str, Any]] | None = None,
    ) -> ChatCompletionResult:
        payload: dict[str, Any] = {
            "model": self._config.chat_model,
            "messages": messages,
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        response = await self._post("chat completion", "/chat/completions", json_body=payload)
        result = self._parse_chat_completion(self._json(response, "chat completion"))
        logger.info(
            "llm.chat_completion model=%s tools=%s finish_reason=%s tool_calls=%s text=%s",
            self._config.chat_model,
            len(tools or []),
            result.finish_reason,
            [call.name for call in result.tool_calls],
            short_text(result.content, limit=80),
        )
        return result

    async def text_to_speech(self, text: str) -> bytes:
        response = await self._post(
            "speech synthesis",
            "/audio/speech",
            json_body={
                "model": self._config.speech_model,
                "voice": self._config.speech_voice,
                "input": text,
                "response_format": "mp3",
            },
        )
        audio = response.content
        if not audio:
            raise UpstreamServiceError("speech synthesis", "response body is empty")
        logger.info("llm.speech chars=%s bytes=%s", len(text), len(audio))
        return audio

    async def generate_image(self, prompt: str) -> GeneratedImage:
        response = await self._post(
            "image generation",
            "/images/generations",
            json_body={
                "model": self._config.image_model,
                "prompt": prompt,
                "n": 1,
                "size": self._config.image_size,
                "response_format": "b64_json",
            },
        )
        decoded = self._json(response, "image generation")
        data = decoded.get("data")
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise UpstreamServiceError("image generation", "response returned no images")
        first = data[0]
        image_base64 = first.get("b64_json")
        if not isinstance(image_base64, str) or not image_base64:
            raise UpstreamServiceError("image generation", "response has no b64_json payload")
        revised = first.get("revised_prompt")
        revised_prompt = revised.strip() if isinstance(revised, str) and revised.strip() else prompt
        logger.info("llm.image prompt=%s", short_text(revised_prompt, limit=80))
        return GeneratedImage(image_base64=image_base64, revised_prompt=revised_prompt)

    async def _post(
        self,
        service: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> httpx.Response:
        if not self.enabled:
            raise UpstreamServiceError(service, "llm provider missing api key. set OPENAI_API_KEY.")
        endpoint = self._config.base_url.rstrip("/") + path
        headers = {"Authorization": f"Bearer {self._config.api_key}"}
        attempts = self._config.max_retries + 1
        last_error = "no attempt made"
        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.post(
                    endpoint,
                    json=json_body,
                    data=data,
                    files=files,
                    headers=headers,
                )
            except httpx.TimeoutException:
                last_error = "timeout_error request timed out"
            except httpx.TransportError as exc:
                last_error = f"transport_error {type(exc).__name__}: {exc}"
            else:
                if response.is_success:
                    return response
                details = " ".join(response.text.split())
                suffix = f"; body={details[:280]}" if details else ""
                last_error = f"http_error status={response.status_code}{suffix}"
                if response.status_code not in _RETRY_STATUS:
                    break
            if attempt < attempts:
                logger.warning(
                    "llm.retry service=%s attempt=%s/%s error=%s",
                    service,
                    attempt,
                    attempts,
                    short_text(last_error, limit=160),
                )
                await asyncio.sleep(self._retry_backoff_seconds * (2 ** (attempt - 1)))
        logger.warning("llm.error service=%s error=%s", service, short_text(last_error, limit=280))
        raise UpstreamServiceError(service, last_error)

    def _json(self, response: httpx.Response, service: str) -> dict[str, Any]:
        try:
            decoded = response.json()
        except ValueError as exc:
            raise UpstreamServiceError(service, "response body is not JSON") from exc
        if not isinstance(decoded, dict):
            raise UpstreamServiceError(service, "response body is not a JSON object")
        return decoded

    def _parse_chat_completion(self, decoded: dict[str, Any]) -> ChatCompletionResult:
        choices = decoded.get("choices")
        if not isinstance(choices, list) or not choices:
            raise UpstreamServiceError("chat completion", "response returned zero choices")
        first = choices[0]
        if not isinstance(first, dict):
            raise UpstreamServiceError("chat completion", "choice is not an object")
        message = first.get("message")
        if not isinstance(message, dict):
            raise UpstreamServiceError("chat completion", "choice has no message")
        finish_reason = first.get("finish_reason")
        content = message.get("content")
        tool_calls: list[ModelToolCall] = []
        raw_tool_calls = message.get("tool_calls")
        if isinstance(raw_tool_calls, list):
            for raw_call in raw_tool_calls:
                parsed = self._parse_tool_call(raw_call)
                if parsed is not None:
                    tool_calls.append(parsed)
        return ChatCompletionResult(
            finish_reason=finish_reason if isinstance(finish_reason, str) else None,
            content=content if isinstance(content, str) else None,
            tool_calls=tool_calls,
        )

    def _parse_tool_call(self, raw_call: Any) -> ModelToolCall | None:
        if not isinstance(raw_call, dict):
            return None
        function = raw_call.get("function")
        if not isinstance(function, dict):
            return None
        name = function.get("name")
        if not isinstance(name, str):
            return None
        arguments = function.get("arguments")
        if isinstance(arguments, dict):
            arguments = json.dumps(arguments)
        elif not isinstance(arguments, str):
            arguments = ""
        return ModelToolCall(
            call_id=str(raw_call.get("id") or ""),
            name=name,
            arguments=arguments,
        )
