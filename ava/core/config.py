"""Configuration layer: load runtime settings from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _resolve_path(path_like: str) -> Path:
    candidate = Path(path_like)
    if candidate.is_absolute():
        return candidate
    if candidate.exists():
        return candidate
    project_root = Path(__file__).resolve().parents[2]
    rooted = project_root / candidate
    if rooted.exists():
        return rooted
    return candidate


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable application settings used across API/runtime layers."""

    app_name: str = "Ava Assistant API"
    app_version: str = "0.1.0"
    env: str = "dev"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080
    tls_cert_dir: Path | None = None
    cors_allow_origins: str = "http://localhost:8080,http://127.0.0.1:8080"
    assistant_name: str = "Ava"
    user_name: str = "User"
    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_chat_model: str = "gpt-4o-mini"
    llm_transcription_model: str = "whisper-1"
    llm_speech_model: str = "tts-1"
    llm_speech_voice: str = "alloy"
    llm_image_model: str = "dall-e-3"
    llm_image_size: str = "1024x1024"
    llm_timeout_seconds: float = 60.0
    llm_max_retries: int = 3
    llm_temperature: float = 0.7
    llm_max_tokens: int = 1024
    llm_provider_profiles_file: Path = Path("config/provider_profiles.yaml")
    llm_provider_profile: str = "default"
    transcription_language: str = "en"
    assets_dir: Path = Path("/tmp/ava-bot")
    device_cookie_name: str = "device_id"
    device_cookie_max_age_seconds: int = 60 * 60 * 24 * 365
    event_bus_capacity: int = 128
    device_registry_max_devices: int = 1024
    device_registry_idle_seconds: float = 3600.0
    device_registry_shards: int = 16
    device_registry_sweep_seconds: float = 60.0
    sse_keepalive_seconds: float = 1.0
    pipeline_emit_input_skeleton: bool = False
    pipeline_emit_finish_signals: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from process env with deterministic defaults."""
        tls_raw = os.getenv("TLS_CERT_DIR", "").strip()
        return cls(
            app_name=os.getenv("APP_NAME", cls.app_name),
            app_version=os.getenv("APP_VERSION", cls.app_version),
            env=os.getenv("APP_ENV", cls.env),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            host=os.getenv("HOST", cls.host),
            port=int(os.getenv("PORT", str(cls.port))),
            tls_cert_dir=_resolve_path(tls_raw) if tls_raw else None,
            cors_allow_origins=os.getenv("CORS_ALLOW_ORIGINS", cls.cors_allow_origins),
            assistant_name=os.getenv("ASSISTANT_NAME", cls.assistant_name),
            user_name=os.getenv("ASSISTANT_USER_NAME", cls.user_name),
            llm_api_key=os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY", cls.llm_api_key),
            llm_base_url=os.getenv("LLM_BASE_URL", cls.llm_base_url),
            llm_chat_model=os.getenv("LLM_CHAT_MODEL", cls.llm_chat_model),
            llm_transcription_model=os.getenv(
                "LLM_TRANSCRIPTION_MODEL", cls.llm_transcription_model
            ),
            llm_speech_model=os.getenv("LLM_SPEECH_MODEL", cls.llm_speech_model),
            llm_speech_voice=os.getenv("LLM_SPEECH_VOICE", cls.llm_speech_voice),
            llm_image_model=os.getenv("LLM_IMAGE_MODEL", cls.llm_image_model),
            llm_image_size=os.getenv("LLM_IMAGE_SIZE", cls.llm_image_size),
            llm_timeout_seconds=float(
                os.getenv("LLM_TIMEOUT_SECONDS", str(cls.llm_timeout_seconds))
            ),
            llm_max_retries=int(os.getenv("LLM_MAX_RETRIES", str(cls.llm_max_retries))),
            llm_temperature=float(os.getenv("LLM_TEMPERATURE", str(cls.llm_temperature))),
            llm_max_tokens=int(os.getenv("LLM_MAX_TOKENS", str(cls.llm_max_tokens))),
            llm_provider_profiles_file=_resolve_path(
                os.getenv(
                    "LLM_PROVIDER_PROFILES_FILE",
                    str(cls.llm_provider_profiles_file),
                )
            ),
            llm_provider_profile=os.getenv("LLM_PROVIDER_PROFILE", cls.llm_provider_profile),
            transcription_language=os.getenv(
                "TRANSCRIPTION_LANGUAGE", cls.transcription_language
            ),
            assets_dir=_resolve_path(os.getenv("ASSETS_DIR", str(cls.assets_dir))),
            device_cookie_name=os.getenv("DEVICE_COOKIE_NAME", cls.device_cookie_name),
            device_cookie_max_age_seconds=int(
                os.getenv(
                    "DEVICE_COOKIE_MAX_AGE_SECONDS",
                    str(cls.device_cookie_max_age_seconds),
                )
            ),
            event_bus_capacity=int(
                os.getenv("EVENT_BUS_CAPACITY", str(cls.event_bus_capacity))
            ),
            device_registry_max_devices=int(
                os.getenv(
                    "DEVICE_REGISTRY_MAX_DEVICES",
                    str(cls.device_registry_max_devices),
                )
            ),
            device_registry_idle_seconds=float(
                os.getenv(
                    "DEVICE_REGISTRY_IDLE_SECONDS",
                    str(cls.device_registry_idle_seconds),
                )
            ),
            device_registry_shards=int(
                os.getenv("DEVICE_REGISTRY_SHARDS", str(cls.device_registry_shards))
            ),
            device_registry_sweep_seconds=float(
                os.getenv(
                    "DEVICE_REGISTRY_SWEEP_SECONDS",
                    str(cls.device_registry_sweep_seconds),
                )
            ),
            sse_keepalive_seconds=float(
                os.getenv("SSE_KEEPALIVE_SECONDS", str(cls.sse_keepalive_seconds))
            ),
            pipeline_emit_input_skeleton=_env_bool(
                "PIPELINE_EMIT_INPUT_SKELETON", cls.pipeline_emit_input_skeleton
            ),
            pipeline_emit_finish_signals=_env_bool(
                "PIPELINE_EMIT_FINISH_SIGNALS", cls.pipeline_emit_finish_signals
            ),
        )
