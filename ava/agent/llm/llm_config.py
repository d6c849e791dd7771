"""LLM config resolver for the assistant pipeline and the OpenAI-compatible client."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import yaml

from ava.core.config import Settings

Number = TypeVar("Number", int, float)


@dataclass(frozen=True)
class LLMConfig:
    """Normalized configuration for every external AI call."""

    api_key: str
    base_url: str
    chat_model: str
    transcription_model: str
    speech_model: str
    speech_voice: str
    image_model: str
    image_size: str
    timeout_seconds: float
    max_retries: int
    temperature: float
    max_tokens: int
    profile_name: str = "default"

    @property
    def enabled(self) -> bool:
        return bool(self.api_key.strip())


def _load_profile(profile_file: Path, profile_name: str) -> dict[str, Any]:
    if not profile_file.exists():
        return {}
    try:
        raw = yaml.safe_load(profile_file.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError):
        return {}
    if not isinstance(raw, dict):
        return {}
    profiles = raw.get("profiles")
    if not isinstance(profiles, dict):
        return {}
    payload = profiles.get(profile_name)
    if not isinstance(payload, dict):
        payload = profiles.get("default")
    if not isinstance(payload, dict):
        return {}
    nested = payload.get("llm")
    if isinstance(nested, dict):
        merged = dict(payload)
        merged.update(nested)
        return merged
    return payload


def _pick_str(payload: dict[str, Any], key: str, fallback: str) -> str:
    value = payload.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def _pick_number(payload: dict[str, Any], key: str, fallback: Number, cast: type[Number]) -> Number:
    """Read a numeric profile value, accepting YAML numbers or numeric strings."""
    value = payload.get(key)
    if isinstance(value, bool) or value is None:
        return fallback
    try:
        return cast(float(value))
    except (TypeError, ValueError):
        return fallback


def _prefer(explicit: Any, default: Any, profile_value: Any) -> Any:
    # Explicit env settings win over profile values; defaults defer to the profile.
    return explicit if explicit != default else profile_value


def resolve_llm_config(settings: Settings) -> LLMConfig:
    """Build LLM config from app settings overlaid with the selected provider profile."""
    profile = _load_profile(settings.llm_provider_profiles_file, settings.llm_provider_profile)
    defaults = Settings()

    def pick_str(key: str, attr: str) -> str:
        profile_value = _pick_str(profile, key, getattr(defaults, attr))
        return _prefer(getattr(settings, attr), getattr(defaults, attr), profile_value)

    timeout = _prefer(
        float(settings.llm_timeout_seconds),
        float(defaults.llm_timeout_seconds),
        _pick_number(profile, "timeout_seconds", defaults.llm_timeout_seconds, float),
    )
    max_retries = _prefer(
        int(settings.llm_max_retries),
        int(defaults.llm_max_retries),
        _pick_number(profile, "max_retries", defaults.llm_max_retries, int),
    )
    temperature = _prefer(
        float(settings.llm_temperature),
        float(defaults.llm_temperature),
        _pick_number(profile, "temperature", defaults.llm_temperature, float),
    )
    max_tokens = _prefer(
        int(settings.llm_max_tokens),
        int(defaults.llm_max_tokens),
        _pick_number(profile, "max_tokens", defaults.llm_max_tokens, int),
    )

    return LLMConfig(
        api_key=settings.llm_api_key,
        base_url=pick_str("base_url", "llm_base_url"),
        chat_model=pick_str("chat_model", "llm_chat_model"),
        transcription_model=pick_str("transcription_model", "llm_transcription_model"),
        speech_model=pick_str("speech_model", "llm_speech_model"),
        speech_voice=pick_str("speech_voice", "llm_speech_voice"),
        image_model=pick_str("image_model", "llm_image_model"),
        image_size=pick_str("image_size", "llm_image_size"),
        timeout_seconds=max(1.0, timeout),
        max_retries=max(0, max_retries),
        temperature=max(0.0, temperature),
        max_tokens=max(32, max_tokens),
        profile_name=settings.llm_provider_profile,
    )
