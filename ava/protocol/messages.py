"""Protocol layer: request/response DTOs returned by the HTTP API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

UploadStatus = Literal["done", "error"]


class AssistantAck(BaseModel):
    """Acknowledgement for one upload; results arrive on the event stream."""

    status: UploadStatus


class RegistryStatsDto(BaseModel):
    devices: int = 0
    buses: int = 0
    subscribers: int = 0


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    env: str
    llm_enabled: bool
    registry: RegistryStatsDto = Field(default_factory=RegistryStatsDto)
