"""HTTP API layer: health and readiness endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ava.api.deps import get_container
from ava.core.container import AppContainer
from ava.protocol.messages import HealthResponse, RegistryStatsDto

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health(container: AppContainer = Depends(get_container)) -> HealthResponse:
    return HealthResponse(
        env=container.settings.env,
        llm_enabled=container.llm_config.enabled,
        registry=RegistryStatsDto(**container.registry.stats()),
    )
