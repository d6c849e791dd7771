"""API layer: dependency helpers for the shared container and device identity."""

from __future__ import annotations

import re
from uuid import uuid4

from fastapi import HTTPException, Request, Response, status

from ava.core.container import AppContainer

_DEVICE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,128}$")


def get_container(request: Request) -> AppContainer:
    return request.app.state.container  # type: ignore[return-value]


def read_device_id(request: Request, cookie_name: str) -> str | None:
    """Return the device cookie value when present and well-formed."""
    raw = request.cookies.get(cookie_name)
    if raw and _DEVICE_ID_PATTERN.fullmatch(raw):
        return raw
    return None


def mint_device_id() -> str:
    return uuid4().hex


def set_device_cookie(response: Response, container: AppContainer, device_id: str) -> None:
    response.set_cookie(
        key=container.settings.device_cookie_name,
        value=device_id,
        max_age=container.settings.device_cookie_max_age_seconds,
        httponly=True,
        samesite="lax",
        secure=container.settings.tls_cert_dir is not None,
    )


def require_device_id(request: Request) -> str:
    """Dependency for endpoints that need an existing device identity."""
    container = get_container(request)
    cookie_name = container.settings.device_cookie_name
    device_id = read_device_id(request, cookie_name)
    if device_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"cookie '{cookie_name}' is missing",
        )
    return device_id
