"""Observability layer: one-line console logging shared by the API, pipeline and client."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Server loggers that should flow through the root handler instead of their own.
_ROUTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
# Library loggers that are too chatty at INFO; floor level per logger.
_QUIET_LOGGERS = {"httpx": logging.WARNING, "httpcore": logging.WARNING, "multipart": logging.INFO}


def _level_number(level: str | int) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: str | int = "INFO") -> None:
    """Install the root handler and align server/library loggers with it."""
    root_level = _level_number(level)
    logging.basicConfig(level=root_level, format=LOG_FORMAT, force=True)
    for name in _ROUTED_LOGGERS:
        routed = logging.getLogger(name)
        routed.handlers.clear()
        routed.setLevel(root_level)
        routed.propagate = True
    for name, floor in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(floor, root_level))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def short_text(value: str | None, *, limit: int = 120) -> str:
    """Compact free text to one line and truncate it for log output."""
    if not isinstance(value, str):
        return ""
    compact = " ".join(value.split())
    if len(compact) <= limit:
        return compact
    return f"{compact[: max(1, limit - 3)].rstrip()}..."
