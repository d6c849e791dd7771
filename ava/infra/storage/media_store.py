"""Storage infra: device-scoped artifact files served under /assets."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Literal
from uuid import uuid4

import aiofiles
import aiofiles.os

from ava.agent.errors import StorageError
from ava.infra.observability.logger import get_logger

logger = get_logger(__name__)

ArtifactKind = Literal["audio", "image"]

_EXTENSIONS: dict[str, str] = {"audio": "mp3", "image": "png"}
_SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9_-]{1,128}$")

ASSETS_URL_PREFIX = "/assets"


@dataclass(frozen=True)
class StoredArtifact:
    path: Path
    url: str


class MediaStore:
    """Write generated audio/image bytes to `<root>/<kind>/<device_id>/<name>.<ext>`."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def ensure_root(self) -> None:
        for kind in _EXTENSIONS:
            (self._root / kind).mkdir(parents=True, exist_ok=True)

    def artifact_path(self, kind: ArtifactKind, device_id: str, name: str) -> Path:
        return self._root / kind / device_id / f"{name}.{_EXTENSIONS[kind]}"

    @staticmethod
    def artifact_url(kind: ArtifactKind, device_id: str, name: str) -> str:
        return f"{ASSETS_URL_PREFIX}/{kind}/{device_id}/{name}.{_EXTENSIONS[kind]}"

    async def save(self, kind: ArtifactKind, device_id: str, content: bytes) -> StoredArtifact:
        """Persist one artifact under a fresh random name and return its URL."""
        if kind not in _EXTENSIONS:
            raise StorageError(f"unsupported artifact kind '{kind}'")
        if not _SAFE_SEGMENT.fullmatch(device_id):
            raise StorageError("device id is not usable as a storage path")
        name = uuid4().hex
        path = self.artifact_path(kind, device_id, name)
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as handle:
                await handle.write(content)
        except OSError as exc:
            logger.warning(
                "storage.write_failed kind=%s device_id=%s path=%s error=%s",
                kind,
                device_id,
                path,
                exc,
            )
            raise StorageError(f"failed to store {kind} artifact: {exc.strerror or exc}") from exc
        url = self.artifact_url(kind, device_id, name)
        logger.info("storage.saved kind=%s device_id=%s bytes=%s url=%s", kind, device_id, len(content), url)
        return StoredArtifact(path=path, url=url)
