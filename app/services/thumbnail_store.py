from __future__ import annotations

import asyncio
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from app.core.config import Settings
from app.core.errors import BadRequestError, StorageFailure
from app.core.logging import get_logger

THUMBNAIL_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
}


def thumbnail_ext(media_type: str) -> str:
    try:
        return THUMBNAIL_EXTENSIONS[media_type]
    except KeyError:
        raise BadRequestError("unsupported_media_type", message="Only JPEG or PNG thumbnails are allowed") from None


@dataclass(slots=True, frozen=True)
class StoredThumbnail:
    data: bytes
    media_type: str


class ThumbnailStore(ABC):
    @abstractmethod
    async def put(self, video_id: str, data: bytes, media_type: str) -> str:
        """Store the thumbnail and return the URL it is served from."""

    @abstractmethod
    async def get(self, video_id: str) -> StoredThumbnail | None: ...


class DiskThumbnailStore(ThumbnailStore):
    """Writes ``<video_id><ext>`` under the assets directory, served from ``/assets``."""

    def __init__(self, root: Path, *, base_url: str):
        self.root = root
        self.base_url = base_url.rstrip("/")
        self.logger = get_logger(component="disk_thumbnail_store")

    def _path(self, video_id: str, ext: str) -> Path:
        path = (self.root / f"{video_id}{ext}").resolve()
        if path.parent != self.root.resolve():
            raise BadRequestError("invalid_video_id")
        return path

    def _write(self, video_id: str, data: bytes, ext: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        target = self._path(video_id, ext)
        partial = target.with_name(f".{target.name}.{uuid4().hex}.partial")
        partial.write_bytes(data)
        os.replace(partial, target)
        for other in set(THUMBNAIL_EXTENSIONS.values()) - {ext}:
            self._path(video_id, other).unlink(missing_ok=True)

    def _read(self, video_id: str) -> StoredThumbnail | None:
        for media_type, ext in THUMBNAIL_EXTENSIONS.items():
            path = self._path(video_id, ext)
            if path.exists():
                return StoredThumbnail(data=path.read_bytes(), media_type=media_type)
        return None

    async def put(self, video_id: str, data: bytes, media_type: str) -> str:
        ext = thumbnail_ext(media_type)
        try:
            await asyncio.to_thread(self._write, video_id, data, ext)
        except OSError as exc:
            self.logger.error("thumbnail_write_failed", video_id=video_id, error=str(exc))
            raise StorageFailure("thumbnail_write_failed", message=str(exc)) from exc
        return f"{self.base_url}/assets/{video_id}{ext}"

    async def get(self, video_id: str) -> StoredThumbnail | None:
        return await asyncio.to_thread(self._read, video_id)


class MemoryThumbnailStore(ThumbnailStore):
    """Process-lifetime mapping of video id to thumbnail.

    Ephemeral: everything is lost when the process restarts. Use the disk store
    outside of demos and tests.
    """

    def __init__(self, *, base_url: str):
        self.base_url = base_url.rstrip("/")
        self._items: dict[str, StoredThumbnail] = {}

    async def put(self, video_id: str, data: bytes, media_type: str) -> str:
        thumbnail_ext(media_type)
        self._items[video_id] = StoredThumbnail(data=data, media_type=media_type)
        return f"{self.base_url}/v1/thumbnails/{video_id}"

    async def get(self, video_id: str) -> StoredThumbnail | None:
        return self._items.get(video_id)


def get_thumbnail_store(settings: Settings) -> ThumbnailStore:
    if settings.thumbnail_backend == "disk":
        return DiskThumbnailStore(Path(settings.assets_root), base_url=settings.public_base)
    if settings.thumbnail_backend == "memory":
        return MemoryThumbnailStore(base_url=settings.public_base)
    raise ValueError(f"Unsupported thumbnail backend: {settings.thumbnail_backend}")


__all__ = [
    "StoredThumbnail",
    "ThumbnailStore",
    "DiskThumbnailStore",
    "MemoryThumbnailStore",
    "thumbnail_ext",
    "get_thumbnail_store",
]
