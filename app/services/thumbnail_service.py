from __future__ import annotations

from starlette.datastructures import UploadFile

from app.core.config import Settings
from app.core.errors import BadRequestError, StorageFailure
from app.core.logging import get_logger
from app.schemas import VideoRecord

from .thumbnail_store import StoredThumbnail, ThumbnailStore, thumbnail_ext
from .video_ingest import VideoLocks
from .video_store import VideoStore, load_owned_record


class ThumbnailService:
    def __init__(self, *, settings: Settings, thumbnails: ThumbnailStore, videos: VideoStore, locks: VideoLocks):
        self.max_bytes = settings.max_thumbnail_upload_bytes
        self.thumbnails = thumbnails
        self.videos = videos
        self.locks = locks
        self.logger = get_logger(component="thumbnail_service")

    async def load_owned_record(self, *, caller_id: str, video_id: str) -> VideoRecord:
        return await load_owned_record(self.videos, caller_id=caller_id, video_id=video_id)

    async def attach(self, record: VideoRecord, upload: UploadFile | None) -> VideoRecord:
        if upload is None or not isinstance(upload, UploadFile):
            raise BadRequestError("thumbnail_file_missing", message="Thumbnail file missing")
        if upload.size is not None and upload.size > self.max_bytes:
            raise BadRequestError("thumbnail_too_large", message="Thumbnail file exceeds the maximum allowed size of 10MB")
        media_type = upload.content_type or ""
        thumbnail_ext(media_type)

        data = await upload.read(self.max_bytes + 1)
        if len(data) > self.max_bytes:
            raise BadRequestError("thumbnail_too_large", message="Thumbnail file exceeds the maximum allowed size of 10MB")
        if not data:
            raise BadRequestError("thumbnail_file_empty", message="Thumbnail file is empty")

        url = await self.thumbnails.put(record.video_id, data, media_type)
        async with self.locks.hold(record.video_id):
            current = await self.videos.get(record.video_id)
            if current is None:
                raise StorageFailure("record_missing", message=f"Video {record.video_id} disappeared before update")
            committed = await self.videos.update(current.model_copy(update={"thumbnail_url": url}))
        self.logger.info("thumbnail_attached", video_id=record.video_id, media_type=media_type, size_bytes=len(data))
        return committed

    async def fetch(self, video_id: str) -> StoredThumbnail | None:
        return await self.thumbnails.get(video_id)


__all__ = ["ThumbnailService"]
