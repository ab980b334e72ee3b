from __future__ import annotations

from typing import Protocol
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import BadRequestError, ForbiddenError, NotFoundError, StorageFailure
from app.core.logging import get_logger
from app.db.models import User, Video
from app.schemas import VideoRecord


class VideoStore(Protocol):
    """Record store for video metadata; single-row operations only."""

    async def get(self, video_id: str) -> VideoRecord | None: ...

    async def update(self, record: VideoRecord) -> VideoRecord: ...


class SqlVideoStore:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.logger = get_logger(component="video_store")

    async def ensure_user(self, user_id: str) -> User:
        user = await self.session.get(User, user_id)
        if user:
            return user
        user = User(user_id=user_id)
        self.session.add(user)
        await self.session.flush()
        return user

    async def create(self, *, user_id: str, title: str, description: str) -> VideoRecord:
        try:
            await self.ensure_user(user_id)
            video = Video(video_id=str(uuid4()), user_id=user_id, title=title, description=description)
            self.session.add(video)
            await self.session.commit()
            await self.session.refresh(video)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageFailure("record_store_unavailable", message=str(exc)) from exc
        self.logger.info("video_created", video_id=video.video_id, user_id=user_id)
        return VideoRecord.model_validate(video)

    async def get(self, video_id: str) -> VideoRecord | None:
        try:
            # Other requests may have committed since this session first loaded the row.
            video = await self.session.get(Video, video_id, populate_existing=True)
        except SQLAlchemyError as exc:
            raise StorageFailure("record_store_unavailable", message=str(exc)) from exc
        if video is None:
            return None
        return VideoRecord.model_validate(video)

    async def update(self, record: VideoRecord) -> VideoRecord:
        """Write the mutable fields of ``record`` back; last writer wins."""
        try:
            video = await self.session.get(Video, record.video_id)
            if video is None:
                raise StorageFailure("record_missing", message=f"Video {record.video_id} disappeared before update")
            video.title = record.title
            video.description = record.description
            video.thumbnail_url = record.thumbnail_url
            video.video_url = record.video_url
            await self.session.commit()
            await self.session.refresh(video)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageFailure("record_store_unavailable", message=str(exc)) from exc
        return VideoRecord.model_validate(video)


async def load_owned_record(videos: VideoStore, *, caller_id: str, video_id: str) -> VideoRecord:
    """Fetch a record and check the caller owns it; runs before any upload work starts."""
    if not video_id or not video_id.strip():
        raise BadRequestError("invalid_video_id", message="Invalid video ID")
    record = await videos.get(video_id)
    if record is None:
        raise NotFoundError("video_not_found", message="Video not found")
    if record.user_id != caller_id:
        raise ForbiddenError("not_video_owner", message="Forbidden access to the video")
    return record


__all__ = ["VideoStore", "SqlVideoStore", "load_owned_record"]
