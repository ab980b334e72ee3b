from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth import AuthContext, get_auth_context
from app.core.config import Settings, get_settings
from app.core.errors import ReelhouseError
from app.services.thumbnail_service import ThumbnailService
from app.services.video_ingest import VideoIngestPipeline
from app.services.video_store import SqlVideoStore


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory = request.app.state.session_factory
    if not isinstance(session_factory, async_sessionmaker):  # pragma: no cover - misconfigured app
        raise RuntimeError("session_factory_not_configured")
    async with session_factory() as session:
        yield session


def get_app_settings() -> Settings:
    return get_settings()


def get_video_store(session: AsyncSession = Depends(get_session)) -> SqlVideoStore:
    return SqlVideoStore(session)


def get_ingest_pipeline(
    request: Request,
    videos: SqlVideoStore = Depends(get_video_store),
    settings: Settings = Depends(get_app_settings),
) -> VideoIngestPipeline:
    state = request.app.state
    return VideoIngestPipeline(
        settings=settings,
        media_tool=state.media_tool,
        object_store=state.object_store,
        key_policy=state.key_policy,
        videos=videos,
        locks=state.video_locks,
    )


def get_thumbnail_service(
    request: Request,
    videos: SqlVideoStore = Depends(get_video_store),
    settings: Settings = Depends(get_app_settings),
) -> ThumbnailService:
    state = request.app.state
    return ThumbnailService(
        settings=settings,
        thumbnails=state.thumbnail_store,
        videos=videos,
        locks=state.video_locks,
    )


def http_error(exc: ReelhouseError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.code)


AuthDependency = Annotated[AuthContext, Depends(get_auth_context)]
VideoStoreDependency = Annotated[SqlVideoStore, Depends(get_video_store)]
IngestPipelineDependency = Annotated[VideoIngestPipeline, Depends(get_ingest_pipeline)]
ThumbnailServiceDependency = Annotated[ThumbnailService, Depends(get_thumbnail_service)]


__all__ = [
    "get_session",
    "get_app_settings",
    "get_video_store",
    "get_ingest_pipeline",
    "get_thumbnail_service",
    "http_error",
    "AuthDependency",
    "VideoStoreDependency",
    "IngestPipelineDependency",
    "ThumbnailServiceDependency",
]
