from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from app.api.v1 import get_api_router
from app.core.config import get_settings
from app.core.db import create_engine, create_session_factory
from app.core.logging import configure_logging, get_logger, level_from_name
from app.core.storage import LocalObjectStore, get_object_store
from app.ingest.keys import get_key_policy
from app.ingest.media_tool import get_media_tool
from app.services.thumbnail_store import DiskThumbnailStore, get_thumbnail_store
from app.services.video_ingest import VideoLocks


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(level=level_from_name(settings.log_level))
    logger = get_logger(component="app")

    object_store = get_object_store(settings)
    thumbnail_store = get_thumbnail_store(settings)
    media_tool = get_media_tool(settings)
    key_policy = get_key_policy(settings)
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        app.state.object_store = object_store
        app.state.thumbnail_store = thumbnail_store
        app.state.media_tool = media_tool
        app.state.key_policy = key_policy
        app.state.video_locks = VideoLocks()
        app.state.engine = engine
        app.state.session_factory = session_factory
        for directory in (settings.staging_root, settings.assets_root, settings.object_root):
            Path(directory).mkdir(parents=True, exist_ok=True)
        logger.info(
            "app_started",
            environment=settings.environment,
            object_store=settings.object_store_backend,
            key_policy=key_policy.name,
            thumbnail_backend=settings.thumbnail_backend,
        )
        try:
            yield
        finally:
            await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )

    app.include_router(get_api_router())
    if isinstance(thumbnail_store, DiskThumbnailStore):
        app.mount("/assets", StaticFiles(directory=thumbnail_store.root, check_dir=False), name="assets")
    if isinstance(object_store, LocalObjectStore):
        app.mount("/objects", StaticFiles(directory=object_store.base_path, check_dir=False), name="objects")
    return app


app = create_app()


__all__ = ["app", "create_app"]
