from __future__ import annotations

import asyncio
import enum
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from uuid import uuid4

from starlette.datastructures import UploadFile

from app.core.config import Settings
from app.core.errors import BadRequestError, IngestFailed, IngestStep, ReelhouseError, StorageFailure
from app.core.logging import get_logger
from app.core.storage import ObjectStore
from app.ingest.faststart import faststart_output_path
from app.ingest.geometry import Geometry
from app.ingest.keys import AssetKeyPolicy
from app.ingest.media_tool import MediaTool
from app.schemas import VideoRecord

from .video_store import VideoStore, load_owned_record

ACCEPTED_VIDEO_TYPE = "video/mp4"
STAGING_CHUNK_BYTES = 1024 * 1024


class IngestState(str, enum.Enum):
    received = "received"
    staged = "staged"
    probed = "probed"
    rewritten = "rewritten"
    uploaded = "uploaded"
    committed = "committed"


class VideoLocks:
    """Per-video mutual exclusion for record commits within this process."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, video_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(video_id, asyncio.Lock())
        self._waiters[video_id] = self._waiters.get(video_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[video_id] -= 1
            if not self._waiters[video_id]:
                del self._waiters[video_id]
                del self._locks[video_id]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class IngestRun:
    video_id: str
    token: str
    staged_path: Path
    rewritten_path: Path
    state: IngestState = IngestState.received
    geometry: Optional[Geometry] = None
    storage_key: Optional[str] = None
    public_url: Optional[str] = None
    history: list[IngestState] = field(default_factory=lambda: [IngestState.received])


def validate_video_upload(upload: UploadFile | None, *, max_bytes: int) -> UploadFile:
    """Reject a missing, oversized or non-MP4 file part before anything touches disk."""
    if upload is None or not isinstance(upload, UploadFile):
        raise BadRequestError("video_file_missing", message="Video file missing")
    if upload.size is not None and upload.size > max_bytes:
        raise BadRequestError("video_too_large", message=f"Video file exceeds the maximum allowed size of {max_bytes} bytes")
    if upload.content_type != ACCEPTED_VIDEO_TYPE:
        raise BadRequestError("unsupported_media_type", message="Invalid file type. Only MP4 allowed.")
    return upload


class VideoIngestPipeline:
    """Stage, probe, rewrite, upload and commit one video upload.

    ``received -> staged -> probed -> rewritten -> uploaded -> committed``; any
    step may end in :class:`IngestFailed`. The record only changes in the last
    step, after the object store has accepted the file. Local artefacts are
    removed whatever the outcome.

    A failure in the commit step leaves the uploaded object behind with no
    record pointing at it. Nothing reconciles such orphans; they are logged
    with their key so they can be collected by hand.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        media_tool: MediaTool,
        object_store: ObjectStore,
        key_policy: AssetKeyPolicy,
        videos: VideoStore,
        locks: VideoLocks,
    ):
        self.staging_root = Path(settings.staging_root)
        self.max_bytes = settings.max_video_upload_bytes
        self.media_tool = media_tool
        self.object_store = object_store
        self.key_policy = key_policy
        self.videos = videos
        self.locks = locks
        self.logger = get_logger(component="video_ingest")

    async def load_owned_record(self, *, caller_id: str, video_id: str) -> VideoRecord:
        return await load_owned_record(self.videos, caller_id=caller_id, video_id=video_id)

    def new_run(self, video_id: str) -> IngestRun:
        token = uuid4().hex
        staged = self.staging_root / f"{video_id}-{token}.mp4"
        return IngestRun(
            video_id=video_id,
            token=token,
            staged_path=staged,
            rewritten_path=faststart_output_path(staged),
        )

    async def ingest(self, record: VideoRecord, upload: UploadFile | None) -> VideoRecord:
        upload = validate_video_upload(upload, max_bytes=self.max_bytes)
        media_type = upload.content_type or ACCEPTED_VIDEO_TYPE
        run = self.new_run(record.video_id)
        logger = self.logger.bind(video_id=record.video_id, request_token=run.token)
        step = IngestStep.staging
        try:
            await self._stage(upload, run.staged_path)
            self._advance(run, IngestState.staged, logger)

            step = IngestStep.probe
            run.geometry = await self.media_tool.probe(run.staged_path)
            self._advance(run, IngestState.probed, logger, orientation=run.geometry.orientation.value)

            step = IngestStep.rewrite
            run.rewritten_path = await self.media_tool.rewrite_faststart(run.staged_path)
            self._advance(run, IngestState.rewritten, logger)

            step = IngestStep.upload
            run.storage_key = self.key_policy.derive_key(record.video_id, media_type, run.geometry)
            run.public_url = await self.object_store.put(run.storage_key, run.rewritten_path, media_type)
            self._advance(run, IngestState.uploaded, logger, key=run.storage_key)

            step = IngestStep.commit
            committed = await self._commit(record, run.public_url)
            self._advance(run, IngestState.committed, logger, video_url=run.public_url)
            return committed
        except ReelhouseError as exc:
            failure = IngestFailed(step, exc)
            self._log_failure(run, failure, logger)
            raise failure from exc
        except OSError as exc:
            failure = IngestFailed(step, StorageFailure(f"{step.value}_io_error", message=str(exc)))
            self._log_failure(run, failure, logger)
            raise failure from exc
        finally:
            await self._cleanup(run, logger)

    def _advance(self, run: IngestRun, state: IngestState, logger, **values) -> None:
        run.state = state
        run.history.append(state)
        logger.info("ingest_transition", state=state.value, **values)

    def _log_failure(self, run: IngestRun, failure: IngestFailed, logger) -> None:
        logger.error(
            "ingest_failed",
            step=failure.step.value,
            last_state=run.state.value,
            code=failure.code,
            error=str(failure.cause),
        )
        if failure.step is IngestStep.commit:
            logger.warning("ingest_orphaned_object", key=run.storage_key, url=run.public_url)

    async def _stage(self, upload: UploadFile, target: Path) -> None:
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        written = 0
        handle = await asyncio.to_thread(target.open, "wb")
        try:
            while chunk := await upload.read(STAGING_CHUNK_BYTES):
                written += len(chunk)
                if written > self.max_bytes:
                    raise BadRequestError("video_too_large", message="Video file exceeds the maximum allowed size")
                await asyncio.to_thread(handle.write, chunk)
        finally:
            await asyncio.to_thread(handle.close)
        if written == 0:
            raise BadRequestError("video_file_empty", message="Video file is empty")

    async def _commit(self, record: VideoRecord, public_url: str) -> VideoRecord:
        async with self.locks.hold(record.video_id):
            # Re-read under the lock so fields changed during the run survive.
            current = await self.videos.get(record.video_id)
            if current is None:
                raise StorageFailure("record_missing", message=f"Video {record.video_id} disappeared before commit")
            return await self.videos.update(current.model_copy(update={"video_url": public_url}))

    async def _cleanup(self, run: IngestRun, logger) -> None:
        paths = list(dict.fromkeys((run.staged_path, run.rewritten_path, faststart_output_path(run.staged_path))))
        results = await asyncio.gather(
            *(asyncio.to_thread(path.unlink, missing_ok=True) for path in paths),
            return_exceptions=True,
        )
        for path, result in zip(paths, results):
            if isinstance(result, Exception):
                logger.warning("ingest_cleanup_failed", path=str(path), error=str(result))


__all__ = [
    "ACCEPTED_VIDEO_TYPE",
    "IngestState",
    "IngestRun",
    "VideoLocks",
    "VideoIngestPipeline",
    "validate_video_upload",
]
