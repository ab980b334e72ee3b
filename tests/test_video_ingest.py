from __future__ import annotations

import asyncio
import json
from io import BytesIO
from pathlib import Path

import pytest
from starlette.datastructures import Headers, UploadFile

from app.core.config import get_settings
from app.core.errors import BadRequestError, IngestFailed, IngestStep, StorageFailure, ToolFailure
from app.core.storage import LocalObjectStore, S3ObjectStore
from app.domain import FastStartRewriter, Geometry, GeometryProbe, OrientationKeyPolicy, VideoRecord
from app.ingest.media_tool import FFmpegMediaTool
from app.ingest.process import ProcessResult
from app.services.thumbnail_service import ThumbnailService
from app.services.thumbnail_store import MemoryThumbnailStore
from app.services.video_ingest import IngestState, VideoIngestPipeline, VideoLocks, validate_video_upload
from tests.conftest import FakeMediaTool, RecordingS3Client

VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x01" * 64


class MemoryVideoStore:
    def __init__(self, *records: VideoRecord, fail_update: bool = False):
        self.records = {record.video_id: record for record in records}
        self.fail_update = fail_update
        self.updates: list[VideoRecord] = []

    async def get(self, video_id: str) -> VideoRecord | None:
        record = self.records.get(video_id)
        return record.model_copy() if record else None

    async def update(self, record: VideoRecord) -> VideoRecord:
        if self.fail_update:
            raise StorageFailure("record_store_unavailable", message="database is locked")
        self.updates.append(record)
        self.records[record.video_id] = record
        return record


class ScriptedRunner:
    def __init__(self, result: ProcessResult):
        self.result = result
        self.invocations: list[tuple[str, list[str]]] = []

    async def run(self, command, args, *, capture_stdout=True, capture_stderr=True):
        self.invocations.append((command, list(args)))
        return self.result


def make_upload(data: bytes = VIDEO_BYTES, *, content_type: str = "video/mp4", size: int | None = -1) -> UploadFile:
    return UploadFile(
        file=BytesIO(data),
        size=len(data) if size == -1 else size,
        filename="clip.mp4",
        headers=Headers({"content-type": content_type}),
    )


def make_record(video_id: str = "vid-1") -> VideoRecord:
    return VideoRecord(video_id=video_id, user_id="user-owner", title="Launch day")


def build_pipeline(
    *,
    media_tool,
    object_store,
    videos: MemoryVideoStore,
    max_bytes: int | None = None,
) -> VideoIngestPipeline:
    settings = get_settings()
    if max_bytes is not None:
        settings = settings.model_copy(update={"max_video_upload_bytes": max_bytes})
    return VideoIngestPipeline(
        settings=settings,
        media_tool=media_tool,
        object_store=object_store,
        key_policy=OrientationKeyPolicy(),
        videos=videos,
        locks=VideoLocks(),
    )


def staged_files(staging_root: Path) -> list[Path]:
    if not staging_root.exists():
        return []
    return list(staging_root.iterdir())


@pytest.fixture()
def local_store(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "objects", base_url="http://testserver")


def test_ingest_commits_public_url_after_upload(fake_media_tool, local_store, staging_root, tmp_path):
    videos = MemoryVideoStore(make_record())
    pipeline = build_pipeline(media_tool=fake_media_tool, object_store=local_store, videos=videos)
    runs = []
    new_run = pipeline.new_run
    pipeline.new_run = lambda video_id: runs.append(new_run(video_id)) or runs[-1]

    committed = asyncio.run(pipeline.ingest(make_record(), make_upload()))

    assert committed.video_url == "http://testserver/objects/landscape/vid-1.mp4"
    assert videos.records["vid-1"].video_url == committed.video_url
    assert (tmp_path / "objects" / "landscape" / "vid-1.mp4").read_bytes() == b"faststart:" + VIDEO_BYTES
    assert [name for name, _ in fake_media_tool.calls] == ["probe", "rewrite"]
    assert runs[0].history == [
        IngestState.received,
        IngestState.staged,
        IngestState.probed,
        IngestState.rewritten,
        IngestState.uploaded,
        IngestState.committed,
    ]
    assert runs[0].storage_key == "landscape/vid-1.mp4"
    assert staged_files(staging_root) == []


def test_portrait_upload_lands_under_portrait_prefix(local_store, tmp_path):
    videos = MemoryVideoStore(make_record())
    pipeline = build_pipeline(media_tool=FakeMediaTool(Geometry(1080, 1920)), object_store=local_store, videos=videos)

    committed = asyncio.run(pipeline.ingest(make_record(), make_upload()))

    assert committed.video_url == "http://testserver/objects/portrait/vid-1.mp4"


def test_probe_failure_cleans_up_and_leaves_record(failing_probe_tool, local_store, staging_root, tmp_path):
    videos = MemoryVideoStore(make_record())
    pipeline = build_pipeline(media_tool=failing_probe_tool, object_store=local_store, videos=videos)

    with pytest.raises(IngestFailed) as excinfo:
        asyncio.run(pipeline.ingest(make_record(), make_upload()))

    failure = excinfo.value
    assert failure.step is IngestStep.probe
    assert failure.code == "probe_failed"
    assert failure.status_code == 500
    assert isinstance(failure.cause, ToolFailure)
    assert [name for name, _ in failing_probe_tool.calls] == ["probe"]
    assert videos.updates == []
    assert videos.records["vid-1"].video_url is None
    assert not (tmp_path / "objects").exists()
    assert staged_files(staging_root) == []


def test_malformed_probe_output_is_a_probe_failure(local_store, staging_root):
    runner = ScriptedRunner(ProcessResult(stdout=json.dumps({"streams": [None]}), stderr="", returncode=0))
    tool = FFmpegMediaTool(GeometryProbe(runner), FastStartRewriter(runner))
    videos = MemoryVideoStore(make_record())
    pipeline = build_pipeline(media_tool=tool, object_store=local_store, videos=videos)

    with pytest.raises(IngestFailed) as excinfo:
        asyncio.run(pipeline.ingest(make_record(), make_upload()))

    assert excinfo.value.step is IngestStep.probe
    assert excinfo.value.code == "probe_failed"
    assert isinstance(excinfo.value.cause, ToolFailure)
    assert excinfo.value.cause.code == "probe_output_unparsable"
    assert len(runner.invocations) == 1
    assert videos.updates == []
    assert staged_files(staging_root) == []


class ThumbnailDuringProbeTool(FakeMediaTool):
    """Attaches a thumbnail to the same video while the upload is being probed."""

    def __init__(self, service: ThumbnailService):
        super().__init__()
        self.service = service

    async def probe(self, path: Path) -> Geometry:
        record = await self.service.videos.get("vid-1")
        await self.service.attach(record, make_thumbnail())
        return await super().probe(path)


def make_thumbnail() -> UploadFile:
    data = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
    return UploadFile(file=BytesIO(data), size=len(data), filename="t.png", headers=Headers({"content-type": "image/png"}))


def test_commit_keeps_thumbnail_attached_during_ingest(local_store):
    videos = MemoryVideoStore(make_record())
    locks = VideoLocks()
    service = ThumbnailService(
        settings=get_settings(),
        thumbnails=MemoryThumbnailStore(base_url="http://t"),
        videos=videos,
        locks=locks,
    )
    pipeline = build_pipeline(media_tool=ThumbnailDuringProbeTool(service), object_store=local_store, videos=videos)
    pipeline.locks = locks
    stale = make_record()

    committed = asyncio.run(pipeline.ingest(stale, make_upload()))

    assert committed.thumbnail_url == "http://t/v1/thumbnails/vid-1"
    assert committed.video_url == "http://testserver/objects/landscape/vid-1.mp4"
    assert videos.records["vid-1"].thumbnail_url == "http://t/v1/thumbnails/vid-1"
    assert stale.thumbnail_url is None


def test_thumbnail_attach_keeps_committed_video_url():
    videos = MemoryVideoStore(make_record().model_copy(update={"video_url": "http://cdn/landscape/vid-1.mp4"}))
    service = ThumbnailService(
        settings=get_settings(),
        thumbnails=MemoryThumbnailStore(base_url="http://t"),
        videos=videos,
        locks=VideoLocks(),
    )

    committed = asyncio.run(service.attach(make_record(), make_thumbnail()))

    assert committed.video_url == "http://cdn/landscape/vid-1.mp4"
    assert committed.thumbnail_url == "http://t/v1/thumbnails/vid-1"


def test_commit_fails_when_record_disappears(fake_media_tool, local_store, staging_root):
    videos = MemoryVideoStore()
    pipeline = build_pipeline(media_tool=fake_media_tool, object_store=local_store, videos=videos)

    with pytest.raises(IngestFailed) as excinfo:
        asyncio.run(pipeline.ingest(make_record(), make_upload()))

    assert excinfo.value.step is IngestStep.commit
    assert excinfo.value.code == "commit_failed"
    assert staged_files(staging_root) == []


def test_rewrite_failure_removes_partial_output(local_store, staging_root):
    tool = FakeMediaTool(rewrite_error=ToolFailure("rewrite_failed", message="FFmpeg error: broken"))
    videos = MemoryVideoStore(make_record())
    pipeline = build_pipeline(media_tool=tool, object_store=local_store, videos=videos)

    with pytest.raises(IngestFailed) as excinfo:
        asyncio.run(pipeline.ingest(make_record(), make_upload()))

    assert excinfo.value.step is IngestStep.rewrite
    assert excinfo.value.code == "rewrite_failed"
    assert videos.updates == []
    assert staged_files(staging_root) == []


def test_upload_failure_never_sets_video_url(fake_media_tool, staging_root):
    videos = MemoryVideoStore(make_record())
    store = S3ObjectStore("bucket", "us-east-1", client=RecordingS3Client(fail=True))
    pipeline = build_pipeline(media_tool=fake_media_tool, object_store=store, videos=videos)

    with pytest.raises(IngestFailed) as excinfo:
        asyncio.run(pipeline.ingest(make_record(), make_upload()))

    assert excinfo.value.step is IngestStep.upload
    assert excinfo.value.code == "upload_failed"
    assert videos.updates == []
    assert videos.records["vid-1"].video_url is None
    assert staged_files(staging_root) == []


def test_commit_failure_leaves_uploaded_object(fake_media_tool, staging_root):
    videos = MemoryVideoStore(make_record(), fail_update=True)
    s3_client = RecordingS3Client()
    store = S3ObjectStore("bucket", "us-east-1", client=s3_client)
    pipeline = build_pipeline(media_tool=fake_media_tool, object_store=store, videos=videos)

    with pytest.raises(IngestFailed) as excinfo:
        asyncio.run(pipeline.ingest(make_record(), make_upload()))

    assert excinfo.value.step is IngestStep.commit
    assert excinfo.value.code == "commit_failed"
    assert ("bucket", "landscape/vid-1.mp4") in s3_client.objects
    assert videos.records["vid-1"].video_url is None
    assert staged_files(staging_root) == []


def test_streamed_size_over_limit_fails_during_staging(fake_media_tool, local_store, staging_root):
    videos = MemoryVideoStore(make_record())
    pipeline = build_pipeline(media_tool=fake_media_tool, object_store=local_store, videos=videos, max_bytes=16)

    with pytest.raises(IngestFailed) as excinfo:
        asyncio.run(pipeline.ingest(make_record(), make_upload(size=None)))

    assert excinfo.value.step is IngestStep.staging
    assert excinfo.value.code == "video_too_large"
    assert excinfo.value.status_code == 400
    assert fake_media_tool.calls == []
    assert staged_files(staging_root) == []


def test_empty_upload_is_rejected(fake_media_tool, local_store, staging_root):
    videos = MemoryVideoStore(make_record())
    pipeline = build_pipeline(media_tool=fake_media_tool, object_store=local_store, videos=videos)

    with pytest.raises(IngestFailed) as excinfo:
        asyncio.run(pipeline.ingest(make_record(), make_upload(b"")))

    assert excinfo.value.code == "video_file_empty"
    assert excinfo.value.status_code == 400
    assert fake_media_tool.calls == []
    assert staged_files(staging_root) == []


def test_rejected_media_type_never_reaches_disk(fake_media_tool, local_store, staging_root):
    videos = MemoryVideoStore(make_record())
    pipeline = build_pipeline(media_tool=fake_media_tool, object_store=local_store, videos=videos)

    with pytest.raises(BadRequestError) as excinfo:
        asyncio.run(pipeline.ingest(make_record(), make_upload(content_type="video/quicktime")))

    assert excinfo.value.code == "unsupported_media_type"
    assert fake_media_tool.calls == []
    assert not staging_root.exists()


def test_validate_upload_size_boundary():
    limit = 1 << 30
    assert validate_video_upload(make_upload(size=limit), max_bytes=limit).size == limit

    with pytest.raises(BadRequestError) as excinfo:
        validate_video_upload(make_upload(size=limit + 1), max_bytes=limit)
    assert excinfo.value.code == "video_too_large"


@pytest.mark.parametrize("upload", [None, "clip.mp4"])
def test_validate_upload_requires_file_part(upload):
    with pytest.raises(BadRequestError) as excinfo:
        validate_video_upload(upload, max_bytes=1024)
    assert excinfo.value.code == "video_file_missing"


def test_each_run_gets_its_own_staging_path(fake_media_tool, local_store, staging_root):
    pipeline = build_pipeline(media_tool=fake_media_tool, object_store=local_store, videos=MemoryVideoStore())

    first = pipeline.new_run("vid-1")
    second = pipeline.new_run("vid-1")

    assert first.staged_path != second.staged_path
    assert first.staged_path.parent == staging_root
    assert first.rewritten_path.name.endswith(".processed.mp4")
    assert first.state is IngestState.received


def test_concurrent_uploads_for_same_video_both_commit(fake_media_tool, local_store, staging_root):
    videos = MemoryVideoStore(make_record())
    pipeline = build_pipeline(media_tool=fake_media_tool, object_store=local_store, videos=videos)

    async def scenario():
        return await asyncio.gather(
            pipeline.ingest(make_record(), make_upload(VIDEO_BYTES + b"a")),
            pipeline.ingest(make_record(), make_upload(VIDEO_BYTES + b"b")),
        )

    first, second = asyncio.run(scenario())

    assert first.video_url == second.video_url == "http://testserver/objects/landscape/vid-1.mp4"
    assert len(videos.updates) == 2
    probed_paths = {path for name, path in fake_media_tool.calls if name == "probe"}
    assert len(probed_paths) == 2
    assert len(pipeline.locks) == 0
    assert staged_files(staging_root) == []


def test_video_locks_serialise_holders_of_same_video():
    locks = VideoLocks()
    events: list[str] = []

    async def holder(name: str):
        async with locks.hold("vid-1"):
            events.append(f"{name}:enter")
            await asyncio.sleep(0.01)
            events.append(f"{name}:exit")

    async def scenario():
        await asyncio.gather(holder("a"), holder("b"))

    asyncio.run(scenario())

    assert events == ["a:enter", "a:exit", "b:enter", "b:exit"]
    assert len(locks) == 0


def test_video_locks_do_not_block_other_videos():
    locks = VideoLocks()

    async def scenario():
        async with locks.hold("vid-1"):
            async with locks.hold("vid-2"):
                return len(locks)

    assert asyncio.run(scenario()) == 2
    assert len(locks) == 0
