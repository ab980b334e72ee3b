import asyncio
import shutil
import subprocess
from pathlib import Path

import jwt
import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.core.db import Base, create_engine
from app.core.errors import ToolFailure
from app.ingest.faststart import faststart_output_path
from app.ingest.geometry import Geometry
from app.main import create_app

JWT_SECRET = "test-secret"
JWT_ISSUER = "reelhouse-test"
JWT_AUDIENCE = "reelhouse"

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default Reelhouse environment bootstrap fixture for tests that manage their own .env",
    )


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()
        return
    db_path = tmp_path / "reelhouse_test.db"

    monkeypatch.setenv("REELHOUSE_ENV", "test")
    monkeypatch.setenv("REELHOUSE_LOG_LEVEL", "debug")
    monkeypatch.setenv("REELHOUSE_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("REELHOUSE_PUBLIC_BASE_URL", "http://testserver")
    monkeypatch.setenv("REELHOUSE_STAGING_ROOT", str(tmp_path / "staging"))
    monkeypatch.setenv("REELHOUSE_ASSETS_ROOT", str(tmp_path / "assets"))
    monkeypatch.setenv("REELHOUSE_OBJECT_ROOT", str(tmp_path / "objects"))
    monkeypatch.setenv("REELHOUSE_OBJECT_STORE_BACKEND", "local")
    monkeypatch.setenv("REELHOUSE_THUMBNAIL_BACKEND", "disk")
    monkeypatch.setenv("REELHOUSE_KEY_POLICY", "orientation")
    monkeypatch.setenv("REELHOUSE_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("REELHOUSE_JWT_ISSUER", JWT_ISSUER)
    monkeypatch.setenv("REELHOUSE_JWT_AUDIENCE", JWT_AUDIENCE)

    get_settings.cache_clear()
    settings = get_settings()
    engine = create_engine(settings)

    async def _setup() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_setup())

    yield

    async def _teardown() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(_teardown())
    get_settings.cache_clear()


@pytest.fixture()
def client(configure_environment):
    app = create_app()
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def staging_root(tmp_path) -> Path:
    return tmp_path / "staging"


def build_token(user_id: str | None, *, secret: str = JWT_SECRET) -> str:
    payload = {"iss": JWT_ISSUER, "aud": JWT_AUDIENCE}
    if user_id:
        payload["sub"] = user_id
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture()
def owner_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-owner')}"}


@pytest.fixture()
def stranger_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-stranger')}"}


class FakeMediaTool:
    """Stands in for ffprobe/ffmpeg; records every call it receives."""

    def __init__(self, geometry: Geometry = Geometry(1280, 720), *, probe_error=None, rewrite_error=None):
        self.geometry = geometry
        self.probe_error = probe_error
        self.rewrite_error = rewrite_error
        self.calls: list[tuple[str, Path]] = []

    async def probe(self, path: Path) -> Geometry:
        self.calls.append(("probe", path))
        assert path.exists(), "probe must only run on a staged file"
        if self.probe_error:
            raise self.probe_error
        return self.geometry

    async def rewrite_faststart(self, path: Path) -> Path:
        self.calls.append(("rewrite", path))
        output = faststart_output_path(path)
        output.write_bytes(b"faststart:" + path.read_bytes())
        if self.rewrite_error:
            raise self.rewrite_error
        return output


class RecordingS3Client:
    """Minimal boto3 S3 client double keeping uploaded objects in memory."""

    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.objects: dict[tuple[str, str], dict] = {}

    def upload_file(self, Filename, Bucket, Key, ExtraArgs=None):
        if self.fail:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        self.objects[(Bucket, Key)] = {
            "body": Path(Filename).read_bytes(),
            "content_type": (ExtraArgs or {}).get("ContentType"),
        }


@pytest.fixture()
def fake_media_tool() -> FakeMediaTool:
    return FakeMediaTool()


@pytest.fixture()
def failing_probe_tool() -> FakeMediaTool:
    return FakeMediaTool(probe_error=ToolFailure("probe_failed", message="ffprobe error: moov atom not found"))


@pytest.fixture()
def s3_client() -> RecordingS3Client:
    return RecordingS3Client()


@pytest.fixture(scope="session")
def generated_video_file(tmp_path_factory) -> Path:
    """Generates a small 1280x720 MP4 for tests that drive the real ffmpeg toolchain."""
    video_path = tmp_path_factory.mktemp("data") / "landscape.mp4"

    command = [
        "ffmpeg",
        "-f", "lavfi",
        "-i", "color=c=black:s=1280x720:r=30",
        "-t", "1",
        "-pix_fmt", "yuv420p",
        str(video_path),
    ]
    subprocess.run(command, check=True, capture_output=True)
    return video_path
