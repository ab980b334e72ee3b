from __future__ import annotations

import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Secrets(BaseSettings):
    """Secrets configuration, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="REELHOUSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    jwt_secret: str = Field(default="change-me", description="Signing secret for bearer token validation.")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Secrets":
        return cls()


class Settings(BaseSettings):
    """Centralised runtime configuration for the Reelhouse API."""

    model_config = SettingsConfigDict(
        env_prefix="REELHOUSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Reelhouse API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./reelhouse.db",
        description="SQLAlchemy compatible DSN.",
    )
    public_base_url: str = Field(
        default="http://localhost:8091",
        description="Externally reachable origin used to build thumbnail and local object URLs.",
    )

    assets_root: Path = Field(default_factory=lambda: Path("assets"), description="Directory for disk-backed thumbnails.")
    staging_root: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "reelhouse",
        description="Scratch directory for staged and rewritten uploads.",
    )

    object_store_backend: Literal["local", "s3"] = Field(default="local", description="Active object store implementation.")
    object_root: Path = Field(default_factory=lambda: Path("objects"), description="Root for the local object store.")
    s3_bucket: Optional[str] = None
    s3_region: Optional[str] = None
    s3_endpoint_url: Optional[str] = Field(default=None, description="Override endpoint for S3 compatible services.")

    key_policy: Literal["orientation", "random"] = Field(
        default="orientation",
        description="Storage key strategy for uploaded videos.",
    )
    thumbnail_backend: Literal["disk", "memory"] = Field(
        default="disk",
        description="Thumbnail store; memory is ephemeral and lost on restart.",
    )

    max_video_upload_bytes: int = Field(default=1 << 30, description="Hard limit for video uploads.")
    max_thumbnail_upload_bytes: int = Field(default=10 << 20, description="Hard limit for thumbnail uploads.")

    ffprobe_binary: str = Field(default="ffprobe")
    ffmpeg_binary: str = Field(default="ffmpeg")

    jwt_algorithm: str = Field(default="HS256", description="Algorithm used for JWT tokens.")
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def public_base(self) -> str:
        return self.public_base_url.rstrip("/")


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "REELHOUSE_ENV": "REELHOUSE_ENVIRONMENT",
        "REELHOUSE_DB_URL": "REELHOUSE_DATABASE_URL",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    settings = Settings()

    # In a real application, you would fetch secrets from a secure vault
    # instead of just loading them from the environment.
    secrets = Secrets.from_settings(settings)

    if settings.environment_lower == "production" and secrets.jwt_secret == "change-me":
        raise ValueError("Production environment must have a non-default JWT secret.")

    settings.secrets = secrets
    return settings


__all__ = ["Settings", "Secrets", "get_settings"]
