from __future__ import annotations

import asyncio
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from urllib.parse import quote
from uuid import uuid4

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .errors import StorageFailure
from .logging import get_logger


class ObjectStore(ABC):
    """Durable key/object storage for processed video files."""

    @abstractmethod
    def public_url(self, key: str) -> str: ...

    @abstractmethod
    async def put(self, key: str, local_path: Path, content_type: str) -> str:
        """Upload the full contents of ``local_path`` under ``key`` and return its public URL."""


class LocalObjectStore(ObjectStore):
    """Filesystem-backed object store suitable for development."""

    def __init__(self, base_path: Path, *, base_url: str):
        self.base_path = base_path
        self.base_url = base_url.rstrip("/")
        self.logger = get_logger(component="local_object_store")

    def _resolve(self, key: str) -> Path:
        base = self.base_path.resolve()
        target = (base / key).resolve()
        if base not in target.parents:
            raise StorageFailure("invalid_object_key", message=f"Key escapes the object root: {key}")
        return target

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/objects/{quote(key)}"

    def _copy(self, key: str, local_path: Path) -> None:
        target = self._resolve(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(f".{target.name}.{uuid4().hex}.partial")
        try:
            shutil.copyfile(local_path, partial)
            os.replace(partial, target)
        finally:
            partial.unlink(missing_ok=True)

    async def put(self, key: str, local_path: Path, content_type: str) -> str:
        try:
            await asyncio.to_thread(self._copy, key, local_path)
        except OSError as exc:
            self.logger.error("object_put_failed", key=key, error=str(exc))
            raise StorageFailure("upload_failed", message=str(exc)) from exc
        self.logger.info("object_put", key=key, content_type=content_type)
        return self.public_url(key)


class S3ObjectStore(ObjectStore):
    """Amazon S3 object store; one ``upload_file`` call per object."""

    def __init__(self, bucket: str, region: str, *, client: Any | None = None, endpoint_url: str | None = None):
        self.bucket = bucket
        self.region = region
        self.client = client or boto3.client("s3", region_name=region, endpoint_url=endpoint_url)
        self.logger = get_logger(component="s3_object_store", bucket=bucket)

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(key)}"

    async def put(self, key: str, local_path: Path, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self.client.upload_file,
                str(local_path),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (S3UploadFailedError, BotoCoreError, ClientError, OSError) as exc:
            self.logger.error("object_put_failed", key=key, error=str(exc))
            raise StorageFailure("upload_failed", message=str(exc)) from exc
        self.logger.info("object_put", key=key, content_type=content_type)
        return self.public_url(key)


def get_object_store(settings: Settings) -> ObjectStore:
    if settings.object_store_backend == "local":
        return LocalObjectStore(base_path=Path(settings.object_root), base_url=settings.public_base)
    if settings.object_store_backend == "s3":
        if not settings.s3_bucket or not settings.s3_region:
            raise ValueError("S3 object store requires REELHOUSE_S3_BUCKET and REELHOUSE_S3_REGION.")
        return S3ObjectStore(settings.s3_bucket, settings.s3_region, endpoint_url=settings.s3_endpoint_url)
    raise ValueError(f"Unsupported object store backend: {settings.object_store_backend}")


__all__ = [
    "ObjectStore",
    "LocalObjectStore",
    "S3ObjectStore",
    "get_object_store",
]
