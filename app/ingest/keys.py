from __future__ import annotations

import base64
import secrets
from abc import ABC, abstractmethod

from app.core.config import Settings
from app.core.errors import BadRequestError

from .geometry import Geometry

__all__ = [
    "AssetKeyPolicy",
    "OrientationKeyPolicy",
    "RandomKeyPolicy",
    "media_type_to_ext",
    "random_token",
    "get_key_policy",
]

_MEDIA_TYPE_EXTENSIONS = {
    "video/mp4": ".mp4",
}


def media_type_to_ext(media_type: str) -> str:
    """Map an accepted video media type to its file extension.

    Args:
        media_type: Declared content type of the upload.

    Returns:
        The extension including the leading dot.
    """
    try:
        return _MEDIA_TYPE_EXTENSIONS[media_type]
    except KeyError:
        raise BadRequestError("unsupported_media_type", message=f"Unsupported media type: {media_type}") from None


def random_token(num_bytes: int = 32) -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(num_bytes)).decode("ascii").rstrip("=")


class AssetKeyPolicy(ABC):
    name: str

    @abstractmethod
    def derive_key(self, video_id: str, media_type: str, geometry: Geometry) -> str: ...


class OrientationKeyPolicy(AssetKeyPolicy):
    """``<orientation>/<video_id>.mp4``; a re-upload overwrites the previous object."""

    name = "orientation"

    def derive_key(self, video_id: str, media_type: str, geometry: Geometry) -> str:
        return f"{geometry.orientation.value}/{video_id}.mp4"


class RandomKeyPolicy(AssetKeyPolicy):
    """Opaque key from 32 random bytes; never collides and cannot be enumerated."""

    name = "random"

    def derive_key(self, video_id: str, media_type: str, geometry: Geometry) -> str:
        return f"{random_token()}{media_type_to_ext(media_type)}"


def get_key_policy(settings: Settings) -> AssetKeyPolicy:
    if settings.key_policy == "orientation":
        return OrientationKeyPolicy()
    if settings.key_policy == "random":
        return RandomKeyPolicy()
    raise ValueError(f"Unsupported key policy: {settings.key_policy}")
