from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class VideoRecord(BaseModel):
    """Transient copy of a row in the ``videos`` table.

    Services mutate their own copy and hand it back to the record store in a
    single update call.
    """

    model_config = ConfigDict(from_attributes=True)

    video_id: str = Field(..., description="Opaque video identifier.")
    user_id: str = Field(..., description="Owning user.")
    title: str = Field(..., description="Display title.")
    description: str = Field(default="", description="Free-form description.")
    thumbnail_url: Optional[str] = Field(default=None, description="Where the thumbnail can be fetched.")
    video_url: Optional[str] = Field(
        default=None,
        description="Public playback URL; only set once the processed file is in object storage.",
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
