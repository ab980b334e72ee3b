"""Domain entities and media helpers reused by the API and the CLI."""

from app.ingest.faststart import FastStartRewriter, faststart_output_path
from app.ingest.geometry import Geometry, GeometryProbe, Orientation, classify_orientation
from app.ingest.keys import AssetKeyPolicy, OrientationKeyPolicy, RandomKeyPolicy
from app.ingest.media_tool import MediaTool
from app.schemas import VideoRecord

__all__ = [
    "AssetKeyPolicy",
    "FastStartRewriter",
    "Geometry",
    "GeometryProbe",
    "MediaTool",
    "Orientation",
    "OrientationKeyPolicy",
    "RandomKeyPolicy",
    "VideoRecord",
    "classify_orientation",
    "faststart_output_path",
]
