from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict

from app.core.errors import ToolFailure
from app.core.logging import get_logger

from .process import ProcessRunner

__all__ = [
    "Orientation",
    "Geometry",
    "GeometryProbe",
    "classify_orientation",
    "parse_probe_output",
    "probe_args",
]

LANDSCAPE_RATIO = Fraction(16, 9)
PORTRAIT_RATIO = Fraction(9, 16)
# Absorbs rounding in common resolutions such as 1366x768 or 1080x1920.
RATIO_TOLERANCE = Fraction(1, 10)


class Orientation(str, enum.Enum):
    landscape = "landscape"
    portrait = "portrait"
    other = "other"


@dataclass(slots=True, frozen=True)
class Geometry:
    """Frame size of the first video stream."""

    width: int
    height: int

    @property
    def orientation(self) -> Orientation:
        return classify_orientation(self.width, self.height)


def classify_orientation(width: int, height: int) -> Orientation:
    """Classify a frame by its aspect ratio.

    Args:
        width: Frame width in pixels.
        height: Frame height in pixels.

    Returns:
        ``landscape`` when the ratio is strictly within the tolerance of 16:9,
        ``portrait`` when strictly within it of 9:16, ``other`` otherwise.
    """
    if width <= 0 or height <= 0:
        return Orientation.other
    # Exact arithmetic keeps the tolerance boundary strict.
    ratio = Fraction(width, height)
    if abs(ratio - LANDSCAPE_RATIO) < RATIO_TOLERANCE:
        return Orientation.landscape
    if abs(ratio - PORTRAIT_RATIO) < RATIO_TOLERANCE:
        return Orientation.portrait
    return Orientation.other


def probe_args(path: Path) -> list[str]:
    return [
        "-v",
        "error",
        "-select_streams",
        "v:0",
        "-show_entries",
        "stream=width,height",
        "-of",
        "json",
        str(path),
    ]


def parse_probe_output(raw: str) -> Geometry:
    """Parse ffprobe's JSON ``streams`` payload into a :class:`Geometry`.

    Args:
        raw: stdout of ffprobe run with :func:`probe_args`.

    Returns:
        The width and height of the first reported video stream.
    """
    try:
        payload: Dict[str, Any] = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ToolFailure("probe_output_unparsable", message=f"ffprobe output is not JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ToolFailure("probe_output_unparsable", message="ffprobe output is not a JSON object")

    streams = payload.get("streams") or []
    if not isinstance(streams, list):
        raise ToolFailure("probe_output_unparsable", message=f"ffprobe streams is not a list: {streams!r}")
    if not streams:
        raise ToolFailure("no_video_stream", message="No video streams found")

    first = streams[0]
    if not isinstance(first, dict):
        raise ToolFailure("probe_output_unparsable", message=f"video stream is not an object: {first!r}")
    width = _positive_int(first.get("width"))
    height = _positive_int(first.get("height"))
    if width is None or height is None:
        raise ToolFailure("probe_output_unparsable", message=f"video stream lacks dimensions: {first}")
    return Geometry(width=width, height=height)


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


class GeometryProbe:
    def __init__(self, runner: ProcessRunner, *, binary: str = "ffprobe"):
        self.runner = runner
        self.binary = binary
        self.logger = get_logger(component="geometry_probe")

    async def probe(self, path: Path) -> Geometry:
        result = await self.runner.run(self.binary, probe_args(path), capture_stdout=True, capture_stderr=True)
        if not result.ok:
            self.logger.error("ffprobe_failed", path=str(path), returncode=result.returncode, stderr=result.stderr.strip())
            raise ToolFailure("probe_failed", message=f"ffprobe error: {result.stderr.strip()}")
        geometry = parse_probe_output(result.stdout)
        self.logger.debug(
            "ffprobe_geometry",
            path=str(path),
            width=geometry.width,
            height=geometry.height,
            orientation=geometry.orientation.value,
        )
        return geometry
