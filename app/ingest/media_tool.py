from __future__ import annotations

from pathlib import Path
from typing import Protocol

from app.core.config import Settings

from .faststart import FastStartRewriter
from .geometry import Geometry, GeometryProbe
from .process import ProcessRunner


class MediaTool(Protocol):
    """What the ingestion pipeline needs from a media toolchain."""

    async def probe(self, path: Path) -> Geometry: ...

    async def rewrite_faststart(self, path: Path) -> Path: ...


class FFmpegMediaTool:
    def __init__(self, probe: GeometryProbe, rewriter: FastStartRewriter):
        self.prober = probe
        self.rewriter = rewriter

    async def probe(self, path: Path) -> Geometry:
        return await self.prober.probe(path)

    async def rewrite_faststart(self, path: Path) -> Path:
        return await self.rewriter.rewrite(path)


def get_media_tool(settings: Settings, runner: ProcessRunner | None = None) -> MediaTool:
    runner = runner or ProcessRunner()
    return FFmpegMediaTool(
        GeometryProbe(runner, binary=settings.ffprobe_binary),
        FastStartRewriter(runner, binary=settings.ffmpeg_binary),
    )


__all__ = ["MediaTool", "FFmpegMediaTool", "get_media_tool"]
