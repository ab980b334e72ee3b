from __future__ import annotations

from pathlib import Path

from app.core.errors import ToolFailure
from app.core.logging import get_logger

from .process import ProcessRunner

__all__ = ["FastStartRewriter", "faststart_output_path", "rewrite_args"]

PROCESSED_SUFFIX = ".processed.mp4"


def faststart_output_path(input_path: Path) -> Path:
    """Return where the fast-start copy of ``input_path`` is written.

    Only depends on the input path, so a caller can always find and remove it.
    """
    return input_path.with_name(f"{input_path.stem}{PROCESSED_SUFFIX}")


def rewrite_args(input_path: Path, output_path: Path) -> list[str]:
    return [
        "-nostdin",
        "-v",
        "error",
        "-y",
        "-i",
        str(input_path),
        "-movflags",
        "faststart",
        "-map_metadata",
        "0",
        "-codec",
        "copy",
        "-f",
        "mp4",
        str(output_path),
    ]


class FastStartRewriter:
    """Moves the MP4 index to the front of the file; streams are copied, never re-encoded."""

    def __init__(self, runner: ProcessRunner, *, binary: str = "ffmpeg"):
        self.runner = runner
        self.binary = binary
        self.logger = get_logger(component="faststart_rewriter")

    async def rewrite(self, input_path: Path) -> Path:
        output_path = faststart_output_path(input_path)
        result = await self.runner.run(
            self.binary,
            rewrite_args(input_path, output_path),
            capture_stdout=False,
            capture_stderr=True,
        )
        if not result.ok:
            self.logger.error("ffmpeg_failed", path=str(input_path), returncode=result.returncode, stderr=result.stderr.strip())
            raise ToolFailure("rewrite_failed", message=f"FFmpeg error: {result.stderr.strip()}")
        self.logger.debug("ffmpeg_faststart_written", path=str(output_path))
        return output_path
