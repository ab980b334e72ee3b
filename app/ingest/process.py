from __future__ import annotations

import asyncio
import subprocess
from dataclasses import dataclass
from typing import Sequence

__all__ = ["ProcessResult", "ProcessRunner", "run_process"]

COMMAND_NOT_FOUND = 127


@dataclass(slots=True, frozen=True)
class ProcessResult:
    """Captured outcome of a single child process run."""

    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_process(
    command: str,
    args: Sequence[str],
    *,
    capture_stdout: bool = True,
    capture_stderr: bool = True,
) -> ProcessResult:
    """Run ``command`` with ``args`` to completion.

    A non-zero exit status is returned, never raised; callers decide what a
    failure means from ``returncode`` and ``stderr``. Streams that are not
    captured are discarded.

    Args:
        command: The executable name or path.
        args: Ordered arguments passed after the command.
        capture_stdout: Whether to collect stdout as text.
        capture_stderr: Whether to collect stderr as text.

    Returns:
        The captured stdout/stderr text and the exit status.
    """
    try:
        proc = subprocess.run(
            [command, *args],
            check=False,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE if capture_stdout else subprocess.DEVNULL,
            stderr=subprocess.PIPE if capture_stderr else subprocess.DEVNULL,
            text=True,
            errors="replace",
        )
    except FileNotFoundError:
        return ProcessResult(stdout="", stderr=f"command not found: {command}", returncode=COMMAND_NOT_FOUND)
    return ProcessResult(
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
        returncode=proc.returncode,
    )


class ProcessRunner:
    """Awaitable front for :func:`run_process`.

    The child runs in a worker thread, so the event loop keeps serving other
    requests while ffprobe/ffmpeg work. The await only completes once the
    process has exited.
    """

    async def run(
        self,
        command: str,
        args: Sequence[str],
        *,
        capture_stdout: bool = True,
        capture_stderr: bool = True,
    ) -> ProcessResult:
        return await asyncio.to_thread(
            run_process,
            command,
            list(args),
            capture_stdout=capture_stdout,
            capture_stderr=capture_stderr,
        )
