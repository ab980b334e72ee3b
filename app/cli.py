from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from .core.config import get_settings
from .core.errors import ToolFailure
from .ingest.faststart import FastStartRewriter
from .ingest.geometry import GeometryProbe
from .ingest.process import ProcessRunner, run_process

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reelhouse media developer CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg/ffprobe dependencies")

    subparsers = parser.add_subparsers(dest="command")

    probe_parser = subparsers.add_parser("probe", help="Print the first video stream's geometry and orientation")
    probe_parser.add_argument("--file", required=True, help="Path to the source media file")
    probe_parser.set_defaults(func=_cmd_probe)

    faststart_parser = subparsers.add_parser("faststart", help="Write a fast-start copy next to the source file")
    faststart_parser.add_argument("--file", required=True, help="Path to the source MP4 file")
    faststart_parser.set_defaults(func=_cmd_faststart)
    return parser


def _resolve_media(raw: str) -> Path:
    media_path = Path(raw).expanduser().resolve()
    if not media_path.exists():
        console.print(f"[red]File not found: {media_path}[/]")
        sys.exit(2)
    return media_path


def _cmd_probe(args: argparse.Namespace) -> None:
    media_path = _resolve_media(args.file)
    settings = get_settings()
    probe = GeometryProbe(ProcessRunner(), binary=settings.ffprobe_binary)
    try:
        geometry = asyncio.run(probe.probe(media_path))
    except ToolFailure as exc:
        console.print(f"[red]ffprobe failed:[/] {exc.message}")
        sys.exit(3)
    console.print_json(
        data={
            "file": str(media_path),
            "width": geometry.width,
            "height": geometry.height,
            "orientation": geometry.orientation.value,
        }
    )


def _cmd_faststart(args: argparse.Namespace) -> None:
    media_path = _resolve_media(args.file)
    settings = get_settings()
    rewriter = FastStartRewriter(ProcessRunner(), binary=settings.ffmpeg_binary)
    try:
        output_path = asyncio.run(rewriter.rewrite(media_path))
    except ToolFailure as exc:
        console.print(f"[red]ffmpeg failed:[/] {exc.message}")
        sys.exit(3)
    console.print(f"[green]Fast-start copy written to {output_path}[/]")


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    settings = get_settings()
    checks = {
        "ffmpeg": settings.ffmpeg_binary,
        "ffprobe": settings.ffprobe_binary,
    }
    results = {
        label: run_process(binary, ["-version"], capture_stdout=False, capture_stderr=False).ok
        for label, binary in checks.items()
    }

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not all(results.values()):
        console.print("[red]Missing dependencies detected. Install ffmpeg (which ships ffprobe).[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
