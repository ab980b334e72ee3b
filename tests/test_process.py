from __future__ import annotations

import asyncio
import sys

from app.ingest.process import ProcessRunner, run_process

SCRIPT = "import sys; print('to-stdout'); print('to-stderr', file=sys.stderr); sys.exit(3)"


def test_non_zero_exit_is_returned_not_raised():
    result = run_process(sys.executable, ["-c", SCRIPT])
    assert result.returncode == 3
    assert not result.ok
    assert result.stdout.strip() == "to-stdout"
    assert result.stderr.strip() == "to-stderr"


def test_uncaptured_streams_are_empty():
    result = run_process(sys.executable, ["-c", SCRIPT], capture_stdout=False, capture_stderr=True)
    assert result.stdout == ""
    assert result.stderr.strip() == "to-stderr"


def test_missing_binary_reports_127():
    result = run_process("reelhouse-definitely-missing-binary", ["-version"])
    assert result.returncode == 127
    assert "reelhouse-definitely-missing-binary" in result.stderr


def test_runner_awaits_process_exit():
    runner = ProcessRunner()
    result = asyncio.run(runner.run(sys.executable, ["-c", "print('done')"]))
    assert result.ok
    assert result.stdout.strip() == "done"
