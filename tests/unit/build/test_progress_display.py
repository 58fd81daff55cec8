"""Unit tests for progress reporting callbacks and the live display."""

import io

import pytest
from rich.console import Console

from appmake import output
from appmake.build.callbacks import LogCallback, NullCallback, ProgressCallback
from appmake.build.models import TaskPhase
from appmake.build.progress_display import CompileProgressDisplay


def _console() -> Console:
    return Console(file=io.StringIO(), force_terminal=False, width=120)


class TestCompileProgressDisplay:
    """Display state tracking."""

    def test_implements_protocol(self):
        assert isinstance(CompileProgressDisplay(_console(), "myapp"), ProgressCallback)
        assert isinstance(NullCallback(), ProgressCallback)
        assert isinstance(LogCallback(), ProgressCallback)

    def test_snapshot_keeps_first_seen_order(self):
        display = CompileProgressDisplay(_console(), "myapp")
        display.on_progress("src/b.d", TaskPhase.SCANNING, "")
        display.on_progress("ebin/a.beam", TaskPhase.WAITING, "")
        display.on_progress("src/b.d", TaskPhase.DONE, "")
        snapshot = display.get_snapshot()
        assert [s["name"] for s in snapshot] == ["src/b.d", "ebin/a.beam"]
        assert snapshot[0]["phase"] == TaskPhase.DONE
        assert snapshot[1]["phase"] == TaskPhase.WAITING

    def test_elapsed_starts_with_work(self):
        """Waiting units have no elapsed time."""
        display = CompileProgressDisplay(_console(), "myapp")
        display.on_progress("ebin/a.beam", TaskPhase.WAITING, "")
        assert display.get_snapshot()[0]["elapsed"] == 0.0
        display.on_progress("ebin/a.beam", TaskPhase.COMPILING, "")
        display.on_progress("ebin/a.beam", TaskPhase.DONE, "0.1s")
        assert display.get_snapshot()[0]["elapsed"] >= 0.0

    def test_failed_detail_kept(self):
        display = CompileProgressDisplay(_console(), "myapp")
        display.on_progress("ebin/a.beam", TaskPhase.FAILED, "line one\nline two")
        assert display.get_snapshot()[0]["detail"] == "line one\nline two"

    def test_renders_all_units(self):
        """Every unit appears in the final render, failures with their first line."""
        console = _console()
        with CompileProgressDisplay(console, "myapp", refresh_per_second=20) as display:
            display.on_progress("ebin/a.beam", TaskPhase.DONE, "0.2s")
            display.on_progress("ebin/b.beam", TaskPhase.FAILED, "b.erl:3: syntax error\nmore")
            display.on_progress("ebin/c.beam", TaskPhase.SKIPPED, "Not started")
        text = console.file.getvalue()
        assert "Building myapp" in text
        assert "ebin/a.beam" in text
        assert "b.erl:3: syntax error" in text
        assert "more" not in text
        assert "3 units" in text


class TestLogCallback:
    """Plain console progress lines."""

    @pytest.fixture
    def stream(self):
        buffer = io.StringIO()
        output.init_timer(buffer)
        output.set_verbose(False)
        yield buffer
        output.reset()

    def test_compile_and_failure_lines(self, stream):
        callback = LogCallback()
        callback.on_progress("src/a.d", TaskPhase.SCANNING, "")
        callback.on_progress("ebin/a.beam", TaskPhase.COMPILING, "")
        callback.on_progress("ebin/a.beam", TaskPhase.DONE, "0.1s")
        callback.on_progress("ebin/b.beam", TaskPhase.FAILED, "boom")
        lines = stream.getvalue().splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("[Compiling] ebin/a.beam")
        assert lines[1].endswith("ERROR: ebin/b.beam: boom")

    def test_verbose_shows_scans_and_completions(self, stream):
        output.set_verbose(True)
        callback = LogCallback()
        callback.on_progress("src/a.d", TaskPhase.SCANNING, "")
        callback.on_progress("ebin/a.beam", TaskPhase.DONE, "0.1s")
        output.set_verbose(False)
        lines = stream.getvalue().splitlines()
        assert lines[0].endswith("[Scanning] src/a.d")
        assert lines[1].endswith("[Done] ebin/a.beam 0.1s")
