"""
Timestamped console output.

Every user-facing line carries the time since the run started (MM:SS.cc),
so a slow scan or compile stands out in the log:

    00:00.02 appmake: myapp v0.1.0
    00:00.05 [1/4] Discovering sources...
    00:00.05       12 sources, 1 grammars, 3 tests
    00:00.41       [Compiling] ebin/myapp_server.beam

Lines marked verbose_only appear only under -v. Debug diagnostics go
through the logging module, not through here.
"""

import sys
import time
from dataclasses import dataclass
from types import TracebackType
from typing import Optional, TextIO

DETAIL_INDENT = 6


@dataclass
class _Console:
    started: Optional[float] = None
    stream: Optional[TextIO] = None
    verbose: bool = False


_console = _Console()


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Start the run clock.

    Args:
        output_stream: Stream to write to instead of sys.stdout
    """
    _console.started = time.monotonic()
    if output_stream is not None:
        _console.stream = output_stream


def reset() -> None:
    """Stop the clock, drop any redirected stream and leave verbose mode."""
    _console.started = None
    _console.stream = None
    _console.verbose = False


def set_verbose(verbose: bool) -> None:
    _console.verbose = verbose


def is_verbose() -> bool:
    return _console.verbose


def get_elapsed() -> float:
    """Seconds since init_timer(), starting the clock on first use."""
    if _console.started is None:
        init_timer()
    return time.monotonic() - _console.started  # type: ignore[operator]


def format_timestamp() -> str:
    minutes, seconds = divmod(get_elapsed(), 60)
    return f"{int(minutes):02d}:{seconds:05.2f}"


def _emit(text: str, verbose_only: bool = False) -> None:
    if verbose_only and not _console.verbose:
        return
    # sys.stdout is looked up per line; rich and pytest both swap it
    stream = _console.stream or sys.stdout
    stream.write(f"{format_timestamp()} {text}\n")
    stream.flush()


def log(message: str, verbose_only: bool = False) -> None:
    _emit(message, verbose_only)


def log_phase(phase: int, total: int, message: str, verbose_only: bool = False) -> None:
    """
    Log a numbered build phase, e.g. ``[3/4] Compiling...``.

    Args:
        phase: Current phase number
        total: Number of phases in the goal
        message: Phase description
        verbose_only: Only print in verbose mode
    """
    _emit(f"[{phase}/{total}] {message}", verbose_only)


def log_detail(message: str, indent: int = DETAIL_INDENT, verbose_only: bool = False) -> None:
    _emit(" " * indent + message, verbose_only)


def log_file(action: str, filename: str, verbose_only: bool = False) -> None:
    """Log what happens to one file, e.g. ``[Compiling] ebin/foo.beam``."""
    log_detail(f"[{action}] {filename}", verbose_only=verbose_only)


def log_header(title: str, version: str) -> None:
    _emit(f"{title} v{version}")


def log_error(message: str) -> None:
    _emit(f"ERROR: {message}")


def log_warning(message: str) -> None:
    _emit(f"WARNING: {message}")


class TimedLogger:
    """
    Announce an operation and, in verbose mode, how long it took.

    Usage:
        with TimedLogger("Compiling", phase=(3, 4)) as timed:
            timed.detail("Compiled 10 of 12 objects")

    The closing ``Done (0.42s)`` line is written only when the block
    completes without an exception.
    """

    def __init__(self, operation: str, phase: Optional[tuple[int, int]] = None, verbose_only: bool = False):
        self.operation = operation
        self.phase = phase
        self.verbose_only = verbose_only
        self._entered = 0.0

    def __enter__(self) -> "TimedLogger":
        self._entered = time.monotonic()
        announcement = f"{self.operation}..."
        if self.phase is not None:
            announcement = f"[{self.phase[0]}/{self.phase[1]}] {announcement}"
        _emit(announcement, self.verbose_only)
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        if exc_type is None:
            log_detail(f"Done ({time.monotonic() - self._entered:.2f}s)", verbose_only=True)

    def detail(self, message: str) -> None:
        log_detail(message, verbose_only=self.verbose_only)
