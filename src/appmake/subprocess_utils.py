"""Subprocess helpers for invoking external build tools.

Every external program appmake runs (the compiler, the grammar compiler,
git) goes through :func:`run_tool`, which applies the platform flags from
:func:`safe_run` and captures output as text.
"""

import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence

logger = logging.getLogger(__name__)


def get_subprocess_creation_flags() -> int:
    """Return CREATE_NO_WINDOW on Windows so tool runs don't flash a console, else 0."""
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def safe_run(cmd: Sequence[str], **kwargs: Any) -> subprocess.CompletedProcess:
    """Execute subprocess.run with platform-specific flags.

    stdin is redirected to DEVNULL unless given explicitly, so a compiler
    waiting on input can never hang a parallel build. Custom
    ``creationflags`` are OR'd with the platform default.
    """
    default_flags = get_subprocess_creation_flags()
    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL

    return subprocess.run(list(cmd), **kwargs)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one external tool invocation."""

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        """Human-readable failure report (command plus captured output)."""
        lines = [f"Command: {' '.join(self.command)}"]
        if self.stderr.strip():
            lines.append(f"stderr: {self.stderr.strip()}")
        if self.stdout.strip():
            lines.append(f"stdout: {self.stdout.strip()}")
        return "\n".join(lines)


def run_tool(cmd: Sequence[str], cwd: Optional[Path] = None, timeout: Optional[float] = None) -> ToolResult:
    """Run an external tool and capture its output.

    Args:
        cmd: Command and arguments
        cwd: Working directory (defaults to the current directory)
        timeout: Optional timeout in seconds

    Returns:
        ToolResult with return code and captured text output

    Raises:
        FileNotFoundError: If the executable does not exist
        subprocess.TimeoutExpired: If the timeout elapses
    """
    command = tuple(str(part) for part in cmd)
    logger.debug("Running: %s", " ".join(command))
    completed = safe_run(
        command,
        cwd=str(cwd) if cwd is not None else None,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        timeout=timeout,
    )
    return ToolResult(
        command=command,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
