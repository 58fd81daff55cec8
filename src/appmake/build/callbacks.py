"""Progress callback protocol for the incremental build.

The planner reports every dependency scan and compile through this
interface; the rich display, the plain console logger and the no-op
test callback all implement it.
"""

from typing import Protocol, runtime_checkable

from appmake import output
from appmake.build.models import TaskPhase


@runtime_checkable
class ProgressCallback(Protocol):
    """Protocol for receiving progress updates from the planner."""

    def on_progress(self, task_name: str, phase: TaskPhase, detail: str) -> None:
        """Called when a unit of work changes phase.

        Args:
            task_name: Record or object path relative to the application
            phase: New phase
            detail: Human-readable status (error text for FAILED)
        """
        ...


class NullCallback:
    """No-op callback for tests and non-interactive use."""

    def on_progress(self, task_name: str, phase: TaskPhase, detail: str) -> None:
        pass


class LogCallback:
    """Reports progress as timestamped console lines.

    Only starts and failures are printed; completions are shown in
    verbose mode.
    """

    def on_progress(self, task_name: str, phase: TaskPhase, detail: str) -> None:
        if phase == TaskPhase.SCANNING:
            output.log_file("Scanning", task_name, verbose_only=True)
        elif phase == TaskPhase.COMPILING:
            output.log_file("Compiling", task_name)
        elif phase == TaskPhase.DONE:
            output.log_file("Done", f"{task_name} {detail}".rstrip(), verbose_only=True)
        elif phase == TaskPhase.FAILED:
            output.log_error(f"{task_name}: {detail}")
        elif phase == TaskPhase.SKIPPED:
            output.log_file("Skipped", task_name, verbose_only=True)
