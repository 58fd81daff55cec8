"""Data models for the incremental build.

Defines the core dataclasses used by the planner:
- TaskPhase: Enum tracking which stage a unit of work is in
- CompileTask: One object target to (re)compile
- BuildResult: Aggregated result of one planner run
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from appmake.build.discovery import SourceFile


class TaskPhase(Enum):
    """Phase of a unit of work in the build."""

    WAITING = "waiting"
    SCANNING = "scanning"
    COMPILING = "compiling"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskPhase.DONE, TaskPhase.FAILED, TaskPhase.SKIPPED)


@dataclass
class CompileTask:
    """A single stale object target.

    Attributes:
        name: Display name, the object path relative to the application
        source: Source the object is compiled from
        target: Object file to produce
        prerequisites: Everything the object depends on (from its record)
        dependencies: Names of tasks that must finish before this one starts
        phase: Current phase
        error_message: Failure detail when phase is FAILED or SKIPPED
        start_time: Monotonic timestamp when compilation started
        elapsed: Seconds spent compiling
    """

    name: str
    source: SourceFile
    target: Path
    prerequisites: tuple[Path, ...] = ()
    dependencies: list[str] = field(default_factory=list)
    phase: TaskPhase = TaskPhase.WAITING
    error_message: str = ""
    start_time: float | None = None
    elapsed: float = 0.0

    def mark_started(self) -> None:
        self.start_time = time.monotonic()

    def update_elapsed(self) -> None:
        if self.start_time is not None:
            self.elapsed = time.monotonic() - self.start_time

    def fail(self, error: str) -> None:
        """Mark this task as failed with an error message."""
        self.phase = TaskPhase.FAILED
        self.error_message = error
        self.update_elapsed()

    def skip(self, reason: str) -> None:
        """Mark this task as never started."""
        self.phase = TaskPhase.SKIPPED
        self.error_message = reason


@dataclass
class BuildResult:
    """Aggregated result of one planner run.

    Attributes:
        tasks: Final state of every compile task that was scheduled
        total_elapsed: Wall-clock seconds
        success: True if every scheduled task compiled
        refreshed_records: Dependency records (re)written during the run
        generated_sources: Sources regenerated from grammar files
    """

    tasks: list[CompileTask]
    total_elapsed: float
    success: bool
    refreshed_records: list[Path] = field(default_factory=list)
    generated_sources: list[Path] = field(default_factory=list)

    @property
    def compiled_count(self) -> int:
        return sum(1 for t in self.tasks if t.phase == TaskPhase.DONE)

    @property
    def failed_tasks(self) -> list[CompileTask]:
        return [t for t in self.tasks if t.phase == TaskPhase.FAILED]

    @property
    def skipped_count(self) -> int:
        return sum(1 for t in self.tasks if t.phase == TaskPhase.SKIPPED)

    @property
    def up_to_date(self) -> bool:
        """True when nothing needed compiling."""
        return not self.tasks and self.success
