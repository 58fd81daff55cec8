"""Rich-based live progress display for the incremental build.

Renders one line per scan or compile unit, updated in place:

    ebin/foo.beam      Compiling   ⠹ erlc
    ebin/bar.beam      Done        ✓ 0.4s
    src/baz.d          Scanning    ⠼

Thread-safe: worker threads call on_progress() while rich renders from its
own refresh thread.
"""

import threading
import time
from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from appmake.build.models import TaskPhase

_SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

_PHASE_LABELS = {
    TaskPhase.WAITING: ("Waiting", "dim"),
    TaskPhase.SCANNING: ("Scanning", "blue"),
    TaskPhase.COMPILING: ("Compiling", "magenta"),
    TaskPhase.DONE: ("Done", "green"),
    TaskPhase.FAILED: ("Failed", "red bold"),
    TaskPhase.SKIPPED: ("Skipped", "yellow"),
}


class _UnitDisplayState:
    """Display state of one unit of work."""

    __slots__ = ("name", "phase", "detail", "elapsed", "start_time")

    def __init__(self, name: str) -> None:
        self.name = name
        self.phase = TaskPhase.WAITING
        self.detail: str = ""
        self.elapsed: float = 0.0
        self.start_time: float | None = None


class CompileProgressDisplay:
    """Live table of scans and compiles, implementing ProgressCallback.

    Args:
        console: Rich Console to render on. If None, creates a new one.
        application: Application name for the header line
        refresh_per_second: Display refresh rate
    """

    def __init__(self, console: Console | None, application: str, refresh_per_second: int = 10) -> None:
        self._console = console if console is not None else Console()
        self._application = application
        self._refresh_per_second = refresh_per_second
        self._states: dict[str, _UnitDisplayState] = {}
        self._order: list[str] = []
        self._lock = threading.Lock()
        self._live: Live | None = None

    def on_progress(self, task_name: str, phase: TaskPhase, detail: str) -> None:
        with self._lock:
            state = self._states.get(task_name)
            if state is None:
                state = _UnitDisplayState(task_name)
                self._states[task_name] = state
                self._order.append(task_name)

            if state.start_time is None and phase in (TaskPhase.SCANNING, TaskPhase.COMPILING):
                state.start_time = time.monotonic()
            state.phase = phase
            state.detail = detail
            if state.start_time is not None:
                state.elapsed = time.monotonic() - state.start_time

    def start(self) -> None:
        self._live = Live(
            self._render_display(),
            console=self._console,
            refresh_per_second=self._refresh_per_second,
            transient=False,
            get_renderable=self._render_display,
        )
        self._live.start()

    def stop(self) -> None:
        if self._live is not None:
            self._live.update(self._render_display())
            self._live.stop()
            self._live = None

    def _render_display(self) -> Group:
        header = Text(f"\nBuilding {self._application}...\n", style="bold")
        return Group(header, self._render_table(), self._render_footer())

    def _render_table(self) -> Table:
        table = Table(show_header=False, show_edge=False, show_lines=False, box=None, padding=(0, 1), expand=False)
        table.add_column("Unit", style="bold", no_wrap=True, min_width=28)
        table.add_column("Phase", no_wrap=True, min_width=10)
        table.add_column("Status", no_wrap=False, min_width=30)

        with self._lock:
            for name in self._order:
                state = self._states[name]
                label, style = _PHASE_LABELS[state.phase]
                table.add_row(self._format_name(state), Text(label, style=style), self._format_status(state))
        return table

    def _render_footer(self) -> Text:
        with self._lock:
            phases = [state.phase for state in self._states.values()]
        parts = [f"{len(phases)} units"]
        for phase, word in (
            (TaskPhase.SCANNING, "scanning"),
            (TaskPhase.COMPILING, "compiling"),
            (TaskPhase.DONE, "done"),
            (TaskPhase.FAILED, "failed"),
            (TaskPhase.SKIPPED, "skipped"),
        ):
            count = phases.count(phase)
            if count:
                parts.append(f"{count} {word}")
        return Text(f"\n  {', '.join(parts)}", style="dim")

    def _format_name(self, state: _UnitDisplayState) -> Text:
        if state.phase == TaskPhase.DONE:
            return Text(state.name, style="green")
        if state.phase == TaskPhase.FAILED:
            return Text(state.name, style="red")
        if state.phase in (TaskPhase.WAITING, TaskPhase.SKIPPED):
            return Text(state.name, style="dim")
        return Text(state.name, style="bold cyan")

    def _format_status(self, state: _UnitDisplayState) -> Text:
        if state.phase in (TaskPhase.SCANNING, TaskPhase.COMPILING):
            spinner = _SPINNER_FRAMES[int(time.monotonic() * 8) % len(_SPINNER_FRAMES)]
            return Text(f"{spinner} {state.detail}".rstrip(), style="magenta")
        if state.phase == TaskPhase.DONE:
            elapsed = f"{state.elapsed:.1f}s" if state.elapsed > 0 else ""
            return Text(f"✓ {elapsed}".rstrip(), style="green")
        if state.phase == TaskPhase.FAILED:
            # Only the first line; the full compiler output is printed after the display stops
            first_line = state.detail.splitlines()[0] if state.detail else "Error"
            return Text(f"✗ {first_line}", style="red")
        if state.phase == TaskPhase.SKIPPED:
            return Text(state.detail, style="yellow")
        return Text("")

    def get_snapshot(self) -> list[dict[str, Any]]:
        """Snapshot of the current display state, for tests."""
        with self._lock:
            return [
                {
                    "name": state.name,
                    "phase": state.phase,
                    "detail": state.detail,
                    "elapsed": state.elapsed,
                }
                for state in (self._states[name] for name in self._order)
            ]

    def __enter__(self) -> "CompileProgressDisplay":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()
