"""Dependency-ordered scheduling of compile tasks.

An object waits until every object it depends on has compiled. The edges
come from dependency records: a module depends on the objects of the
behaviours and parse transforms it declares from the same package.
"""

import threading
from typing import Iterable, Mapping

from appmake.build.models import CompileTask, TaskPhase


class CyclicDependencyError(ValueError):
    """Object-to-object edges form a cycle, so no compile order exists."""


def find_cycle(graph: Mapping[str, Iterable[str]]) -> list[str] | None:
    """Find one cycle in a dependency graph.

    Depth-first search with three-state marking. Edges to nodes outside
    the graph are ignored.

    Args:
        graph: Node name -> names of the nodes it depends on

    Returns:
        The cycle as a path that starts and ends with the same node, or None
    """
    unvisited, on_stack, finished = 0, 1, 2
    state = dict.fromkeys(graph, unvisited)
    stack: list[str] = []

    def visit(name: str) -> list[str] | None:
        state[name] = on_stack
        stack.append(name)
        for dep in graph[name]:
            dep_state = state.get(dep)
            if dep_state == on_stack:
                return stack[stack.index(dep) :] + [dep]
            if dep_state == unvisited:
                found = visit(dep)
                if found is not None:
                    return found
        stack.pop()
        state[name] = finished
        return None

    for name in graph:
        if state[name] == unvisited:
            found = visit(name)
            if found is not None:
                return found
    return None


class CompileScheduler:
    """Hands out compile tasks whose dependencies have compiled.

    Worker threads report phases while the planner loop polls for ready
    tasks, so every access holds the lock.

    Usage:
        scheduler = CompileScheduler(tasks)
        scheduler.validate()

        while not scheduler.all_done():
            for task in scheduler.get_ready_tasks():
                scheduler.mark_phase(task.name, TaskPhase.COMPILING)
                submit(task)
    """

    def __init__(self, tasks: Iterable[CompileTask] = ()) -> None:
        self._by_name: dict[str, CompileTask] = {}
        self._lock = threading.Lock()
        for task in tasks:
            self.add_task(task)

    def add_task(self, task: CompileTask) -> None:
        """Register a task.

        Raises:
            ValueError: If another task already produces the same object
        """
        with self._lock:
            if task.name in self._by_name:
                raise ValueError(f"Object scheduled twice: {task.name}")
            self._by_name[task.name] = task

    def validate(self) -> None:
        """Check that every dependency is scheduled and that no cycle exists.

        Raises:
            ValueError: If a task waits on an object that is not scheduled
            CyclicDependencyError: If the edges form a cycle
        """
        with self._lock:
            graph = {name: list(task.dependencies) for name, task in self._by_name.items()}
        for name, deps in graph.items():
            missing = [dep for dep in deps if dep not in graph]
            if missing:
                raise ValueError(f"{name} waits on unscheduled {', '.join(missing)}")
        cycle = find_cycle(graph)
        if cycle is not None:
            raise CyclicDependencyError(f"Cyclic dependency between objects: {' -> '.join(cycle)}")

    def get_ready_tasks(self) -> list[CompileTask]:
        """WAITING tasks whose dependencies are all DONE."""
        with self._lock:
            done = {name for name, task in self._by_name.items() if task.phase is TaskPhase.DONE}
            return [
                task
                for task in self._by_name.values()
                if task.phase is TaskPhase.WAITING and done.issuperset(task.dependencies)
            ]

    def mark_phase(self, task_name: str, phase: TaskPhase) -> None:
        """Move a task to another phase.

        Raises:
            KeyError: If no task has that name
        """
        with self._lock:
            try:
                self._by_name[task_name].phase = phase
            except KeyError:
                raise KeyError(f"Not scheduled: {task_name}") from None

    def skip_waiting(self, reason: str) -> list[CompileTask]:
        """Mark every task that has not started as SKIPPED and return them."""
        with self._lock:
            skipped = [task for task in self._by_name.values() if task.phase is TaskPhase.WAITING]
            for task in skipped:
                task.skip(reason)
            return skipped

    def all_done(self) -> bool:
        with self._lock:
            return all(task.phase.is_terminal for task in self._by_name.values())

    def has_failed(self) -> bool:
        with self._lock:
            return any(task.phase is TaskPhase.FAILED for task in self._by_name.values())
