"""Incremental Build Planner - compile only what is stale.

Pipeline for one non-destructive goal:
1. Ensure output directories exist (idempotent, safe under concurrency)
2. Regenerate stale sources from grammar files
3. Refresh missing, stale or corrupt dependency records in parallel
4. Load records (only those the goal's RecordPolicy allows)
5. Reject two sources that map to the same object
6. Build the object graph from record edges and decide staleness
7. Compile stale objects on a worker pool in dependency order

Record refresh happens before any compile, the way make re-reads
regenerated include files before building targets, so every stale object
is compiled with a fresh record and transform edges are known up front.

Fail fast: once a compile fails no new unit is started, running units
finish, and the rest are reported as SKIPPED. Objects already produced are
kept so a retry resumes incrementally.
"""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, as_completed, wait
from pathlib import Path
from typing import Optional

from appmake.build.callbacks import NullCallback, ProgressCallback
from appmake.build.depfile import DependencyRecord, DependencyRecordError
from appmake.build.discovery import SourceFile, SourceSet
from appmake.build.extractor import DependencyExtractor
from appmake.build.models import BuildResult, CompileTask, TaskPhase
from appmake.build.pool import WorkerPool
from appmake.build.scheduler import CompileScheduler, CyclicDependencyError, find_cycle
from appmake.build.staleness import StalenessOracle, oracle_for
from appmake.config import BuildConfig
from appmake.goals import Goal, RecordPolicy
from appmake.output import log_warning
from appmake.toolchain.base import Toolchain

logger = logging.getLogger(__name__)


class ModuleCollisionError(Exception):
    """Raised when two sources would compile to the same object."""

    def __init__(self, target: Path, sources: list[Path]):
        listed = ", ".join(str(s) for s in sources)
        super().__init__(f"Module name collision for {target}: {listed}")
        self.target = target
        self.sources = sources


def scoped_sources(sources: SourceSet, policy: RecordPolicy) -> list[SourceFile]:
    """Sources whose records the policy allows to be read."""
    scoped: list[SourceFile] = []
    if policy.load_main:
        scoped.extend(sources.main_sources)
    if policy.load_tests:
        scoped.extend(sources.test_sources)
    return scoped


def check_collisions(sources: SourceSet, scoped: list[SourceFile]) -> None:
    """Raise ModuleCollisionError if two sources share an object target."""
    by_target: dict[Path, list[Path]] = {}
    for source in scoped:
        by_target.setdefault(sources.object_for(source), []).append(source.path)
    for target, paths in by_target.items():
        if len(paths) > 1:
            raise ModuleCollisionError(target, paths)


class DependencyRecordStore:
    """The only reader of dependency records.

    A record is reused when it parses, describes the expected source and
    object, and is not stale with respect to the source and headers it
    lists. Anything else is regenerated through the extractor.

    Args:
        config: Build configuration
        extractor: Writes fresh records
        oracle: Staleness oracle shared with the planner
        callback: Progress callback for scans
    """

    def __init__(
        self,
        config: BuildConfig,
        extractor: DependencyExtractor,
        oracle: StalenessOracle,
        callback: Optional[ProgressCallback] = None,
    ):
        self.config = config
        self.extractor = extractor
        self.oracle = oracle
        self.callback = callback or NullCallback()
        self.refreshed: list[Path] = []

    def _read_current(self, source: SourceFile, sources: SourceSet) -> DependencyRecord | None:
        path = sources.record_for(source)
        if not path.exists():
            return None
        try:
            record = DependencyRecord.load(path, self.config.app_dir)
        except DependencyRecordError as e:
            log_warning(f"Regenerating corrupt dependency record {self.config.relative(path)}")
            logger.debug("Unparsable record %s: %s", path, e)
            return None
        if record.source != source.path or record.target != sources.object_for(source):
            logger.debug("Record %s describes another source, regenerating", path)
            return None
        if self.oracle.is_stale(record.path, record.file_prerequisites):
            return None
        return record

    def _refresh(self, source: SourceFile, sources: SourceSet) -> DependencyRecord:
        name = self.config.relative(sources.record_for(source))
        self.callback.on_progress(name, TaskPhase.SCANNING, "")
        record = self.extractor.extract(source, sources)
        self.oracle.record_built(record.path, record.file_prerequisites)
        self.callback.on_progress(name, TaskPhase.DONE, "")
        return record

    def load(self, sources: SourceSet, policy: RecordPolicy) -> dict[Path, DependencyRecord]:
        """Return up-to-date records for every source the policy allows.

        Nothing at all is read when the policy allows nothing.

        Returns:
            Source path -> record

        Raises:
            ScanError: If a stale record cannot be regenerated
        """
        if not policy.allows_any:
            return {}

        records: dict[Path, DependencyRecord] = {}
        stale: list[SourceFile] = []
        for source in scoped_sources(sources, policy):
            record = self._read_current(source, sources)
            if record is None:
                stale.append(source)
            else:
                records[source.path] = record

        if not stale:
            return records

        with WorkerPool(self.config.jobs, name="scan") as pool:
            futures: dict[Future[DependencyRecord], SourceFile] = {
                pool.submit(self._refresh, source, sources): source for source in stale
            }
            try:
                for future in as_completed(futures):
                    record = future.result()
                    records[futures[future].path] = record
                    self.refreshed.append(record.path)
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
            finally:
                self.oracle.flush()
        return records


class IncrementalBuildPlanner:
    """Decides what is stale and compiles it.

    Args:
        config: Build configuration
        toolchain: Compiler toolchain
        oracle: Staleness oracle (defaults to the one selected by config)
        callback: Progress callback (defaults to NullCallback)
    """

    def __init__(
        self,
        config: BuildConfig,
        toolchain: Toolchain,
        oracle: Optional[StalenessOracle] = None,
        callback: Optional[ProgressCallback] = None,
    ):
        self.config = config
        self.toolchain = toolchain
        self.oracle = oracle if oracle is not None else oracle_for(config)
        self.callback = callback or NullCallback()
        self.extractor = DependencyExtractor(config, toolchain)
        self.store = DependencyRecordStore(config, self.extractor, self.oracle, self.callback)

    def run(self, goal: Goal, sources: SourceSet) -> BuildResult:
        """Bring the goal's objects up to date.

        Args:
            goal: BUILD or TESTS
            sources: Result of discovery

        Returns:
            BuildResult describing the compile tasks that were scheduled

        Raises:
            ValueError: For destructive goals, which must never plan a build
            CompileError: If a grammar file cannot be compiled
            ScanError: If a dependency record cannot be regenerated
            ModuleCollisionError: If two sources share an object target
            CyclicDependencyError: If object edges form a cycle
        """
        if goal.is_destructive:
            raise ValueError(f"Goal '{goal}' does not build anything")

        start_time = time.monotonic()
        policy = RecordPolicy.for_goals([goal])
        self._ensure_directories(goal)

        check_collisions(sources, scoped_sources(sources, policy))
        generated = self._generate_sources(sources) if policy.load_main else []

        self.store.refreshed = []
        records = self.store.load(sources, policy)

        roots = sources.test_sources if goal is Goal.TESTS else sources.main_sources
        tasks = self._plan(sources, records, roots)

        if tasks:
            self._compile_all(tasks)

        return BuildResult(
            tasks=tasks,
            total_elapsed=time.monotonic() - start_time,
            success=all(task.phase == TaskPhase.DONE for task in tasks),
            refreshed_records=list(self.store.refreshed),
            generated_sources=generated,
        )

    def _ensure_directories(self, goal: Goal) -> None:
        directories = [self.config.ebin_dir, self.config.deps_dir]
        if goal.concerns_tests:
            directories += [self.config.test_ebin_dir, self.config.test_deps_dir]
        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

    def _generate_sources(self, sources: SourceSet) -> list[Path]:
        """Regenerate sources whose grammar file is newer (or that do not exist yet)."""
        generated: list[Path] = []
        for source in sources.generated_sources:
            if source.grammar is None:
                continue
            if not self.oracle.is_stale(source.path, [source.grammar]):
                continue
            name = self.config.relative(source.path)
            self.callback.on_progress(name, TaskPhase.COMPILING, "grammar")
            self.toolchain.compile_grammar(source.grammar, source.path.parent)
            self.oracle.record_built(source.path, [source.grammar])
            self.callback.on_progress(name, TaskPhase.DONE, "")
            generated.append(source.path)
        if generated:
            self.oracle.flush()
        return generated

    def _plan(
        self,
        sources: SourceSet,
        records: dict[Path, DependencyRecord],
        roots: tuple[SourceFile, ...],
    ) -> list[CompileTask]:
        """Build compile tasks for the stale part of the roots' dependency closure."""
        by_target: dict[Path, tuple[SourceFile, DependencyRecord]] = {}
        for source in scoped_sources(sources, RecordPolicy(load_main=True, load_tests=True)):
            record = records.get(source.path)
            if record is not None:
                by_target[record.target] = (source, record)
        # A main module may use a behaviour from the test root. Without test
        # records that object is built from its source alone, like a make
        # pattern rule.
        test_objects = {sources.object_for(source): source for source in sources.test_sources}

        # Closure of the roots through object-to-object edges
        closure: list[Path] = []
        pending = [sources.object_for(source) for source in roots]
        while pending:
            target = pending.pop()
            if target not in by_target and target in test_objects:
                source = test_objects[target]
                by_target[target] = (source, DependencyRecord(target, sources.record_for(source), source.path))
            if target in closure or target not in by_target:
                continue
            closure.append(target)
            pending.extend(by_target[target][1].module_deps)

        edges = {
            target: [dep for dep in by_target[target][1].module_deps if dep in by_target and dep != target]
            for target in closure
        }
        cycle = find_cycle({str(t): [str(d) for d in deps] for t, deps in edges.items()})
        if cycle is not None:
            names = [self.config.relative(Path(node)) for node in cycle]
            raise CyclicDependencyError(f"Cyclic dependency between objects: {' -> '.join(names)}")

        stale: dict[Path, bool] = {}

        def is_stale(target: Path) -> bool:
            if target not in stale:
                record = by_target[target][1]
                direct = self.oracle.is_stale(target, record.prerequisites)
                # Every dependency is visited so the memo covers the whole closure
                inherited = [is_stale(dep) for dep in edges[target]]
                stale[target] = direct or any(inherited)
            return stale[target]

        tasks: list[CompileTask] = []
        for target in sorted(closure):
            if not is_stale(target):
                continue
            source, record = by_target[target]
            tasks.append(
                CompileTask(
                    name=self.config.relative(target),
                    source=source,
                    target=target,
                    prerequisites=record.prerequisites,
                    dependencies=[self.config.relative(dep) for dep in edges[target] if stale[dep]],
                )
            )
        return tasks

    def _code_paths(self, task: CompileTask) -> list[Path]:
        paths = [self.config.ebin_dir]
        test_ebin = self.config.test_ebin_dir
        if test_ebin != self.config.ebin_dir and (task.source.is_test or any(p.parent == test_ebin for p in task.prerequisites)):
            paths.append(test_ebin)
        return paths

    def _compile_one(self, task: CompileTask) -> Path:
        task.target.parent.mkdir(parents=True, exist_ok=True)
        return self.toolchain.compile(
            task.source.path,
            task.target.parent,
            self.config.include_paths,
            self.config.defines,
            self._code_paths(task),
        )

    def _compile_all(self, tasks: list[CompileTask]) -> None:
        scheduler = CompileScheduler(tasks)
        scheduler.validate()
        for task in tasks:
            self.callback.on_progress(task.name, TaskPhase.WAITING, "")

        active: dict[Future[Path], CompileTask] = {}
        with WorkerPool(self.config.jobs, name="compile") as pool:
            try:
                while not scheduler.all_done():
                    if not scheduler.has_failed():
                        for task in scheduler.get_ready_tasks():
                            task.mark_started()
                            scheduler.mark_phase(task.name, TaskPhase.COMPILING)
                            self.callback.on_progress(task.name, TaskPhase.COMPILING, "")
                            active[pool.submit(self._compile_one, task)] = task

                    if not active:
                        for task in scheduler.skip_waiting("Not started after an earlier failure"):
                            self.callback.on_progress(task.name, TaskPhase.SKIPPED, task.error_message)
                        break

                    done, _ = wait(active, return_when=FIRST_COMPLETED)
                    for future in done:
                        self._finish(active.pop(future), future, scheduler)
            except KeyboardInterrupt:
                for future in active:
                    future.cancel()
                scheduler.skip_waiting("Interrupted by user")
                raise
            finally:
                self.oracle.flush()

    def _finish(self, task: CompileTask, future: "Future[Path]", scheduler: CompileScheduler) -> None:
        try:
            future.result()
        except KeyboardInterrupt:
            raise
        except Exception as e:
            task.fail(str(e))
            scheduler.mark_phase(task.name, TaskPhase.FAILED)
            self.callback.on_progress(task.name, TaskPhase.FAILED, str(e))
            return
        task.update_elapsed()
        self.oracle.record_built(task.target, task.prerequisites)
        scheduler.mark_phase(task.name, TaskPhase.DONE)
        self.callback.on_progress(task.name, TaskPhase.DONE, f"{task.elapsed:.1f}s")
