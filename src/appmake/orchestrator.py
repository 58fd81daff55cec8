"""Goal orchestration.

Runs goals in order for one application, each as an explicit pipeline:

    build:     discover -> resolve version -> plan and compile -> descriptor
    tests:     discover -> plan and compile test objects
    clean-*:   discover -> delete computed paths (records are never read)

The version is resolved at most once per invocation. Failures are turned
into an unsuccessful GoalResult carrying the first error, and the
remaining goals are not run.
"""

import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from appmake.build.callbacks import NullCallback, ProgressCallback
from appmake.build.discovery import SourceSet, discover_sources
from appmake.build.models import BuildResult
from appmake.build.planner import IncrementalBuildPlanner, ModuleCollisionError
from appmake.build.scheduler import CyclicDependencyError
from appmake.build.staleness import StalenessOracle, oracle_for
from appmake.cleaner import Cleaner, CleanReport
from appmake.config import BuildConfig
from appmake.goals import Goal
from appmake.manifest.consult import DescriptorParser
from appmake.manifest.synthesizer import ManifestSynthesizer, ManifestValidationError
from appmake.output import TimedLogger, log_detail, log_phase
from appmake.toolchain.base import CompileError, ScanError, Toolchain
from appmake.toolchain.erlc import ErlcToolchain
from appmake.version import SourceControl, VersionResolver

logger = logging.getLogger(__name__)

# Errors that end a goal with a diagnostic instead of a traceback
_GOAL_ERRORS = (
    CompileError,
    ScanError,
    ModuleCollisionError,
    CyclicDependencyError,
    ManifestValidationError,
    OSError,
)


@dataclass
class GoalResult:
    """Outcome of one goal.

    Attributes:
        goal: The goal that ran
        success: True if the goal completed
        message: Summary on success, first failure on error
        elapsed: Wall-clock seconds
        build: Planner result for build and tests goals
        clean: Removed files for cleanup goals
        version: Version written to the descriptor (build goal only)
    """

    goal: Goal
    success: bool
    message: str
    elapsed: float = 0.0
    build: Optional[BuildResult] = None
    clean: Optional[CleanReport] = None
    version: Optional[str] = None


class AppBuilder:
    """Runs goals for the application described by config.

    Args:
        config: Build configuration
        toolchain: Compiler toolchain (defaults to erlc with the configured flags)
        scm: Source-control queries for version resolution
        parser: Descriptor parser for validation
        oracle: Staleness oracle (defaults to the configured one)
        callback: Progress callback for scans and compiles
    """

    def __init__(
        self,
        config: BuildConfig,
        toolchain: Optional[Toolchain] = None,
        scm: Optional[SourceControl] = None,
        parser: Optional[DescriptorParser] = None,
        oracle: Optional[StalenessOracle] = None,
        callback: Optional[ProgressCallback] = None,
    ):
        self.config = config
        self.toolchain = toolchain or ErlcToolchain(
            erlc=config.compiler,
            flags=config.compiler_flags,
            grammar_flags=config.grammar_flags,
            cwd=config.app_dir,
            object_ext=config.object_ext,
            source_ext=config.source_ext,
        )
        self.oracle = oracle if oracle is not None else oracle_for(config)
        self.callback = callback or NullCallback()
        self.resolver = VersionResolver(config, scm)
        self.synthesizer = ManifestSynthesizer(config, parser=parser, oracle=self.oracle)
        self._version: Optional[str] = None

    @property
    def version(self) -> str:
        """The application version, resolved on first use."""
        if self._version is None:
            self._version = self.resolver.resolve()
        return self._version

    def run(self, goals: Iterable[Goal]) -> list[GoalResult]:
        """Run goals in order, stopping after the first failure."""
        results: list[GoalResult] = []
        for goal in goals:
            result = self.run_goal(goal)
            results.append(result)
            if not result.success:
                break
        return results

    def run_goal(self, goal: Goal) -> GoalResult:
        start_time = time.monotonic()
        try:
            if goal.is_destructive:
                result = self._clean(goal)
            elif goal is Goal.TESTS:
                result = self._tests()
            else:
                result = self._build()
        except _GOAL_ERRORS as e:
            logger.debug("Goal %s failed", goal, exc_info=True)
            result = GoalResult(goal=goal, success=False, message=str(e))
        result.elapsed = time.monotonic() - start_time
        return result

    def _discover(self, phase: int, total: int) -> SourceSet:
        log_phase(phase, total, "Discovering sources...")
        sources = discover_sources(self.config)
        log_detail(
            f"{len(sources.sources)} sources, {len(sources.grammars)} grammars, {len(sources.tests)} tests",
            verbose_only=True,
        )
        return sources

    def _compile(self, goal: Goal, sources: SourceSet) -> BuildResult:
        planner = IncrementalBuildPlanner(self.config, self.toolchain, self.oracle, self.callback)
        return planner.run(goal, sources)

    @staticmethod
    def _summarize(build: BuildResult) -> str:
        if build.up_to_date:
            return "Up to date"
        return f"Compiled {build.compiled_count} of {len(build.tasks)} objects"

    @staticmethod
    def _failure(goal: Goal, build: BuildResult) -> GoalResult:
        failed = build.failed_tasks
        message = failed[0].error_message if failed else "Build failed"
        if build.skipped_count:
            message += f"\n({build.skipped_count} objects not started)"
        return GoalResult(goal=goal, success=False, message=message, build=build)

    def _build(self) -> GoalResult:
        sources = self._discover(1, 4)

        log_phase(2, 4, "Resolving version...")
        version = self.version
        log_detail(f"Version: {version}")

        with TimedLogger("Compiling", phase=(3, 4)):
            build = self._compile(Goal.BUILD, sources)
        if not build.success:
            return self._failure(Goal.BUILD, build)

        log_phase(4, 4, "Updating descriptor...")
        if self.synthesizer.ensure_template(version):
            log_detail(f"Created {self.config.relative(self.synthesizer.template_path)}")
        if self.synthesizer.update(version, sources.modules):
            log_detail(f"Wrote {self.config.relative(self.synthesizer.descriptor_path)}")

        return GoalResult(goal=Goal.BUILD, success=True, message=self._summarize(build), build=build, version=version)

    def _tests(self) -> GoalResult:
        sources = self._discover(1, 2)
        with TimedLogger("Compiling tests", phase=(2, 2)):
            build = self._compile(Goal.TESTS, sources)
        if not build.success:
            return self._failure(Goal.TESTS, build)
        return GoalResult(goal=Goal.TESTS, success=True, message=self._summarize(build), build=build)

    def _clean(self, goal: Goal) -> GoalResult:
        sources = self._discover(1, 2)
        log_phase(2, 2, f"Running {goal}...")
        report = Cleaner(self.config, sources).run(goal)
        for path in report.removed:
            log_detail(f"Removed {self.config.relative(path)}", verbose_only=True)
        return GoalResult(goal=goal, success=True, message=f"Removed {report.removed_count} files", clean=report)
