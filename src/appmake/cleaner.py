"""Cleanup goals.

Every path removed here is computed from discovery and configuration;
dependency records are never read while cleaning. Missing files are not an
error, so every cleanup goal is idempotent.

    clean-tests  test objects
    clean        clean-tests + objects, generated grammar sources, descriptor
    clean-deps   dependency records (and the content-hash state file)
    distclean    clean + clean-deps
    clean-docs   doc/edoc-info, doc/*.html, doc/stylesheet.css, doc/erlang.png
    realclean    distclean + clean-docs
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from appmake.build.discovery import SourceSet
from appmake.config import BuildConfig
from appmake.goals import Goal

logger = logging.getLogger(__name__)


@dataclass
class CleanReport:
    """Files removed by one or more cleanup goals."""

    removed: list[Path] = field(default_factory=list)

    @property
    def removed_count(self) -> int:
        return len(self.removed)


class Cleaner:
    """Runs the destructive cleanup goals for one application.

    Args:
        config: Build configuration
        sources: Result of discovery
    """

    def __init__(self, config: BuildConfig, sources: SourceSet):
        self.config = config
        self.sources = sources
        self._actions: dict[Goal, Callable[[CleanReport], None]] = {
            Goal.CLEAN_TESTS: self._clean_tests,
            Goal.CLEAN: self._clean,
            Goal.CLEAN_DEPS: self._clean_deps,
            Goal.DISTCLEAN: self._distclean,
            Goal.CLEAN_DOCS: self._clean_docs,
            Goal.REALCLEAN: self._realclean,
        }

    def run(self, goal: Goal) -> CleanReport:
        """Execute one cleanup goal.

        Raises:
            ValueError: If the goal is not a cleanup goal
        """
        action = self._actions.get(goal)
        if action is None:
            raise ValueError(f"Goal '{goal}' is not a cleanup goal")
        report = CleanReport()
        action(report)
        return report

    def _remove(self, paths: Iterable[Path], report: CleanReport) -> None:
        for path in paths:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except IsADirectoryError:
                logger.warning("Not removing directory %s", path)
                continue
            report.removed.append(path)
            logger.debug("Removed %s", path)

    def _clean_tests(self, report: CleanReport) -> None:
        self._remove(self.sources.test_objects, report)

    def _clean(self, report: CleanReport) -> None:
        self._clean_tests(report)
        generated = [source.path for source in self.sources.generated_sources]
        self._remove([*self.sources.objects, *generated, self.config.descriptor_path], report)

    def _clean_deps(self, report: CleanReport) -> None:
        records = [self.sources.record_for(source) for source in self.sources.all_sources]
        self._remove([*records, self.config.state_file], report)

    def _distclean(self, report: CleanReport) -> None:
        self._clean(report)
        self._clean_deps(report)

    def _clean_docs(self, report: CleanReport) -> None:
        doc_dir = self.config.doc_dir
        html = sorted(doc_dir.glob("*.html")) if doc_dir.is_dir() else []
        self._remove([doc_dir / "edoc-info", *html, doc_dir / "stylesheet.css", doc_dir / "erlang.png"], report)

    def _realclean(self, report: CleanReport) -> None:
        self._distclean(report)
        self._clean_docs(report)
