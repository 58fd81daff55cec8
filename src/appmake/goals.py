"""Build goals and the dependency-record reading policy derived from them."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable


class Goal(Enum):
    """A goal the user can ask for on the command line."""

    BUILD = "build"
    TESTS = "tests"
    CLEAN = "clean"
    CLEAN_TESTS = "clean-tests"
    CLEAN_DEPS = "clean-deps"
    DISTCLEAN = "distclean"
    REALCLEAN = "realclean"
    CLEAN_DOCS = "clean-docs"

    def __str__(self) -> str:
        return self.value

    @property
    def is_destructive(self) -> bool:
        """True for goals whose only purpose is deleting generated artifacts."""
        return self in DESTRUCTIVE_GOALS

    @property
    def concerns_tests(self) -> bool:
        return self is Goal.TESTS

    @classmethod
    def parse(cls, name: str) -> "Goal":
        """Look up a goal by its command-line name.

        Raises:
            ValueError: If the name is not a known goal
        """
        for goal in cls:
            if goal.value == name:
                return goal
        known = ", ".join(g.value for g in cls)
        raise ValueError(f"Unknown goal '{name}' (expected one of: {known})")


DESTRUCTIVE_GOALS = frozenset(
    {
        Goal.CLEAN,
        Goal.CLEAN_TESTS,
        Goal.CLEAN_DEPS,
        Goal.DISTCLEAN,
        Goal.REALCLEAN,
        Goal.CLEAN_DOCS,
    }
)


@dataclass(frozen=True)
class RecordPolicy:
    """Which dependency records may be read for a set of active goals.

    Records are never read while cleaning: reading a stale record could
    trigger regeneration (and with it toolchain runs) as a side effect of
    deleting files. Test records are only read when tests are being built.

    Attributes:
        load_main: Main-source records may be read
        load_tests: Test-source records may be read
    """

    load_main: bool
    load_tests: bool

    @classmethod
    def for_goals(cls, goals: Iterable[Goal]) -> "RecordPolicy":
        goals = list(goals)
        if not goals or any(goal.is_destructive for goal in goals):
            return cls(load_main=False, load_tests=False)
        return cls(load_main=True, load_tests=any(goal.concerns_tests for goal in goals))

    @property
    def allows_any(self) -> bool:
        return self.load_main or self.load_tests
