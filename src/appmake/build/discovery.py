"""Source Discovery - enumerate sources, grammars and tests.

Discovery is pure: it only lists the filesystem and never fails. A missing
or empty source directory simply yields empty sets (the first run in an
empty tree is a valid state).

Layout searched (with the default extensions):
    src/*.erl  src/*/*.erl  src/*/*/*.erl     ordinary sources
    src/*.yrl  src/*/*.yrl  src/*/*/*.yrl     grammar files
    test/*.erl                                test sources (flat)

Every grammar file implies a generated source with the same base name in the
same directory; it is part of the ordinary set whether or not it has been
generated yet.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from appmake.config import BuildConfig


class SourceKind(Enum):
    """How a source file came to be part of the build."""

    SOURCE = "source"
    GENERATED = "generated"
    TEST = "test"


@dataclass(frozen=True)
class SourceFile:
    """A single compilable source file.

    Attributes:
        path: Absolute path of the source
        kind: Ordinary, generated-from-grammar or test source
        grammar: For generated sources, the grammar file it is produced from
    """

    path: Path
    kind: SourceKind
    grammar: Path | None = None

    @property
    def module(self) -> str:
        """Module name: the base name with the directory and extension stripped."""
        return self.path.stem

    @property
    def is_test(self) -> bool:
        return self.kind is SourceKind.TEST


def _list_files(directory: Path, extension: str, depth: int) -> list[Path]:
    """List files with the given extension in directory and up to `depth` levels below it."""
    found: list[Path] = []
    if not directory.is_dir():
        return found
    for level in range(depth + 1):
        pattern = "/".join(["*"] * level + [f"*{extension}"])
        for path in directory.glob(pattern):
            relative_parts = path.relative_to(directory).parts
            if any(part.startswith(".") for part in relative_parts):
                continue
            if path.is_file():
                found.append(path)
    return sorted(found)


@dataclass(frozen=True)
class SourceSet:
    """Result of discovery for one application.

    Attributes:
        config: Configuration the set was discovered with
        sources: Ordinary sources, generated ones included
        grammars: Grammar files
        tests: Test sources
    """

    config: BuildConfig
    sources: tuple[SourceFile, ...] = field(default_factory=tuple)
    grammars: tuple[Path, ...] = field(default_factory=tuple)
    tests: tuple[SourceFile, ...] = field(default_factory=tuple)

    @property
    def main_sources(self) -> tuple[SourceFile, ...]:
        return self.sources

    @property
    def test_sources(self) -> tuple[SourceFile, ...]:
        return self.tests

    @property
    def generated_sources(self) -> tuple[SourceFile, ...]:
        return tuple(s for s in self.sources if s.kind is SourceKind.GENERATED)

    @property
    def all_sources(self) -> tuple[SourceFile, ...]:
        return self.sources + self.tests

    @property
    def modules(self) -> list[str]:
        """Sorted, de-duplicated module names of the ordinary sources."""
        return sorted({source.module for source in self.sources})

    def object_for(self, source: SourceFile) -> Path:
        """Object target for a source: main output dir, or the test output dir for tests."""
        directory = self.config.test_ebin_dir if source.is_test else self.config.ebin_dir
        return directory / f"{source.module}{self.config.object_ext}"

    def record_for(self, source: SourceFile) -> Path:
        """Dependency record path for a source."""
        directory = self.config.test_deps_dir if source.is_test else self.config.deps_dir
        return directory / f"{source.module}{self.config.dep_ext}"

    @property
    def objects(self) -> list[Path]:
        return [self.object_for(s) for s in self.sources]

    @property
    def test_objects(self) -> list[Path]:
        return [self.object_for(s) for s in self.tests]


def discover_sources(config: BuildConfig) -> SourceSet:
    """Enumerate the sources of the application described by config.

    Args:
        config: Build configuration

    Returns:
        SourceSet with ordinary (including generated), grammar and test sources
    """
    depth = config.nesting_depth
    ordinary = {
        path: SourceFile(path, SourceKind.SOURCE) for path in _list_files(config.src_dir, config.source_ext, depth)
    }
    grammars = _list_files(config.src_dir, config.grammar_ext, depth)

    for grammar in grammars:
        generated = grammar.with_name(grammar.name[: -len(config.grammar_ext)] + config.source_ext)
        # A generated file on disk is still tracked as generated
        ordinary[generated] = SourceFile(generated, SourceKind.GENERATED, grammar=grammar)

    tests = [SourceFile(path, SourceKind.TEST) for path in _list_files(config.test_dir, config.source_ext, 0)]

    return SourceSet(
        config=config,
        sources=tuple(ordinary[path] for path in sorted(ordinary)),
        grammars=tuple(grammars),
        tests=tuple(tests),
    )
