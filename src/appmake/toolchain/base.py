"""Toolchain interface.

The compiler is an external collaborator: appmake never compiles anything
itself, it only asks a Toolchain to turn one source into one object, to
report the headers a source includes, or to turn a grammar into a source.
"""

from pathlib import Path
from typing import Mapping, Protocol, Sequence, runtime_checkable


class CompileError(Exception):
    """Raised when the toolchain fails to compile a source or grammar file."""

    def __init__(self, source: Path, message: str):
        super().__init__(f"Compilation failed for {source}\n{message}")
        self.source = source


class ScanError(Exception):
    """Raised when the toolchain's dependency scan fails for a source."""

    def __init__(self, source: Path, message: str):
        super().__init__(f"Dependency scan failed for {source}\n{message}")
        self.source = source


@runtime_checkable
class Toolchain(Protocol):
    """Protocol for compiler toolchains used by the build planner."""

    def compile(
        self,
        source: Path,
        output_dir: Path,
        include_paths: Sequence[Path],
        defines: Mapping[str, str],
        code_paths: Sequence[Path],
    ) -> Path:
        """Compile one source into one object inside output_dir.

        Args:
            source: Source file
            output_dir: Directory receiving the object
            include_paths: Header search path, in order
            defines: Preprocessor definitions
            code_paths: Directories with already compiled objects the
                compiler may load (behaviours, parse transforms)

        Returns:
            Path of the produced object

        Raises:
            CompileError: On any compilation failure
        """
        ...

    def scan_deps(self, source: Path, include_paths: Sequence[Path], defines: Mapping[str, str]) -> list[Path]:
        """Report the headers a source depends on, transitively.

        Must not run compile-time transforms or write any object.

        Raises:
            ScanError: If the source cannot be preprocessed
        """
        ...

    def compile_grammar(self, grammar: Path, output_dir: Path) -> Path:
        """Generate a source file from a grammar file.

        Raises:
            CompileError: If the grammar cannot be compiled
        """
        ...
