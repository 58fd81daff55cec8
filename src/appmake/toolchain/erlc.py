"""Erlang compiler (erlc) toolchain.

Compile:
    erlc -pa <code path> <flags> -I include -I src -DAPPLICATION=myapp -o ebin src/foo.erl

Dependency scan (preprocessor only, the rule is printed on stdout):
    erlc <flags> -I include -I src -DAPPLICATION=myapp -M -MG src/foo.erl

The scan runs without ``-pa`` for the output directories and in ``-M`` mode,
so parse transforms are neither loaded nor executed. ``-MG`` lists headers
that do not exist yet instead of failing on them.

Grammar:
    erlc <grammar flags> -o src src/foo_parser.yrl
"""

import logging
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Sequence

from appmake.build.depfile import DependencyRecordError, parse_make_rules
from appmake.subprocess_utils import ToolResult, run_tool
from appmake.toolchain.base import CompileError, ScanError

logger = logging.getLogger(__name__)


class ErlcToolchain:
    """Toolchain implementation driving the ``erlc`` command line compiler.

    Args:
        erlc: Compiler executable
        flags: Flags for every compile and scan (e.g. +debug_info)
        grammar_flags: Flags for grammar compilation
        cwd: Working directory for compiler runs (relative scan output is resolved against it)
        object_ext: Extension of produced objects
        source_ext: Extension of generated sources
        timeout: Per-invocation timeout in seconds
    """

    def __init__(
        self,
        erlc: str = "erlc",
        flags: Sequence[str] = (),
        grammar_flags: Sequence[str] = (),
        cwd: Optional[Path] = None,
        object_ext: str = ".beam",
        source_ext: str = ".erl",
        timeout: float = 300.0,
    ):
        self.erlc = erlc
        self.flags = tuple(flags)
        self.grammar_flags = tuple(grammar_flags)
        self.cwd = cwd
        self.object_ext = object_ext
        self.source_ext = source_ext
        self.timeout = timeout

    def _preprocessor_args(self, include_paths: Sequence[Path], defines: Mapping[str, str]) -> list[str]:
        args: list[str] = []
        for include in include_paths:
            args.extend(["-I", str(include)])
        for name, value in defines.items():
            args.append(f"-D{name}={value}" if value else f"-D{name}")
        return args

    def _run(self, cmd: list[str], source: Path, error_type: type) -> ToolResult:
        try:
            return run_tool(cmd, cwd=self.cwd, timeout=self.timeout)
        except FileNotFoundError as e:
            raise error_type(source, f"Compiler not found: {self.erlc}") from e
        except subprocess.TimeoutExpired as e:
            raise error_type(source, f"Timed out after {self.timeout:.0f}s") from e

    def compile(
        self,
        source: Path,
        output_dir: Path,
        include_paths: Sequence[Path],
        defines: Mapping[str, str],
        code_paths: Sequence[Path],
    ) -> Path:
        cmd = [self.erlc]
        for code_path in code_paths:
            cmd.extend(["-pa", str(code_path)])
        cmd.extend(self.flags)
        cmd.extend(self._preprocessor_args(include_paths, defines))
        cmd.extend(["-o", str(output_dir), str(source)])

        result = self._run(cmd, source, CompileError)
        if not result.ok:
            raise CompileError(source, result.describe())
        if result.stderr.strip():
            # erlc reports warnings on stderr even when it succeeds
            logger.warning("%s", result.stderr.strip())

        output = output_dir / f"{source.stem}{self.object_ext}"
        if not output.exists():
            raise CompileError(source, f"Compiler reported success but {output} was not produced")
        return output

    def scan_deps(self, source: Path, include_paths: Sequence[Path], defines: Mapping[str, str]) -> list[Path]:
        cmd = [self.erlc, *self.flags, *self._preprocessor_args(include_paths, defines), "-M", "-MG", str(source)]
        result = self._run(cmd, source, ScanError)
        if not result.ok:
            raise ScanError(source, result.describe())

        try:
            rules = parse_make_rules(result.stdout)
        except DependencyRecordError as e:
            raise ScanError(source, f"Unexpected dependency output: {e}") from e

        base = self.cwd if self.cwd is not None else Path.cwd()
        source_resolved = source.resolve()
        headers: list[Path] = []
        for _targets, prerequisites in rules:
            for word in prerequisites:
                path = Path(word)
                path = path if path.is_absolute() else base / path
                if path.resolve() == source_resolved or path in headers:
                    continue
                headers.append(path)
        return headers

    def compile_grammar(self, grammar: Path, output_dir: Path) -> Path:
        cmd = [self.erlc, *self.grammar_flags, "-o", str(output_dir), str(grammar)]
        result = self._run(cmd, grammar, CompileError)
        if not result.ok:
            raise CompileError(grammar, result.describe())
        return output_dir / f"{grammar.stem}{self.source_ext}"
