"""Pytest configuration and fixtures for appmake tests.

The fixtures build throwaway application trees under tmp_path and provide a
FakeToolchain that stands in for erlc:

- scan_deps() reports ``-include("x.hrl").`` lines resolved against the
  include path (unresolved headers are reported in the first include
  directory, like ``-MG``)
- compile() writes ``<output_dir>/<module>.beam``
- compile_grammar() writes ``<output_dir>/<grammar>.erl``

A source containing ``SYNTAX ERROR`` fails the scan; one containing
``COMPILE ERROR`` fails compilation.

This conftest also keeps the stdio restoration hooks that guard against
"I/O operation on closed file" errors on Python 3.13.
"""

import os
import re
import sys
import threading
import warnings
from pathlib import Path
from typing import Mapping, Sequence

import pytest

from appmake.config import BuildConfig
from appmake.toolchain.base import CompileError, ScanError

# Suppress ResourceWarnings from file cleanup in Python 3.13
if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)

_INCLUDE_RE = re.compile(r'^-include\("([^"]+)"\)\.', re.MULTILINE)


class FakeToolchain:
    """In-process toolchain recording every call."""

    def __init__(self) -> None:
        self.compiled: list[str] = []
        self.scanned: list[str] = []
        self.grammars: list[str] = []
        self.code_paths: dict[str, list[Path]] = {}
        self._lock = threading.Lock()

    def scan_deps(self, source: Path, include_paths: Sequence[Path], defines: Mapping[str, str]) -> list[Path]:
        text = source.read_text(encoding="utf-8")
        if "SYNTAX ERROR" in text:
            raise ScanError(source, "syntax error before: ERROR")
        with self._lock:
            self.scanned.append(source.stem)
        headers = []
        for name in _INCLUDE_RE.findall(text):
            found = next((directory / name for directory in include_paths if (directory / name).exists()), None)
            headers.append(found if found is not None else include_paths[0] / name)
        return headers

    def compile(
        self,
        source: Path,
        output_dir: Path,
        include_paths: Sequence[Path],
        defines: Mapping[str, str],
        code_paths: Sequence[Path],
    ) -> Path:
        if "COMPILE ERROR" in source.read_text(encoding="utf-8"):
            raise CompileError(source, f"{source.name}:1: syntax error")
        output = output_dir / f"{source.stem}.beam"
        output.write_text(f"beam:{source.name}\n", encoding="utf-8")
        with self._lock:
            self.compiled.append(source.stem)
            self.code_paths[source.stem] = list(code_paths)
        return output

    def compile_grammar(self, grammar: Path, output_dir: Path) -> Path:
        output = output_dir / f"{grammar.stem}.erl"
        output.write_text(f"-module({grammar.stem}).\n", encoding="utf-8")
        with self._lock:
            self.grammars.append(grammar.stem)
        return output


class FakeSourceControl:
    """Source control returning fixed answers."""

    def __init__(self, tag: str = "", long_tag: str = "", short_hash: str = "") -> None:
        self._tag = tag
        self._long_tag = long_tag or tag
        self._short_hash = short_hash
        self.tag_calls: list[bool] = []

    def tag(self, long: bool = False) -> str:
        self.tag_calls.append(long)
        return self._long_tag if long else self._tag

    def short_hash(self) -> str:
        return self._short_hash


def write(path: Path, text: str) -> Path:
    """Write a file, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def age(path: Path, seconds: float = 100.0) -> None:
    """Move a file's modification time into the past."""
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns - int(seconds * 1e9)))


def bump(path: Path, seconds: float = 100.0) -> None:
    """Move a file's modification time into the future."""
    age(path, -seconds)


def settle(root: Path, seconds: float = 1000.0) -> None:
    """Move everything under root into the past, keeping relative order.

    Anything written afterwards is strictly newer than every existing file.
    """
    for path in [*root.rglob("*"), root]:
        age(path, seconds)


def module_source(name: str, *declarations: str) -> str:
    lines = [f"-module({name}).", *declarations, "-export([start/0]).", "start() -> ok."]
    return "\n".join(lines) + "\n"


@pytest.fixture
def app_dir(tmp_path: Path) -> Path:
    """An empty application directory named myapp."""
    directory = tmp_path / "myapp"
    directory.mkdir()
    return directory


@pytest.fixture
def make_config(app_dir: Path):
    """Factory for a BuildConfig rooted at app_dir."""

    def factory(**settings: str) -> BuildConfig:
        merged = {"application": "myapp", "jobs": "2"}
        merged.update(settings)
        return BuildConfig.create(app_dir, merged)

    return factory


@pytest.fixture
def config(make_config) -> BuildConfig:
    return make_config()


@pytest.fixture
def toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test."""
    yield

    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_call(item):  # noqa: ARG001
    """Wrap test execution to handle stdout/stderr closure gracefully."""
    yield

    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__
