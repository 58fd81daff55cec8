"""Dependency records in make syntax.

A record is written once per source and lists everything that must be
unchanged for the source's object to stay valid:

    ebin/foo.beam src/foo.d: src/foo.erl \\
      include/foo.hrl

    include/foo.hrl:

    ebin/foo.beam: ebin/bar.beam

The first rule names the object and the record itself as targets, with the
source and its headers as prerequisites. Each header also gets an empty
rule, so a deleted header just makes the object stale instead of breaking
the build. Trailing rules add object-to-object edges for same-package
behaviours and parse transforms.

Records are always written whole: the text is rendered in memory, written
to a temporary file in the target directory and moved into place.
"""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path


class DependencyRecordError(Exception):
    """Raised when a dependency record cannot be parsed."""

    pass


def _escape(path: str) -> str:
    return path.replace("\\", "\\\\").replace(" ", "\\ ").replace("#", "\\#")


def _split_words(text: str) -> list[str]:
    """Split make words on unescaped whitespace, undoing escapes."""
    words: list[str] = []
    current: list[str] = []
    i = 0
    while i < len(text):
        char = text[i]
        if char == "\\" and i + 1 < len(text):
            current.append(text[i + 1])
            i += 2
            continue
        if char in " \t":
            if current:
                words.append("".join(current))
                current = []
        else:
            current.append(char)
        i += 1
    if current:
        words.append("".join(current))
    return words


def _find_separator(line: str) -> int:
    """Index of the first unescaped ':' that separates targets from prerequisites."""
    i = 0
    while i < len(line):
        if line[i] == "\\":
            i += 2
            continue
        # Windows drive letters (C:/...) are not separators
        if line[i] == ":" and not (i + 1 < len(line) and line[i + 1] in "/\\" and i >= 1 and line[i - 1].isalpha()):
            return i
        i += 1
    return -1


def parse_make_rules(text: str) -> list[tuple[list[str], list[str]]]:
    """Parse make-style rules into (targets, prerequisites) pairs.

    Handles backslash line continuations, blank lines and ``#`` comments.

    Raises:
        DependencyRecordError: If a non-blank logical line is not a rule
    """
    logical_lines: list[str] = []
    pending = ""
    for raw in text.splitlines():
        line = pending + raw
        if line.endswith("\\") and not line.endswith("\\\\"):
            pending = line[:-1] + " "
            continue
        pending = ""
        logical_lines.append(line)
    if pending.strip():
        logical_lines.append(pending)

    rules: list[tuple[list[str], list[str]]] = []
    for line in logical_lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        separator = _find_separator(stripped)
        if separator <= 0:
            raise DependencyRecordError(f"Not a dependency rule: {stripped!r}")
        targets = _split_words(stripped[:separator])
        prerequisites = _split_words(stripped[separator + 1 :])
        if not targets:
            raise DependencyRecordError(f"Rule without targets: {stripped!r}")
        rules.append((targets, prerequisites))
    return rules


@dataclass(frozen=True)
class DependencyRecord:
    """Everything one object target depends on.

    Attributes:
        target: Object file the record describes
        path: Where the record itself is stored
        source: Source file the object is compiled from
        headers: Headers reported by the toolchain's dependency scan
        module_deps: Objects of same-package modules this source references
    """

    target: Path
    path: Path
    source: Path
    headers: tuple[Path, ...] = ()
    module_deps: tuple[Path, ...] = ()

    @property
    def file_prerequisites(self) -> tuple[Path, ...]:
        """Prerequisites of the record itself: source and headers."""
        return (self.source,) + self.headers

    @property
    def prerequisites(self) -> tuple[Path, ...]:
        """Prerequisites of the object: source, headers and other objects."""
        return self.file_prerequisites + self.module_deps

    def render(self, base_dir: Path) -> str:
        """Render the record in make syntax with paths relative to base_dir."""

        def rel(path: Path) -> str:
            try:
                text = path.relative_to(base_dir).as_posix()
            except ValueError:
                text = path.as_posix()
            return _escape(text)

        target = rel(self.target)
        lines = [f"{target} {rel(self.path)}: {rel(self.source)}" + (" \\" if self.headers else "")]
        for index, header in enumerate(self.headers):
            suffix = " \\" if index < len(self.headers) - 1 else ""
            lines.append(f"  {rel(header)}{suffix}")
        for header in self.headers:
            lines.append("")
            lines.append(f"{rel(header)}:")
        for dep in self.module_deps:
            lines.append("")
            lines.append(f"{target}: {rel(dep)}")
        return "\n".join(lines) + "\n"

    @classmethod
    def parse(cls, text: str, base_dir: Path, path: Path) -> "DependencyRecord":
        """Parse a record previously written by render() (or by a compatible tool).

        Args:
            text: Record contents
            base_dir: Directory relative paths are resolved against
            path: Location of the record

        Raises:
            DependencyRecordError: If the text has no usable main rule
        """
        rules = parse_make_rules(text)

        def resolve(word: str) -> Path:
            candidate = Path(word)
            return candidate if candidate.is_absolute() else base_dir / candidate

        main_index = next((index for index, rule in enumerate(rules) if rule[1]), None)
        if main_index is None:
            raise DependencyRecordError(f"No dependency rule in {path}")
        targets, prerequisites = rules[main_index]
        target = resolve(targets[0])
        source = resolve(prerequisites[0])
        headers = tuple(resolve(word) for word in prerequisites[1:])

        module_deps: list[Path] = []
        for index, (rule_targets, rule_prereqs) in enumerate(rules):
            if index == main_index or not rule_prereqs:
                continue
            if resolve(rule_targets[0]) != target:
                continue
            for word in rule_prereqs:
                dep = resolve(word)
                if dep not in module_deps:
                    module_deps.append(dep)

        return cls(target=target, path=path, source=source, headers=headers, module_deps=tuple(module_deps))

    @classmethod
    def load(cls, path: Path, base_dir: Path) -> "DependencyRecord":
        """Read and parse a record from disk.

        Raises:
            FileNotFoundError: If the record does not exist
            DependencyRecordError: If the record is corrupt
        """
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise DependencyRecordError(f"Record {path} is not valid UTF-8") from e
        return cls.parse(text, base_dir, path)

    def write(self, base_dir: Path) -> None:
        """Atomically write the record to self.path."""
        write_atomic(self.path, self.render(base_dir))


def write_atomic(path: Path, text: str) -> None:
    """Write text to path via a temporary sibling file and os.replace()."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except OSError:
            pass
        raise
