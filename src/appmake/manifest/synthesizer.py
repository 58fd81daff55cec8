"""Manifest Synthesizer - derive the descriptor from the template.

The template (``src/<app>.app.src``) is hand-edited and kept under version
control. The descriptor (``ebin/<app>.app``) is the template with two
fields rewritten:

    {vsn, ...}      -> {vsn,"<resolved version>"}   (string or tuple payload)
    {modules, ...}  -> {modules,['a', 'b']}          (value may span lines)

Only the sub-records of the outermost property list are rewritten; a vsn or
modules key nested deeper, for example inside {env, [...]}, and anything in
a comment is left alone. Everything else in the template is copied
untouched. Substitution is textual, so comments and layout survive.

The descriptor is regenerated when it is missing, when the template is
newer, or when the source directory itself is newer. The last trigger only
sees files being added to or removed from the top level of the source
directory: editing a source, or anything inside a subdirectory, does not
regenerate the descriptor.

After every update the descriptor is consulted. One that cannot be parsed
is deleted before ManifestValidationError is raised, so nothing downstream
ever loads a broken descriptor.
"""

import logging
import re
from pathlib import Path
from typing import Iterable, Optional

from appmake.build.depfile import write_atomic
from appmake.build.staleness import StalenessOracle, TimestampOracle
from appmake.config import BuildConfig
from appmake.manifest.consult import DescriptorParseError, DescriptorParser, TermConsulter

logger = logging.getLogger(__name__)

_PLAIN_ATOM_RE = re.compile(r"[a-z][A-Za-z0-9_@]*\Z")

_RESERVED_WORDS = frozenset(
    {
        "after", "and", "andalso", "band", "begin", "bnot", "bor", "bsl", "bsr", "bxor",
        "case", "catch", "cond", "div", "else", "end", "fun", "if", "let", "maybe", "not",
        "of", "or", "orelse", "receive", "rem", "try", "when", "xor",
    }
)

# A {vsn, ...} sub-record with an optional nested tuple payload, e.g. {vsn, {git, short}}
_VSN_RE = re.compile(r"(\{\s*vsn\s*,\s*)(?:\{[^}]*\})?[^}]*\}")

# A {modules, ...} sub-record; [^}] also matches newlines, so multi-line lists are covered
_MODULES_RE = re.compile(r"(\{\s*modules\s*,\s*)[^}]*\}")


class ManifestValidationError(Exception):
    """Raised when a synthesized descriptor cannot be parsed (it has been deleted)."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"{path} is not a readable descriptor and was removed: {reason}")
        self.path = path


def format_atom(name: str) -> str:
    """Render a name as an atom, quoting it when it is not a plain atom."""
    if _PLAIN_ATOM_RE.match(name) and name not in _RESERVED_WORDS:
        return name
    return quote_atom(name)


def quote_atom(name: str) -> str:
    return "'" + name.replace("\\", "\\\\").replace("'", "\\'") + "'"


def format_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def format_module_list(modules: Iterable[str]) -> str:
    """Sorted, de-duplicated, single-quoted, ``", "``-joined list body."""
    return ", ".join(quote_atom(module) for module in sorted(set(modules)))


def render_template(application: str, version: str) -> str:
    """Skeleton template for a new application."""
    app = format_atom(application)
    return (
        f"{{application,{app},\n"
        f' [{{description,"The {application} application"}},\n'
        f"  {{vsn,{format_string(version)}}},\n"
        f"% {{mod,{{{format_atom(application + '_app')},[]}}}},\n"
        "  {modules,[]},\n"
        "  {registered, []},\n"
        "  {applications,[kernel,stdlib]},\n"
        "  {env, []}\n"
        " ]}.\n"
    )


def _nesting_depth(text: str, offset: int) -> int:
    """Bracket depth of text at offset, or -1 inside a string, quoted atom or comment."""
    depth = 0
    i = 0
    while i < offset:
        ch = text[i]
        if ch in "\"'":
            end = i + 1
            while end < len(text) and text[end] != ch:
                end += 2 if text[end] == "\\" else 1
            if end >= offset:
                return -1
            i = end + 1
            continue
        if ch == "%":
            newline = text.find("\n", i)
            if newline == -1 or newline >= offset:
                return -1
            i = newline + 1
            continue
        if ch == "$":
            # Character literal such as $[ or $\}
            i += 3 if text[i + 1 : i + 2] == "\\" else 2
            continue
        if ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
        i += 1
    return depth


def _substitute_outermost(pattern: "re.Pattern[str]", text: str, value: str) -> str:
    """Rewrite the pattern's matches at the shallowest nesting depth only.

    A key nested inside another property, such as a vsn in an env list, is
    left untouched.
    """
    matches = [(m, _nesting_depth(text, m.start())) for m in pattern.finditer(text)]
    depths = [depth for _, depth in matches if depth >= 0]
    if not depths:
        return text
    outermost = min(depths)
    pieces: list[str] = []
    last = 0
    for match, depth in matches:
        if depth != outermost:
            continue
        pieces.append(text[last : match.start()])
        pieces.append(f"{match.group(1)}{value}}}")
        last = match.end()
    pieces.append(text[last:])
    return "".join(pieces)


def substitute_version(text: str, version: str) -> str:
    """Replace the payload of the top-level vsn sub-record with the quoted version."""
    return _substitute_outermost(_VSN_RE, text, format_string(version))


def substitute_modules(text: str, modules: Iterable[str]) -> str:
    """Replace the value of the top-level modules sub-record with the live module list."""
    return _substitute_outermost(_MODULES_RE, text, f"[{format_module_list(modules)}]")


def render_descriptor(template_text: str, version: str, modules: Iterable[str]) -> str:
    return substitute_modules(substitute_version(template_text, version), modules)


class ManifestSynthesizer:
    """Creates the template and keeps the descriptor in sync with it.

    Args:
        config: Build configuration
        parser: Descriptor parser used for validation
        oracle: Decides whether the descriptor is out of date
    """

    def __init__(
        self,
        config: BuildConfig,
        parser: Optional[DescriptorParser] = None,
        oracle: Optional[StalenessOracle] = None,
    ):
        self.config = config
        self.parser = parser if parser is not None else TermConsulter()
        self.oracle = oracle if oracle is not None else TimestampOracle()

    @property
    def template_path(self) -> Path:
        return self.config.template_path

    @property
    def descriptor_path(self) -> Path:
        return self.config.descriptor_path

    def ensure_template(self, version: str) -> bool:
        """Create the template if it does not exist.

        An existing descriptor is cloned (with its version replaced) in
        preference to the skeleton, so an application that only ever had a
        hand-written ``.app`` keeps its properties.

        Returns:
            True if a template was created
        """
        if self.template_path.exists():
            return False
        if self.descriptor_path.is_file():
            text = substitute_version(self.descriptor_path.read_text(encoding="utf-8"), version)
            logger.info("Creating %s from existing %s", self.template_path, self.descriptor_path)
        else:
            text = render_template(self.config.application, version)
            logger.info("Creating skeleton %s", self.template_path)
        write_atomic(self.template_path, text)
        return True

    def _prerequisites(self) -> list[Path]:
        return [self.template_path, self.config.src_dir]

    def needs_regeneration(self) -> bool:
        return self.oracle.is_stale(self.descriptor_path, self._prerequisites())

    def update(self, version: str, modules: Iterable[str]) -> bool:
        """Regenerate the descriptor if needed, then validate it.

        Args:
            version: Resolved version string
            modules: Live module names

        Returns:
            True if the descriptor was rewritten

        Raises:
            FileNotFoundError: If the template does not exist
            ManifestValidationError: If the descriptor cannot be parsed
        """
        regenerated = False
        if self.needs_regeneration():
            template_text = self.template_path.read_text(encoding="utf-8")
            write_atomic(self.descriptor_path, render_descriptor(template_text, version, modules))
            self.oracle.record_built(self.descriptor_path, self._prerequisites())
            self.oracle.flush()
            regenerated = True
            logger.debug("Wrote %s", self.descriptor_path)
        self.validate()
        return regenerated

    def validate(self) -> None:
        """Consult the descriptor; delete it and raise if it does not parse.

        Raises:
            ManifestValidationError: If the descriptor is missing or unreadable
        """
        path = self.descriptor_path
        try:
            self.parser.consult(path)
        except FileNotFoundError as e:
            raise ManifestValidationError(path, "file does not exist") from e
        except DescriptorParseError as e:
            path.unlink(missing_ok=True)
            raise ManifestValidationError(path, str(e)) from e
