"""Dependency Extractor - produce one DependencyRecord per source.

The toolchain reports header dependencies; same-package module dependencies
are found by scanning the raw source text for two declaration shapes:

    -behaviour(my_behaviour).          (or -behavior)
    -compile({parse_transform, my_transform}).

This is a regex approximation, not a parser: declarations split over
several lines, produced by macros, or given in list form
(``-compile([{parse_transform, x}])``) are not recognised. A referenced
module only becomes an edge when its source exists directly in the source
root or the test root; library behaviours such as ``gen_server`` add
nothing.
"""

import logging
import re
from pathlib import Path

from appmake.build.depfile import DependencyRecord
from appmake.build.discovery import SourceFile, SourceSet
from appmake.config import BuildConfig
from appmake.toolchain.base import Toolchain

logger = logging.getLogger(__name__)

_ATOM = r"'(?:[^'\\]|\\.)*'|[a-z][A-Za-z0-9_@]*"

_DECLARATION_RE = re.compile(
    r"^\s*-\s*(?:"
    rf"behaviou?r\s*\(\s*(?P<behaviour>{_ATOM})\s*\)"
    rf"|compile\s*\(\s*\{{\s*parse_transform\s*,\s*(?P<transform>{_ATOM})\s*\}}\s*\)"
    r")",
    re.MULTILINE,
)


def _unquote(atom: str) -> str:
    if len(atom) >= 2 and atom[0] == "'" and atom[-1] == "'":
        return re.sub(r"\\(.)", r"\1", atom[1:-1])
    return atom


def scan_module_references(text: str) -> list[str]:
    """Return the modules named by behaviour and parse_transform declarations, in order of appearance.

    Args:
        text: Raw source text

    Returns:
        Module names, duplicates removed
    """
    names: list[str] = []
    for match in _DECLARATION_RE.finditer(text):
        name = _unquote(match.group("behaviour") or match.group("transform"))
        if name and name not in names:
            names.append(name)
    return names


class DependencyExtractor:
    """Builds and writes dependency records.

    Args:
        config: Build configuration
        toolchain: Toolchain providing the header dependency scan
    """

    def __init__(self, config: BuildConfig, toolchain: Toolchain):
        self.config = config
        self.toolchain = toolchain

    def resolve_module(self, name: str) -> Path | None:
        """Map a referenced module to the object it would be compiled to.

        The source root is checked before the test root. Subdirectories of
        the source root are not searched.

        Returns:
            Object path, or None when the module is not part of this package
        """
        config = self.config
        candidates = (
            (config.src_dir, config.ebin_dir),
            (config.test_dir, config.test_ebin_dir),
        )
        for source_dir, output_dir in candidates:
            if (source_dir / f"{name}{config.source_ext}").is_file():
                return output_dir / f"{name}{config.object_ext}"
        return None

    def build_record(self, source: SourceFile, sources: SourceSet) -> DependencyRecord:
        """Compute the record for one source without writing it.

        Raises:
            ScanError: If the toolchain cannot scan the source
        """
        config = self.config
        target = sources.object_for(source)
        headers = self.toolchain.scan_deps(source.path, config.include_paths, config.defines)

        text = source.path.read_text(encoding="utf-8", errors="replace")
        module_deps: list[Path] = []
        for name in scan_module_references(text):
            dep = self.resolve_module(name)
            if dep is None:
                logger.debug("%s: '%s' is not a module of this package", source.module, name)
                continue
            if dep == target or dep in module_deps:
                continue
            module_deps.append(dep)

        return DependencyRecord(
            target=target,
            path=sources.record_for(source),
            source=source.path,
            headers=tuple(h for h in headers if h != source.path),
            module_deps=tuple(module_deps),
        )

    def extract(self, source: SourceFile, sources: SourceSet) -> DependencyRecord:
        """Compute the record for a source and write it atomically.

        Nothing is written when the scan fails; a previous record stays in
        place and is refreshed on the next run.

        Raises:
            ScanError: If the toolchain cannot scan the source
        """
        record = self.build_record(source, sources)
        record.write(self.config.app_dir)
        logger.debug("Wrote %s", record.path)
        return record
