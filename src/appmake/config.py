"""Build Configuration - one immutable record per invocation.

This module defines:
- BuildConfig: Every setting the build needs, resolved once and threaded
  through discovery, extraction, planning and manifest synthesis.
- load_settings(): Reads ``[appmake]`` sections from ini files.

Design:
    Settings are layered, lowest priority first:
        built-in defaults
        -> global config file (``--config``)
        -> ``<app>/appmake.ini``
        -> environment switches (collected by the CLI)
        -> ``key=value`` overrides from the command line
    The merged string mapping is converted by BuildConfig.create(). No
    component below the CLI reads os.environ.
"""

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional

CONFIG_SECTION = "appmake"
APP_CONFIG_FILE = "appmake.ini"

DEFAULT_COMPILER_FLAGS = ("+debug_info", "+warn_obsolete_guard", "+warn_export_all")

_BOOL_TRUE = frozenset({"1", "true", "yes", "on"})
_BOOL_FALSE = frozenset({"", "0", "false", "no", "off"})

# Every recognised setting and its default (as the string a user would write)
DEFAULT_SETTINGS: dict[str, str] = {
    "application": "",
    "src_dir": "src",
    "ebin_dir": "ebin",
    "include_dir": "include",
    "test_dir": "test",
    "test_ebin_dir": "",
    "deps_dir": "",
    "test_deps_dir": "",
    "doc_dir": "doc",
    "compiler": "erlc",
    "compiler_flags": " ".join(DEFAULT_COMPILER_FLAGS),
    "grammar_flags": "",
    "name_macro": "APPLICATION",
    "default_vsn": "0.1",
    "vsn": "",
    "no_git_tag": "false",
    "force_git_tag_vsn": "false",
    "no_vsn_mk": "false",
    "vsn_add_git_hash": "false",
    "git": "git",
    "jobs": "0",
    "nesting_depth": "2",
    "staleness": "timestamp",
    "source_ext": ".erl",
    "grammar_ext": ".yrl",
    "object_ext": ".beam",
    "dep_ext": ".d",
    "template_ext": ".app.src",
    "descriptor_ext": ".app",
}

STALENESS_MODES = ("timestamp", "content")


class ConfigError(Exception):
    """Raised when configuration is invalid or inconsistent."""

    pass


def load_settings(paths: Iterable[Path]) -> dict[str, str]:
    """Read the ``[appmake]`` section of each existing ini file, later files winning.

    Args:
        paths: Candidate ini files; missing files are skipped

    Returns:
        Mapping of setting name to raw string value

    Raises:
        ConfigError: If a file cannot be parsed
    """
    settings: dict[str, str] = {}
    for path in paths:
        if not path.is_file():
            continue
        parser = configparser.ConfigParser(interpolation=None)
        try:
            parser.read(path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigError(f"Failed to parse {path}: {e}") from e
        if parser.has_section(CONFIG_SECTION):
            settings.update(dict(parser[CONFIG_SECTION]))
    return settings


def _parse_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _BOOL_TRUE:
        return True
    if lowered in _BOOL_FALSE:
        return False
    raise ConfigError(f"Setting '{key}' expects a boolean, got '{value}'")


def _parse_int(key: str, value: str, minimum: int) -> int:
    try:
        parsed = int(value.strip())
    except ValueError as e:
        raise ConfigError(f"Setting '{key}' expects an integer, got '{value}'") from e
    if parsed < minimum:
        raise ConfigError(f"Setting '{key}' must be >= {minimum}, got {parsed}")
    return parsed


def detect_application(app_dir: Path, src_dir: Path, ebin_dir: Path, template_ext: str, descriptor_ext: str) -> str:
    """Work out the application name when none is configured.

    The single ``<src_dir>/*<template_ext>`` wins, then the single
    ``<ebin_dir>/*<descriptor_ext>``, then the directory name.

    Raises:
        ConfigError: If several templates or descriptors make the name ambiguous
    """
    for directory, ext in ((src_dir, template_ext), (ebin_dir, descriptor_ext)):
        candidates = sorted(p.name[: -len(ext)] for p in directory.glob(f"*{ext}") if p.is_file())
        if len(candidates) > 1:
            raise ConfigError(f"Ambiguous application name in {directory}: {', '.join(candidates)}")
        if candidates:
            return candidates[0]
    return app_dir.resolve().name


@dataclass(frozen=True)
class BuildConfig:
    """All settings for one build invocation.

    Directory attributes are absolute paths under ``app_dir``.

    Attributes:
        app_dir: Application root (the directory make would run in)
        application: Application name, used for the template/descriptor and the name macro
        src_dir: Source root, also holds the template and (by default) main records
        ebin_dir: Output directory for main objects and the descriptor
        include_dir: Public header directory
        test_dir: Test source directory (flat)
        test_ebin_dir: Output directory for test objects
        deps_dir: Directory for main dependency records
        test_deps_dir: Directory for test dependency records
        doc_dir: Documentation directory (only cleaned, never generated)
        compiler: Compiler executable
        compiler_flags: Flags passed to every compile and dependency scan
        grammar_flags: Flags passed when compiling grammar files
        name_macro: Preprocessor macro that carries the application name
        default_vsn: Version used when nothing else provides one
        vsn: Explicit version override ("" = none)
        no_git_tag: Never query source control for a tag
        force_git_tag_vsn: Always use the source-control tag as version
        no_vsn_mk: Ignore a legacy vsn.mk file
        vsn_add_git_hash: Append -g<hash> unless the version equals the tag
        git: Source-control executable
        jobs: Parallel compile workers
        nesting_depth: Subdirectory levels searched below src_dir
        staleness: "timestamp" or "content"
        verbose: Verbose console output
    """

    app_dir: Path
    application: str
    src_dir: Path
    ebin_dir: Path
    include_dir: Path
    test_dir: Path
    test_ebin_dir: Path
    deps_dir: Path
    test_deps_dir: Path
    doc_dir: Path
    compiler: str
    compiler_flags: tuple[str, ...]
    grammar_flags: tuple[str, ...]
    name_macro: str
    default_vsn: str
    vsn: str
    no_git_tag: bool
    force_git_tag_vsn: bool
    no_vsn_mk: bool
    vsn_add_git_hash: bool
    git: str
    jobs: int
    nesting_depth: int
    staleness: str
    source_ext: str
    grammar_ext: str
    object_ext: str
    dep_ext: str
    template_ext: str
    descriptor_ext: str
    verbose: bool = False

    @classmethod
    def create(cls, app_dir: Path, settings: Optional[Mapping[str, str]] = None, verbose: bool = False) -> "BuildConfig":
        """Create a BuildConfig from layered string settings.

        Args:
            app_dir: Application root directory
            settings: Raw settings overriding DEFAULT_SETTINGS
            verbose: Verbose console output

        Returns:
            Fully resolved, immutable BuildConfig

        Raises:
            ConfigError: On unknown keys or malformed values
        """
        raw = dict(DEFAULT_SETTINGS)
        for key, value in (settings or {}).items():
            normalized = key.strip().lower()
            if normalized not in DEFAULT_SETTINGS:
                raise ConfigError(f"Unknown setting: '{key}'")
            raw[normalized] = str(value)

        app_dir = app_dir.resolve()

        def directory(value: str) -> Path:
            path = Path(value.strip())
            return path if path.is_absolute() else app_dir / path

        src_dir = directory(raw["src_dir"])
        ebin_dir = directory(raw["ebin_dir"])
        test_dir = directory(raw["test_dir"])
        test_ebin_dir = directory(raw["test_ebin_dir"]) if raw["test_ebin_dir"].strip() else test_dir

        # Test records follow the main records when those are redirected,
        # otherwise they live next to the test sources.
        if raw["deps_dir"].strip():
            deps_dir = directory(raw["deps_dir"])
            default_test_deps = deps_dir
        else:
            deps_dir = src_dir
            default_test_deps = test_dir
        test_deps_dir = directory(raw["test_deps_dir"]) if raw["test_deps_dir"].strip() else default_test_deps

        staleness = raw["staleness"].strip().lower()
        if staleness not in STALENESS_MODES:
            raise ConfigError(f"Setting 'staleness' must be one of {', '.join(STALENESS_MODES)}, got '{staleness}'")

        jobs = _parse_int("jobs", raw["jobs"], 0) or (os.cpu_count() or 1)

        application = raw["application"].strip() or detect_application(
            app_dir, src_dir, ebin_dir, raw["template_ext"], raw["descriptor_ext"]
        )

        return cls(
            app_dir=app_dir,
            application=application,
            src_dir=src_dir,
            ebin_dir=ebin_dir,
            include_dir=directory(raw["include_dir"]),
            test_dir=test_dir,
            test_ebin_dir=test_ebin_dir,
            deps_dir=deps_dir,
            test_deps_dir=test_deps_dir,
            doc_dir=directory(raw["doc_dir"]),
            compiler=raw["compiler"].strip(),
            compiler_flags=tuple(raw["compiler_flags"].split()),
            grammar_flags=tuple(raw["grammar_flags"].split()),
            name_macro=raw["name_macro"].strip(),
            default_vsn=raw["default_vsn"].strip(),
            vsn=raw["vsn"].strip(),
            no_git_tag=_parse_bool("no_git_tag", raw["no_git_tag"]),
            force_git_tag_vsn=_parse_bool("force_git_tag_vsn", raw["force_git_tag_vsn"]),
            no_vsn_mk=_parse_bool("no_vsn_mk", raw["no_vsn_mk"]),
            vsn_add_git_hash=_parse_bool("vsn_add_git_hash", raw["vsn_add_git_hash"]),
            git=raw["git"].strip(),
            jobs=jobs,
            nesting_depth=_parse_int("nesting_depth", raw["nesting_depth"], 0),
            staleness=staleness,
            source_ext=raw["source_ext"],
            grammar_ext=raw["grammar_ext"],
            object_ext=raw["object_ext"],
            dep_ext=raw["dep_ext"],
            template_ext=raw["template_ext"],
            descriptor_ext=raw["descriptor_ext"],
            verbose=verbose,
        )

    @classmethod
    def load(
        cls,
        app_dir: Path,
        global_config: Optional[Path] = None,
        overrides: Optional[Mapping[str, str]] = None,
        verbose: bool = False,
    ) -> "BuildConfig":
        """Load layered settings from ini files and apply overrides on top."""
        paths = [global_config] if global_config is not None else []
        paths.append(app_dir / APP_CONFIG_FILE)
        settings = load_settings(paths)
        settings.update(overrides or {})
        return cls.create(app_dir, settings, verbose=verbose)

    @property
    def template_path(self) -> Path:
        """Hand-edited descriptor template, ``<src_dir>/<app>.app.src``."""
        return self.src_dir / f"{self.application}{self.template_ext}"

    @property
    def descriptor_path(self) -> Path:
        """Generated descriptor, ``<ebin_dir>/<app>.app``."""
        return self.ebin_dir / f"{self.application}{self.descriptor_ext}"

    @property
    def vsn_mk_path(self) -> Path:
        return self.app_dir / "vsn.mk"

    @property
    def state_file(self) -> Path:
        """Persisted digests used by the content-hash staleness oracle."""
        return self.deps_dir / ".appmake-state.json"

    @property
    def include_paths(self) -> tuple[Path, ...]:
        # src_dir is included so test modules can use private headers
        return (self.include_dir, self.src_dir)

    @property
    def defines(self) -> dict[str, str]:
        return {self.name_macro: self.application}

    def relative(self, path: Path) -> str:
        """Render a path relative to app_dir when possible, in posix form."""
        try:
            return path.relative_to(self.app_dir).as_posix()
        except ValueError:
            return path.as_posix()
