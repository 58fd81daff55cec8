"""Version Resolver - compute the application version once per invocation.

Candidates, first non-empty one wins:
    1. explicit override (``vsn=...``)
    2. the source-control tag, when forced-tag mode is on
    3. legacy ``vsn.mk`` (``VSN = ...`` or ``<APP>_VSN = ...``), unless disabled
    4. the vsn already in the generated descriptor
    5. the source-control tag
    6. the vsn in the template
    7. the configured default ("0.1")

With hash-suffix mode the tag is queried in long form and, when the
resolved version differs from it, ``-g<short hash>`` is appended.
"""

import logging
import re
import subprocess
from pathlib import Path
from typing import Optional, Protocol

from appmake.config import BuildConfig
from appmake.subprocess_utils import run_tool

logger = logging.getLogger(__name__)

# Only a plain, non-empty, unescaped string payload counts
_VSN_STRING_RE = re.compile(r'\{\s*vsn\s*,\s*"([^"]+)"')


class SourceControl(Protocol):
    """Source-control queries; both may return "" without it being an error."""

    def tag(self, long: bool = False) -> str: ...

    def short_hash(self) -> str: ...


class GitSourceControl:
    """Reads the tag and commit hash with the git command line.

    Any failure (not a repository, no commits, git missing) yields "".

    Args:
        git: Git executable
        cwd: Working tree to query
        timeout: Seconds to wait for git
    """

    def __init__(self, git: str = "git", cwd: Optional[Path] = None, timeout: float = 30.0):
        self.git = git
        self.cwd = cwd
        self.timeout = timeout

    def _query(self, *args: str) -> str:
        try:
            result = run_tool([self.git, *args], cwd=self.cwd, timeout=self.timeout)
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            logger.debug("git %s unavailable: %s", " ".join(args), e)
            return ""
        if not result.ok:
            logger.debug("git %s failed: %s", " ".join(args), result.stderr.strip())
            return ""
        return result.stdout.strip()

    def tag(self, long: bool = False) -> str:
        args = ["describe", "--tags", "--always"]
        if long:
            args.append("--long")
        return self._query(*args)

    def short_hash(self) -> str:
        return self._query("rev-parse", "--short", "HEAD")


def find_version(text: str) -> str:
    """Return the rightmost plain-string vsn in text, or ""."""
    matches = _VSN_STRING_RE.findall(text)
    return matches[-1] if matches else ""


def read_version_file(path: Path) -> str:
    """Rightmost vsn in a descriptor or template file; "" if the file is missing."""
    try:
        return find_version(path.read_text(encoding="utf-8", errors="replace"))
    except FileNotFoundError:
        return ""


def _make_variable(text: str, name: str) -> str:
    pattern = re.compile(rf"^\s*(?:export\s+|override\s+)*{re.escape(name)}\s*(?::=|::=|\?=|=)\s*(.*?)\s*$", re.MULTILINE)
    values = pattern.findall(text)
    return values[-1] if values else ""


def read_vsn_mk(path: Path, application: str) -> str:
    """Version from a legacy vsn.mk: ``VSN``, falling back to ``<APP>_VSN``.

    Returns:
        The version, or "" if the file is missing or defines neither
    """
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return ""
    return _make_variable(text, "VSN") or _make_variable(text, f"{application.upper()}_VSN")


class VersionResolver:
    """Applies the version priority rules for one configuration.

    Args:
        config: Build configuration
        scm: Source-control queries (defaults to git in the application directory)
    """

    def __init__(self, config: BuildConfig, scm: Optional[SourceControl] = None):
        self.config = config
        self.scm = scm if scm is not None else GitSourceControl(config.git, config.app_dir)

    def resolve(self) -> str:
        config = self.config
        tag = "" if config.no_git_tag else self.scm.tag(long=config.vsn_add_git_hash)

        candidates = (
            ("override", lambda: config.vsn),
            ("forced tag", lambda: tag if config.force_git_tag_vsn else ""),
            ("vsn.mk", lambda: "" if config.no_vsn_mk else read_vsn_mk(config.vsn_mk_path, config.application)),
            ("descriptor", lambda: read_version_file(config.descriptor_path)),
            ("tag", lambda: tag),
            ("template", lambda: read_version_file(config.template_path)),
            ("default", lambda: config.default_vsn),
        )
        version, origin = "", "none"
        for origin, candidate in candidates:
            version = candidate()
            if version:
                break
        logger.debug("Version %r from %s", version, origin)

        if config.vsn_add_git_hash and version != tag:
            short_hash = self.scm.short_hash()
            # A descriptor written by an earlier run already carries the suffix
            if short_hash and not version.endswith(f"-g{short_hash}"):
                version = f"{version}-g{short_hash}"
        return version
