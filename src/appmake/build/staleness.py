"""Staleness oracles.

The planner never compares timestamps itself; it asks a StalenessOracle
whether a target is stale with respect to its prerequisites and tells it
when a target has been rebuilt.

- TimestampOracle: make semantics. A target is stale when it is missing,
  when a prerequisite is missing, or when a prerequisite is strictly newer.
- ContentHashOracle: a target is stale unless the SHA-256 digests of its
  prerequisites match those recorded the last time it was built. Directory
  prerequisites are digested from their entry listing. Digests persist in
  a JSON state file.
"""

import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import Protocol, Sequence, runtime_checkable

from appmake.build.depfile import write_atomic
from appmake.config import BuildConfig

logger = logging.getLogger(__name__)

_STATE_VERSION = 1


@runtime_checkable
class StalenessOracle(Protocol):
    """Decides whether a target must be rebuilt."""

    def is_stale(self, target: Path, prerequisites: Sequence[Path]) -> bool: ...

    def record_built(self, target: Path, prerequisites: Sequence[Path]) -> None: ...

    def flush(self) -> None: ...


class TimestampOracle:
    """Modification-time comparison, strictly newer-than, like make."""

    def is_stale(self, target: Path, prerequisites: Sequence[Path]) -> bool:
        try:
            target_mtime = target.stat().st_mtime_ns
        except FileNotFoundError:
            return True
        for prerequisite in prerequisites:
            try:
                if prerequisite.stat().st_mtime_ns > target_mtime:
                    return True
            except FileNotFoundError:
                return True
        return False

    def record_built(self, target: Path, prerequisites: Sequence[Path]) -> None:
        # The target's own mtime is the record
        pass

    def flush(self) -> None:
        pass


def digest_path(path: Path) -> str | None:
    """SHA-256 of a file's contents, or of a directory's sorted entry names; None if missing."""
    sha = hashlib.sha256()
    try:
        if path.is_dir():
            for name in sorted(entry.name for entry in path.iterdir()):
                sha.update(name.encode("utf-8", errors="surrogateescape"))
                sha.update(b"\0")
            return "dir:" + sha.hexdigest()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                sha.update(chunk)
    except FileNotFoundError:
        return None
    return sha.hexdigest()


class ContentHashOracle:
    """Content-digest staleness, persisted between runs.

    Thread-safe: worker threads call record_built() concurrently.

    Args:
        state_file: JSON file holding the digests of the last successful builds
    """

    def __init__(self, state_file: Path):
        self.state_file = state_file
        self._lock = threading.Lock()
        self._dirty = False
        self._targets: dict[str, dict[str, str]] = self._load()

    def _load(self) -> dict[str, dict[str, str]]:
        if not self.state_file.exists():
            return {}
        try:
            data = json.loads(self.state_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable state file %s: %s", self.state_file, e)
            return {}
        if not isinstance(data, dict) or data.get("version") != _STATE_VERSION:
            logger.warning("Ignoring state file %s with unknown format", self.state_file)
            return {}
        targets = data.get("targets", {})
        return targets if isinstance(targets, dict) else {}

    def is_stale(self, target: Path, prerequisites: Sequence[Path]) -> bool:
        if not target.exists():
            return True
        with self._lock:
            recorded = self._targets.get(str(target))
        if recorded is None or set(recorded) != {str(p) for p in prerequisites}:
            return True
        for prerequisite in prerequisites:
            current = digest_path(prerequisite)
            if current is None or current != recorded[str(prerequisite)]:
                return True
        return False

    def record_built(self, target: Path, prerequisites: Sequence[Path]) -> None:
        digests: dict[str, str] = {}
        for prerequisite in prerequisites:
            digest = digest_path(prerequisite)
            if digest is not None:
                digests[str(prerequisite)] = digest
        with self._lock:
            self._targets[str(target)] = digests
            self._dirty = True

    def flush(self) -> None:
        """Persist recorded digests if anything changed since the last flush."""
        with self._lock:
            if not self._dirty:
                return
            payload = json.dumps({"version": _STATE_VERSION, "targets": self._targets}, indent=2, sort_keys=True)
            self._dirty = False
        write_atomic(self.state_file, payload + "\n")


def oracle_for(config: BuildConfig) -> StalenessOracle:
    """Create the oracle selected by the ``staleness`` setting."""
    if config.staleness == "content":
        return ContentHashOracle(config.state_file)
    return TimestampOracle()
