"""Unit tests for logging compliance across the codebase.

Console output goes through appmake.output (timestamped lines) or, in the
CLI, through print(). Everything else uses the logging module.
"""

import re
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).parent.parent.parent / "src" / "appmake"

# Modules allowed to write to the console directly
CONSOLE_MODULES = {"cli.py", "output.py"}


def _source_files() -> list[Path]:
    return [path for path in SRC_DIR.rglob("*.py") if "__pycache__" not in path.parts]


class TestLoggingCompliance:
    """Print statements and logger naming."""

    def test_no_print_outside_console_modules(self):
        """Only the CLI and the output module may call print()."""
        files = _source_files()
        assert files, f"No Python files found in {SRC_DIR}"

        violations = []
        for path in files:
            if path.name in CONSOLE_MODULES:
                continue
            for line_num, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
                if line.strip().startswith("#"):
                    continue
                if re.search(r"(?<![\w.])print\s*\(", line):
                    violations.append(f"{path}:{line_num}: {line.strip()}")

        if violations:
            pytest.fail(f"Found {len(violations)} print() calls outside console modules:\n" + "\n".join(violations))

    def test_loggers_use_module_name(self):
        """Module loggers are created with getLogger(__name__)."""
        violations = []
        for path in _source_files():
            for line_num, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
                match = re.search(r"logging\.getLogger\((.*?)\)", line)
                if match and match.group(1) != "__name__":
                    violations.append(f"{path}:{line_num}: {line.strip()}")
        assert not violations, "\n".join(violations)

    def test_subprocess_only_through_helpers(self):
        """External tools are run through subprocess_utils, never subprocess directly."""
        violations = []
        for path in _source_files():
            if path.name == "subprocess_utils.py":
                continue
            content = path.read_text(encoding="utf-8")
            if re.search(r"subprocess\.(run|Popen|call|check_output)\(", content):
                violations.append(str(path))
        assert not violations, f"Direct subprocess use in: {violations}"
