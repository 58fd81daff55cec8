"""
Command-line interface for appmake.

This module provides the `appmake` CLI tool for building one application
package per invocation.
"""

import argparse
import os
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from rich.console import Console

from appmake import __version__, output
from appmake.build.callbacks import LogCallback, ProgressCallback
from appmake.build.progress_display import CompileProgressDisplay
from appmake.config import BuildConfig, ConfigError
from appmake.goals import Goal
from appmake.orchestrator import AppBuilder, GoalResult

# Environment switches and the settings they enable
ENV_SWITCHES = {
    "APPMAKE_NO_GIT_TAG": "no_git_tag",
    "APPMAKE_FORCE_GIT_TAG_VSN": "force_git_tag_vsn",
    "APPMAKE_NO_VSN_MK": "no_vsn_mk",
    "APPMAKE_VSN_ADD_GIT_HASH": "vsn_add_git_hash",
}


@dataclass
class RunArgs:
    """Parsed command line."""

    app_dir: Path
    goals: list[Goal] = field(default_factory=lambda: [Goal.BUILD])
    overrides: dict[str, str] = field(default_factory=dict)
    config_file: Optional[Path] = None
    verbose: bool = False
    tui: bool = True


def env_settings(environ: Mapping[str, str]) -> dict[str, str]:
    """Settings enabled by environment switches (any non-empty value enables)."""
    return {setting: "true" for name, setting in ENV_SWITCHES.items() if environ.get(name, "").strip()}


def split_targets(targets: list[str]) -> tuple[list[Goal], dict[str, str]]:
    """Separate goals from ``key=value`` overrides.

    Raises:
        ValueError: On an unknown goal or an override without a key
    """
    goals: list[Goal] = []
    overrides: dict[str, str] = {}
    for target in targets:
        if "=" in target:
            key, value = target.split("=", 1)
            if not key.strip():
                raise ValueError(f"Override without a name: '{target}'")
            overrides[key.strip()] = value
        else:
            goals.append(Goal.parse(target))
    return goals or [Goal.BUILD], overrides


def _print_result(result: GoalResult) -> None:
    if result.success:
        print(f"\033[1;32m✓ {result.goal}: {result.message}\033[0m ({result.elapsed:.2f}s)")
    else:
        print()
        print(f"\033[1;31m✗ {result.goal} failed!\033[0m")
        print()
        print(result.message)


def run_command(args: RunArgs, environ: Optional[Mapping[str, str]] = None) -> int:
    """Load configuration, run the goals and report.

    Returns:
        Process exit code
    """
    output.init_timer()
    output.set_verbose(args.verbose)

    settings = env_settings(os.environ if environ is None else environ)
    settings.update(args.overrides)
    try:
        config = BuildConfig.load(args.app_dir, args.config_file, settings, verbose=args.verbose)
    except ConfigError as e:
        print(f"\033[1;31m✗ Configuration error\033[0m\n\n{e}")
        return 1

    output.log_header(f"appmake: {config.application}", __version__)
    start_time = time.time()

    display: Optional[CompileProgressDisplay] = None
    callback: ProgressCallback = LogCallback()
    if args.tui and not args.verbose and sys.stdout.isatty():
        display = CompileProgressDisplay(Console(), config.application)
        callback = display

    builder = AppBuilder(config, callback=callback)
    try:
        if display is not None:
            with display:
                results = builder.run(args.goals)
        else:
            results = builder.run(args.goals)
    except KeyboardInterrupt:
        print()
        print("\033[1;33m✗ Build interrupted\033[0m")
        return 130

    print()
    for result in results:
        _print_result(result)
    if all(result.success for result in results):
        print(f"Total time: {time.time() - start_time:.2f}s")
        return 0
    return 1


def main(argv: Optional[list[str]] = None) -> None:
    """appmake - incremental builds for Erlang/OTP application packages."""
    parser = argparse.ArgumentParser(
        prog="appmake",
        description="Incremental build orchestration for one application package",
        epilog=f"Goals: {', '.join(goal.value for goal in Goal)}. Settings are given as key=value.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"appmake {__version__}",
    )
    parser.add_argument(
        "targets",
        nargs="*",
        metavar="goal|key=value",
        help="Goals to run in order (default: build) and setting overrides",
    )
    parser.add_argument(
        "-C",
        "--directory",
        type=Path,
        default=Path.cwd(),
        help="Application directory (default: current directory)",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Parallel compile jobs (default: CPU count)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Global ini file with an [appmake] section",
    )
    parser.add_argument(
        "--no-tui",
        action="store_true",
        help="Print plain progress lines instead of the live display",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )

    parsed_args = parser.parse_args(argv)

    try:
        goals, overrides = split_targets(parsed_args.targets)
    except ValueError as e:
        parser.error(str(e))

    if parsed_args.jobs is not None:
        if parsed_args.jobs < 1:
            parser.error("--jobs must be at least 1")
        overrides["jobs"] = str(parsed_args.jobs)

    app_dir: Path = parsed_args.directory
    if not app_dir.exists():
        print(f"\033[1;31m✗ Error: Path does not exist: {app_dir}\033[0m")
        sys.exit(2)
    if not app_dir.is_dir():
        print(f"\033[1;31m✗ Error: Path is not a directory: {app_dir}\033[0m")
        sys.exit(2)
    if parsed_args.config is not None and not parsed_args.config.is_file():
        print(f"\033[1;31m✗ Error: Config file not found: {parsed_args.config}\033[0m")
        sys.exit(2)

    args = RunArgs(
        app_dir=app_dir,
        goals=goals,
        overrides=overrides,
        config_file=parsed_args.config,
        verbose=parsed_args.verbose,
        tui=not parsed_args.no_tui,
    )
    sys.exit(run_command(args))


if __name__ == "__main__":
    main()
