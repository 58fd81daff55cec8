"""Unit tests for the incremental build planner."""

from pathlib import Path

import pytest
from conftest import age, bump, module_source, write

from appmake.build.discovery import discover_sources
from appmake.build.models import TaskPhase
from appmake.build.planner import IncrementalBuildPlanner, ModuleCollisionError
from appmake.build.scheduler import CyclicDependencyError
from appmake.goals import Goal
from appmake.toolchain.base import ScanError


class RecordingCallback:
    """Collects (name, phase) progress events."""

    def __init__(self):
        self.events: list[tuple[str, TaskPhase]] = []

    def on_progress(self, task_name, phase, detail):
        self.events.append((task_name, phase))

    def names(self, phase: TaskPhase) -> list[str]:
        return sorted(name for name, p in self.events if p == phase)


def _tree(config, files: dict[str, str]) -> None:
    """Write files relative to the app root and move them into the past."""
    for relative, text in files.items():
        age(write(config.app_dir / relative, text))


def _run(config, toolchain, goal=Goal.BUILD, callback=None):
    planner = IncrementalBuildPlanner(config, toolchain, callback=callback)
    return planner.run(goal, discover_sources(config))


class TestFirstBuild:
    """Building an application from scratch."""

    def test_compiles_every_module(self, config, toolchain):
        _tree(config, {"src/a.erl": module_source("a"), "src/sub/b.erl": module_source("b")})
        result = _run(config, toolchain)

        assert result.success
        assert result.compiled_count == 2
        assert sorted(toolchain.compiled) == ["a", "b"]
        assert (config.ebin_dir / "a.beam").exists()
        assert (config.ebin_dir / "b.beam").exists()
        assert sorted(p.name for p in result.refreshed_records) == ["a.d", "b.d"]

    def test_empty_tree_is_up_to_date(self, config, toolchain):
        result = _run(config, toolchain)
        assert result.success
        assert result.up_to_date
        assert config.ebin_dir.is_dir()

    def test_behaviour_compiled_first(self, config, toolchain):
        """A module is compiled only after the behaviour it declares."""
        _tree(
            config,
            {
                "src/a_impl.erl": module_source("a_impl", "-behaviour(z_beh)."),
                "src/z_beh.erl": module_source("z_beh"),
            },
        )
        result = _run(config, toolchain)
        assert result.success
        assert toolchain.compiled == ["z_beh", "a_impl"]
        assert toolchain.code_paths["a_impl"] == [config.ebin_dir]
        impl = next(t for t in result.tasks if t.target.name == "a_impl.beam")
        assert impl.dependencies == ["ebin/z_beh.beam"]

    def test_progress_events(self, config, toolchain):
        _tree(config, {"src/a.erl": module_source("a")})
        callback = RecordingCallback()
        _run(config, toolchain, callback=callback)
        assert callback.names(TaskPhase.SCANNING) == ["src/a.d"]
        assert callback.names(TaskPhase.COMPILING) == ["ebin/a.beam"]
        assert "ebin/a.beam" in callback.names(TaskPhase.DONE)


class TestIncrementalBuild:
    """Second and later runs."""

    def _built(self, config, toolchain, files):
        _tree(config, files)
        assert _run(config, toolchain).success
        toolchain.compiled.clear()
        toolchain.scanned.clear()

    def test_second_run_does_nothing(self, config, toolchain):
        self._built(config, toolchain, {"src/a.erl": module_source("a"), "src/b.erl": module_source("b")})
        result = _run(config, toolchain)
        assert result.up_to_date
        assert result.refreshed_records == []
        assert toolchain.compiled == []
        assert toolchain.scanned == []

    def test_changed_source_recompiles_only_itself(self, config, toolchain):
        self._built(config, toolchain, {"src/a.erl": module_source("a"), "src/b.erl": module_source("b")})
        bump(config.src_dir / "a.erl")
        result = _run(config, toolchain)
        assert toolchain.compiled == ["a"]
        assert [p.name for p in result.refreshed_records] == ["a.d"]

    def test_changed_header_recompiles_includers(self, config, toolchain):
        self._built(
            config,
            toolchain,
            {
                "include/shared.hrl": "-define(X, 1).\n",
                "src/a.erl": module_source("a", '-include("shared.hrl").'),
                "src/b.erl": module_source("b"),
            },
        )
        bump(config.include_dir / "shared.hrl")
        _run(config, toolchain)
        assert toolchain.compiled == ["a"]

    def test_changed_behaviour_recompiles_dependents(self, config, toolchain):
        self._built(
            config,
            toolchain,
            {
                "src/impl.erl": module_source("impl", "-behaviour(beh)."),
                "src/beh.erl": module_source("beh"),
                "src/other.erl": module_source("other"),
            },
        )
        bump(config.src_dir / "beh.erl")
        _run(config, toolchain)
        assert toolchain.compiled == ["beh", "impl"]

    def test_deleted_header_does_not_break_build(self, config, toolchain):
        """Removing a header and its include only rebuilds the includer."""
        self._built(
            config,
            toolchain,
            {"include/gone.hrl": "", "src/a.erl": module_source("a", '-include("gone.hrl").')},
        )
        (config.include_dir / "gone.hrl").unlink()
        write(config.src_dir / "a.erl", module_source("a"))
        bump(config.src_dir / "a.erl")

        result = _run(config, toolchain)
        assert result.success
        assert toolchain.compiled == ["a"]
        assert "gone.hrl" not in (config.src_dir / "a.d").read_text(encoding="utf-8")

    def test_corrupt_record_is_regenerated(self, config, toolchain):
        self._built(config, toolchain, {"src/a.erl": module_source("a")})
        record = config.src_dir / "a.d"
        record.write_text("this is not a rule\n", encoding="utf-8")
        bump(record)

        result = _run(config, toolchain)
        assert result.refreshed_records == [record]
        assert record.read_text(encoding="utf-8").startswith("ebin/a.beam src/a.d: src/a.erl")

    def test_deleted_object_is_rebuilt(self, config, toolchain):
        self._built(config, toolchain, {"src/a.erl": module_source("a"), "src/b.erl": module_source("b")})
        (config.ebin_dir / "b.beam").unlink()
        _run(config, toolchain)
        assert toolchain.compiled == ["b"]


class TestGrammarFiles:
    """Sources generated from grammar files."""

    def test_grammar_generated_then_compiled(self, config, toolchain):
        _tree(config, {"src/parser.yrl": "Nonterminals x.\n"})
        result = _run(config, toolchain)
        assert result.generated_sources == [config.src_dir / "parser.erl"]
        assert toolchain.grammars == ["parser"]
        assert toolchain.compiled == ["parser"]

    def test_grammar_not_regenerated_when_fresh(self, config, toolchain):
        _tree(config, {"src/parser.yrl": "Nonterminals x.\n"})
        _run(config, toolchain)
        result = _run(config, toolchain)
        assert result.generated_sources == []
        assert toolchain.grammars == ["parser"]

    def test_changed_grammar_regenerates(self, config, toolchain):
        _tree(config, {"src/parser.yrl": "Nonterminals x.\n"})
        _run(config, toolchain)
        bump(config.src_dir / "parser.yrl")
        _run(config, toolchain)
        assert toolchain.grammars == ["parser", "parser"]


class TestTestsGoal:
    """Building test objects."""

    def test_tests_compile_into_test_dir(self, config, toolchain):
        _tree(
            config,
            {
                "src/foo.erl": module_source("foo"),
                "src/unused.erl": module_source("unused"),
                "test/foo_tests.erl": module_source("foo_tests", "-compile({parse_transform, foo})."),
            },
        )
        result = _run(config, toolchain, Goal.TESTS)
        assert result.success
        assert (config.test_dir / "foo_tests.beam").exists()
        # The transform the test needs is built; unrelated main modules are not
        assert toolchain.compiled == ["foo", "foo_tests"]
        assert toolchain.code_paths["foo_tests"] == [config.ebin_dir, config.test_dir]

    def test_build_goal_ignores_test_records(self, config, toolchain):
        _tree(config, {"src/foo.erl": module_source("foo"), "test/foo_tests.erl": module_source("foo_tests")})
        _run(config, toolchain)
        assert not (config.test_dir / "foo_tests.d").exists()
        assert "foo_tests" not in toolchain.scanned

    def test_behaviour_from_test_root_built_once(self, config, toolchain):
        """A main module using a test-root behaviour builds it and then stays up to date."""
        _tree(config, {"src/impl.erl": module_source("impl", "-behaviour(tbeh)."), "test/tbeh.erl": module_source("tbeh")})
        first = _run(config, toolchain)
        assert first.success
        assert toolchain.compiled == ["tbeh", "impl"]
        assert (config.test_dir / "tbeh.beam").exists()
        assert toolchain.code_paths["impl"] == [config.ebin_dir, config.test_dir]
        assert "tbeh" not in toolchain.scanned

        toolchain.compiled.clear()
        second = _run(config, toolchain)
        assert second.up_to_date
        assert toolchain.compiled == []

    def test_changed_test_root_behaviour_rebuilds_user(self, config, toolchain):
        _tree(config, {"src/impl.erl": module_source("impl", "-behaviour(tbeh)."), "test/tbeh.erl": module_source("tbeh")})
        _run(config, toolchain)
        toolchain.compiled.clear()

        bump(config.test_dir / "tbeh.erl", 200)
        _run(config, toolchain)
        assert toolchain.compiled == ["tbeh", "impl"]


class TestFailures:
    """Errors stop the build."""

    def test_compile_failure_skips_dependents(self, config, toolchain):
        _tree(
            config,
            {
                "src/a.erl": "COMPILE ERROR\n",
                "src/b.erl": module_source("b", "-behaviour(a)."),
                "src/c.erl": module_source("c"),
            },
        )
        result = _run(config, toolchain)

        assert not result.success
        assert [t.name for t in result.failed_tasks] == ["ebin/a.beam"]
        assert "syntax error" in result.failed_tasks[0].error_message
        assert result.skipped_count == 1
        assert not (config.ebin_dir / "b.beam").exists()
        # Independent work that already started is kept
        assert (config.ebin_dir / "c.beam").exists()

    def test_scan_failure_raises(self, config, toolchain):
        _tree(config, {"src/bad.erl": "SYNTAX ERROR\n"})
        with pytest.raises(ScanError):
            _run(config, toolchain)
        assert toolchain.compiled == []
        assert not (config.src_dir / "bad.d").exists()

    def test_module_collision(self, config, toolchain):
        _tree(config, {"src/x/util.erl": module_source("util"), "src/y/util.erl": module_source("util")})
        with pytest.raises(ModuleCollisionError, match="util.beam"):
            _run(config, toolchain)

    def test_behaviour_cycle(self, config, toolchain):
        _tree(config, {"src/a.erl": module_source("a", "-behaviour(b)."), "src/b.erl": module_source("b", "-behaviour(a).")})
        with pytest.raises(CyclicDependencyError, match="ebin/a.beam"):
            _run(config, toolchain)

    def test_destructive_goal_rejected(self, config, toolchain):
        with pytest.raises(ValueError, match="does not build"):
            _run(config, toolchain, Goal.CLEAN)


class TestContentStaleness:
    """The content-hash oracle ignores touched-but-unchanged files."""

    def test_touch_does_not_rebuild(self, make_config, toolchain):
        config = make_config(staleness="content")
        _tree(config, {"src/a.erl": module_source("a")})
        _run(config, toolchain)
        assert config.state_file.exists()

        bump(config.src_dir / "a.erl")
        toolchain.compiled.clear()
        _run(config, toolchain)
        assert toolchain.compiled == []

    def test_edit_rebuilds(self, make_config, toolchain):
        config = make_config(staleness="content")
        _tree(config, {"src/a.erl": module_source("a")})
        _run(config, toolchain)

        write(config.src_dir / "a.erl", module_source("a", "-vsn(2)."))
        toolchain.compiled.clear()
        _run(config, toolchain)
        assert toolchain.compiled == ["a"]


def test_relative_names_are_posix(config, toolchain):
    _tree(config, {"src/a.erl": module_source("a")})
    result = _run(config, toolchain)
    assert result.tasks[0].name == Path("ebin", "a.beam").as_posix()
