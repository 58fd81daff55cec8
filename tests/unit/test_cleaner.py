"""Unit tests for the cleanup goals."""

import pytest
from conftest import write

from appmake.build.discovery import discover_sources
from appmake.cleaner import Cleaner
from appmake.goals import Goal


@pytest.fixture
def built(config):
    """An application tree with every kind of generated artifact."""
    files = [
        config.src_dir / "a.erl",
        config.src_dir / "parser.yrl",
        config.src_dir / "parser.erl",
        config.test_dir / "a_tests.erl",
        config.template_path,
        config.ebin_dir / "a.beam",
        config.ebin_dir / "parser.beam",
        config.test_dir / "a_tests.beam",
        config.src_dir / "a.d",
        config.src_dir / "parser.d",
        config.test_dir / "a_tests.d",
        config.state_file,
        config.descriptor_path,
        config.doc_dir / "edoc-info",
        config.doc_dir / "index.html",
        config.doc_dir / "overview.edoc",
        config.doc_dir / "stylesheet.css",
        config.doc_dir / "erlang.png",
    ]
    for path in files:
        write(path, "")
    return config


def _clean(config, goal):
    return Cleaner(config, discover_sources(config)).run(goal)


def _exists(config, *relative):
    return {name: (config.app_dir / name).exists() for name in relative}


class TestCleanGoals:
    """What each goal removes."""

    def test_clean_tests(self, built):
        report = _clean(built, Goal.CLEAN_TESTS)
        assert [p.name for p in report.removed] == ["a_tests.beam"]
        assert (built.ebin_dir / "a.beam").exists()

    def test_clean(self, built):
        report = _clean(built, Goal.CLEAN)
        assert sorted(p.name for p in report.removed) == ["a.beam", "a_tests.beam", "myapp.app", "parser.beam", "parser.erl"]
        # Sources, template and records survive
        assert _exists(built, "src/a.erl", "src/parser.yrl", "src/myapp.app.src", "src/a.d") == {
            "src/a.erl": True,
            "src/parser.yrl": True,
            "src/myapp.app.src": True,
            "src/a.d": True,
        }

    def test_clean_deps(self, built):
        report = _clean(built, Goal.CLEAN_DEPS)
        assert sorted(p.name for p in report.removed) == [".appmake-state.json", "a.d", "a_tests.d", "parser.d"]
        assert (built.ebin_dir / "a.beam").exists()

    def test_distclean(self, built):
        report = _clean(built, Goal.DISTCLEAN)
        assert report.removed_count == 9
        assert (built.doc_dir / "index.html").exists()

    def test_clean_docs(self, built):
        report = _clean(built, Goal.CLEAN_DOCS)
        assert sorted(p.name for p in report.removed) == ["edoc-info", "erlang.png", "index.html", "stylesheet.css"]
        assert (built.doc_dir / "overview.edoc").exists()

    def test_realclean(self, built):
        report = _clean(built, Goal.REALCLEAN)
        assert report.removed_count == 13
        remaining = sorted(p.relative_to(built.app_dir).as_posix() for p in built.app_dir.rglob("*") if p.is_file())
        assert remaining == ["doc/overview.edoc", "src/a.erl", "src/myapp.app.src", "src/parser.yrl", "test/a_tests.erl"]


class TestCleanBehaviour:
    """Idempotence and safety."""

    def test_second_run_removes_nothing(self, built):
        _clean(built, Goal.REALCLEAN)
        assert _clean(built, Goal.REALCLEAN).removed_count == 0

    def test_empty_tree(self, config):
        assert _clean(config, Goal.REALCLEAN).removed_count == 0

    def test_records_are_not_read(self, built):
        """A corrupt record does not stop cleaning."""
        (built.src_dir / "a.d").write_text("garbage", encoding="utf-8")
        assert _clean(built, Goal.DISTCLEAN).removed_count == 9

    def test_directory_in_place_of_object(self, config, caplog):
        write(config.src_dir / "a.erl", "")
        (config.ebin_dir / "a.beam").mkdir(parents=True)
        report = _clean(config, Goal.CLEAN)
        assert report.removed_count == 0
        assert "Not removing directory" in caplog.text

    def test_build_goal_rejected(self, config):
        with pytest.raises(ValueError, match="not a cleanup goal"):
            _clean(config, Goal.BUILD)
