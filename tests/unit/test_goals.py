"""Unit tests for goals and the record-reading policy."""

import pytest

from appmake.goals import DESTRUCTIVE_GOALS, Goal, RecordPolicy


class TestGoal:
    """Goal parsing and classification."""

    def test_parse_known_goal(self):
        assert Goal.parse("clean-tests") is Goal.CLEAN_TESTS

    def test_parse_unknown_goal_raises(self):
        """Unknown names list the accepted goals."""
        with pytest.raises(ValueError, match="expected one of"):
            Goal.parse("install")

    def test_str_is_command_line_name(self):
        assert str(Goal.REALCLEAN) == "realclean"

    def test_build_and_tests_are_not_destructive(self):
        assert not Goal.BUILD.is_destructive
        assert not Goal.TESTS.is_destructive

    def test_every_clean_goal_is_destructive(self):
        """All clean variants are destructive."""
        assert DESTRUCTIVE_GOALS == {goal for goal in Goal if goal.value.endswith("clean") or goal.value.startswith("clean")}


class TestRecordPolicy:
    """Which dependency records may be read for a goal list."""

    def test_build_reads_main_records_only(self):
        policy = RecordPolicy.for_goals([Goal.BUILD])
        assert policy.load_main and not policy.load_tests

    def test_tests_reads_both(self):
        """Building tests reads main and test records."""
        policy = RecordPolicy.for_goals([Goal.TESTS])
        assert policy.load_main and policy.load_tests

    @pytest.mark.parametrize("goal", sorted(DESTRUCTIVE_GOALS, key=lambda g: g.value))
    def test_clean_goals_read_nothing(self, goal):
        """A destructive goal disables all record reading."""
        assert not RecordPolicy.for_goals([goal]).allows_any

    def test_mixed_goals_with_clean_read_nothing(self):
        """One destructive goal in the list is enough to disable reading."""
        assert not RecordPolicy.for_goals([Goal.CLEAN, Goal.BUILD]).allows_any

    def test_empty_goal_list_reads_nothing(self):
        assert not RecordPolicy.for_goals([]).allows_any
