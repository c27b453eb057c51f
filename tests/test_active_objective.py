"""
Tests for tools/active_objective.py — one active objective per user.
"""

import random

import pytest

from tools.active_objective import ActiveObjectiveTracker, ACTIVE_FLAG


@pytest.fixture
def tracker(vault):
    return ActiveObjectiveTracker(vault, "p1")


class TestActiveObjectiveTracker:

    def test_empty(self, tracker):
        assert tracker.get_active() is None

    def test_set_replaces_previous(self, tracker):
        tracker.set_active("q1", 0)
        tracker.set_active("q2", 3)
        active = tracker.get_active()
        assert (active.quest_id, active.index) == ("q2", 3)

    def test_clear_active_only_for_that_quest(self, tracker):
        tracker.set_active("q1", 0)
        assert tracker.clear_active("q2") is False
        assert tracker.get_active().quest_id == "q1"
        assert tracker.clear_active("q1") is True
        assert tracker.get_active() is None

    def test_toggle_same_objective_clears(self, tracker):
        assert tracker.toggle_active("q1", 1) is not None
        assert tracker.toggle_active("q1", 1) is None
        assert tracker.get_active() is None

    def test_pin_quest_clears_selection(self, tracker):
        tracker.set_active("q1", 0)
        tracker.pin_quest("q2")
        assert tracker.get_active() is None
        assert tracker.get_pinned_quest() == "q2"

    def test_stored_on_user_document(self, tracker, vault):
        tracker.set_active("q1", 2)
        assert vault.get_flag(tracker.path, ACTIVE_FLAG) == {"questId": "q1", "index": 2}

    def test_users_are_independent(self, vault):
        a = ActiveObjectiveTracker(vault, "p1")
        b = ActiveObjectiveTracker(vault, "gm1")
        a.set_active("q1", 0)
        b.set_active("q2", 1)
        assert a.get_active().quest_id == "q1"
        assert b.get_active().quest_id == "q2"

    def test_unknown_user_gets_a_document(self, vault):
        tracker = ActiveObjectiveTracker(vault, "newcomer")
        tracker.set_active("q1", 0)
        assert vault.exists(tracker.path)

    def test_malformed_flag_reads_as_none(self, tracker, vault):
        vault.set_flag(tracker.path, ACTIVE_FLAG, {"questId": "q1"})
        assert tracker.get_active() is None

    def test_random_sequences_keep_one_selection(self, tracker):
        rng = random.Random(42)
        expected = None
        for _ in range(60):
            op = rng.choice(["set", "set", "clear_active", "clear_all"])
            quest_id = rng.choice(["q1", "q2", "q3"])
            if op == "set":
                index = rng.randint(0, 3)
                tracker.set_active(quest_id, index)
                expected = (quest_id, index)
            elif op == "clear_active":
                tracker.clear_active(quest_id)
                if expected and expected[0] == quest_id:
                    expected = None
            else:
                tracker.clear_all()
                expected = None
            active = tracker.get_active()
            assert (None if active is None else (active.quest_id, active.index)) == expected
