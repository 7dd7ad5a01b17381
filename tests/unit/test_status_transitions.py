"""Unit tests for the competition status state machine."""

from __future__ import annotations

import pytest

from compete.exceptions import InvalidTransitionError
from compete.lifecycle.scheduler import (
    VALID_TRANSITIONS,
    CompetitionOutcome,
    summarize,
    validate_transition,
)


class TestStatusStateMachine:

    def test_valid_transitions_structure(self):
        assert set(VALID_TRANSITIONS.keys()) == {"upcoming", "active", "completed"}

    def test_upcoming_to_active(self):
        validate_transition("upcoming", "active")

    def test_active_to_completed(self):
        validate_transition("active", "completed")

    def test_completed_is_terminal(self):
        assert VALID_TRANSITIONS["completed"] == []

    @pytest.mark.parametrize("current,target", [
        ("completed", "active"),
        ("active", "upcoming"),
        ("completed", "upcoming"),
    ])
    def test_cannot_go_backwards(self, current, target):
        with pytest.raises(InvalidTransitionError, match="Invalid transition"):
            validate_transition(current, target)

    def test_cannot_skip_active(self):
        with pytest.raises(ValueError, match="Invalid transition"):
            validate_transition("upcoming", "completed")

    def test_unknown_status(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition("archived", "active")


class TestSummarize:

    def test_folds_outcomes(self):
        outcomes = [
            CompetitionOutcome(1, completed=True, force_locked=2, rewards_settled=True),
            CompetitionOutcome(2, skipped="not_due"),
            CompetitionOutcome(3, completed=True, force_locked=0),
            CompetitionOutcome(4, force_locked=1, skipped="lost_race"),
            CompetitionOutcome(5, retried=True, rewards_settled=True),
        ]
        summary = summarize(outcomes, activated=3, counts={"active": 1, "upcoming": 0, "completed": 4})
        assert summary.activated == 3
        assert summary.completed == 2
        assert summary.force_locked == 3
        assert summary.settlement_retries == 1
        assert summary.counts == {"active": 1, "upcoming": 0, "completed": 4}

    def test_empty(self):
        summary = summarize([], activated=0, counts=None)
        assert (summary.completed, summary.force_locked, summary.settlement_retries) == (0, 0, 0)
