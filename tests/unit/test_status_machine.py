"""
Tests for the quote status state machine.

The transition table is the only authority: every (from, to) pair is
either listed and allowed, or rejected with InvalidTransitionError.
"""

from datetime import UTC, datetime
from itertools import product

import pytest

from quote_kernel.config import StatusConfig
from quote_kernel.domain.status import QuoteStatus, StatusMachine, parse_status
from quote_kernel.exceptions import InvalidTransitionError, ValidationError

NOW = datetime(2024, 3, 1, 9, 30, tzinfo=UTC)

ALLOWED = {
    ("draft", "pending"), ("draft", "rejected"), ("draft", "cancelled"),
    ("pending", "approved"), ("pending", "rejected"), ("pending", "cancelled"),
    ("approved", "sent"), ("approved", "rejected"), ("approved", "cancelled"),
    ("sent", "accepted"), ("sent", "rejected"), ("sent", "cancelled"),
}


@pytest.fixture
def machine():
    return StatusMachine.from_config(StatusConfig())


class TestTransitionTable:

    @pytest.mark.parametrize(
        "current,target",
        list(product([s.value for s in QuoteStatus], repeat=2)),
    )
    def test_every_pair_is_decided_by_the_table(self, machine, current, target):
        """All 49 pairs: listed ones succeed, everything else raises."""
        if (current, target) in ALLOWED:
            outcome = machine.transition(current, target, "user-1", NOW)
            assert outcome.to_status == QuoteStatus(target)
            assert not outcome.noop
        else:
            with pytest.raises(InvalidTransitionError) as exc_info:
                machine.transition(current, target, "user-1", NOW)
            assert exc_info.value.current_status == current
            assert exc_info.value.requested_status == target

    def test_no_skipping_states(self, machine):
        with pytest.raises(InvalidTransitionError):
            machine.transition("draft", "accepted", "user-1", NOW)

    @pytest.mark.parametrize("status", ["accepted", "rejected", "cancelled"])
    def test_terminal_states(self, machine, status):
        assert machine.is_terminal(status)
        assert machine.allowed_targets(status) == frozenset()

    def test_transitions_listing_matches_table(self, machine):
        listed = {(t.from_state.value, t.to_state.value) for t in machine.transitions}
        assert listed == ALLOWED

    def test_unknown_target_is_validation_error(self, machine):
        with pytest.raises(ValidationError):
            machine.transition("draft", "archived", "user-1", NOW)

    def test_parse_status_accepts_enum(self):
        assert parse_status(QuoteStatus.SENT) is QuoteStatus.SENT


class TestStamps:

    def test_approved_stamps_actor_and_time(self, machine):
        outcome = machine.transition("pending", "approved", "approver-7", NOW)
        assert outcome.stamps == {"approved_at": NOW, "approved_by": "approver-7"}

    def test_sent_stamps_time(self, machine):
        outcome = machine.transition("approved", "sent", "user-1", NOW)
        assert outcome.stamps == {"sent_at": NOW}

    def test_accepted_stamps_time(self, machine):
        outcome = machine.transition("sent", "accepted", "user-1", NOW)
        assert outcome.stamps == {"accepted_at": NOW}

    def test_other_transitions_stamp_nothing(self, machine):
        assert machine.transition("draft", "pending", "user-1", NOW).stamps == {}
        assert machine.transition("sent", "rejected", "user-1", NOW).stamps == {}


class TestSameState:

    def test_same_state_rejected_by_default(self, machine):
        with pytest.raises(InvalidTransitionError):
            machine.transition("draft", "draft", "user-1", NOW)

    def test_same_state_noop_when_enabled(self):
        machine = StatusMachine.from_config(StatusConfig(allow_same_state_noop=True))
        outcome = machine.transition("approved", "approved", "user-1", NOW)
        assert outcome.noop
        assert outcome.stamps == {}


class TestInjectedTable:

    def test_alternate_table_replaces_default(self):
        machine = StatusMachine({"draft": frozenset({"accepted"})})
        assert machine.can_transition("draft", "accepted")
        assert not machine.can_transition("draft", "pending")
        assert machine.is_terminal("pending")
