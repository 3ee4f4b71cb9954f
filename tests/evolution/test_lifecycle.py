"""Tests for the proposal lifecycle state machine."""

import pytest

from codevolve.evolution.lifecycle import ProposalLifecycle, ProposalState, VALID_TRANSITIONS
from codevolve.exceptions import ProposalStateError


def test_happy_path():
    lc = ProposalLifecycle("local-1")
    for state in (
        ProposalState.JUDGED,
        ProposalState.PLANNED,
        ProposalState.WRITTEN,
        ProposalState.VALIDATED,
        ProposalState.COMMITTED,
        ProposalState.COMPLETE,
    ):
        lc.transition(state)
    assert lc.is_terminal
    assert lc.history[0] == ProposalState.COLLECTED
    assert lc.history[-1] == ProposalState.COMPLETE


def test_validation_failure_rolls_back():
    lc = ProposalLifecycle("local-1")
    lc.transition(ProposalState.JUDGED)
    lc.transition(ProposalState.PLANNED)
    lc.transition(ProposalState.WRITTEN)
    lc.transition(ProposalState.VALIDATION_FAILED)
    assert not lc.is_terminal
    lc.transition(ProposalState.ROLLED_BACK)
    assert lc.is_terminal


def test_cannot_skip_judging():
    lc = ProposalLifecycle("local-1")
    with pytest.raises(ProposalStateError, match="collected to planned"):
        lc.transition(ProposalState.PLANNED)
    assert lc.state == ProposalState.COLLECTED


def test_cannot_commit_without_validation():
    lc = ProposalLifecycle("local-1")
    lc.transition(ProposalState.JUDGED)
    lc.transition(ProposalState.PLANNED)
    lc.transition(ProposalState.WRITTEN)
    with pytest.raises(ProposalStateError):
        lc.transition(ProposalState.COMMITTED)


@pytest.mark.parametrize("state", [
    ProposalState.REJECTED,
    ProposalState.NEEDS_REVIEW,
    ProposalState.PLAN_INVALID,
    ProposalState.ROLLED_BACK,
    ProposalState.COMPLETE,
])
def test_final_states_have_no_exits(state):
    assert VALID_TRANSITIONS[state] == set()
