"""Proposal lifecycle — enforces the order of pipeline stages."""

from __future__ import annotations

from enum import Enum

from codevolve.exceptions import ProposalStateError
from codevolve.types import ProposalId


class ProposalState(str, Enum):
    COLLECTED = "collected"
    JUDGED = "judged"
    REJECTED = "rejected"
    NEEDS_REVIEW = "needs_review"
    PLANNED = "planned"
    PLAN_INVALID = "plan_invalid"
    WRITTEN = "written"
    WRITE_FAILED = "write_failed"
    VALIDATED = "validated"
    VALIDATION_FAILED = "validation_failed"
    COMMITTED = "committed"
    COMMIT_FAILED = "commit_failed"
    ROLLED_BACK = "rolled_back"
    COMPLETE = "complete"


VALID_TRANSITIONS: dict[ProposalState, set[ProposalState]] = {
    ProposalState.COLLECTED: {ProposalState.JUDGED},
    ProposalState.JUDGED: {
        ProposalState.REJECTED,
        ProposalState.NEEDS_REVIEW,
        ProposalState.PLANNED,
        ProposalState.PLAN_INVALID,
    },
    ProposalState.PLANNED: {ProposalState.WRITTEN, ProposalState.WRITE_FAILED},
    ProposalState.WRITTEN: {
        ProposalState.VALIDATED,
        ProposalState.VALIDATION_FAILED,
        ProposalState.WRITE_FAILED,  # strict mode: partial write
    },
    ProposalState.WRITE_FAILED: {ProposalState.ROLLED_BACK},
    ProposalState.VALIDATION_FAILED: {ProposalState.ROLLED_BACK},
    ProposalState.VALIDATED: {ProposalState.COMMITTED, ProposalState.COMMIT_FAILED},
    ProposalState.COMMIT_FAILED: {ProposalState.ROLLED_BACK},
    ProposalState.COMMITTED: {ProposalState.COMPLETE},
    ProposalState.REJECTED: set(),  # terminal
    ProposalState.NEEDS_REVIEW: set(),  # terminal
    ProposalState.PLAN_INVALID: set(),  # terminal
    ProposalState.ROLLED_BACK: set(),  # terminal
    ProposalState.COMPLETE: set(),  # terminal
}

TERMINAL_STATES = {
    ProposalState.REJECTED,
    ProposalState.NEEDS_REVIEW,
    ProposalState.PLAN_INVALID,
    ProposalState.WRITE_FAILED,
    ProposalState.ROLLED_BACK,
    ProposalState.COMPLETE,
}


class ProposalLifecycle:
    """Tracks one proposal's run through the pipeline."""

    def __init__(self, proposal_id: ProposalId) -> None:
        self.proposal_id = proposal_id
        self._state = ProposalState.COLLECTED
        self._history: list[ProposalState] = [ProposalState.COLLECTED]

    @property
    def state(self) -> ProposalState:
        return self._state

    @property
    def history(self) -> list[ProposalState]:
        return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def transition(self, target: ProposalState) -> ProposalState:
        valid = VALID_TRANSITIONS.get(self._state, set())
        if target not in valid:
            raise ProposalStateError(
                f"Cannot move proposal {self.proposal_id} "
                f"from {self._state.value} to {target.value}"
            )
        self._state = target
        self._history.append(target)
        return target
