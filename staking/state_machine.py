# PATH: staking/state_machine.py
"""
Stake lifecycle state machine.

STAKE STATE CONTRACT:
=====================

States (StakeState):
  UNSTAKED          → token in the owner's wallet
  APPROVAL_PENDING  → setApprovalForAll submitted, not yet verified
  APPROVAL_GRANTED  → stake contract may move the token
  STAKE_PENDING     → stake([id]) submitted, awaiting receipt
  STAKED            → token held by the stake contract, ledger written
  UNSTAKE_PENDING   → withdraw([id]) submitted, awaiting receipt
  FAILED            → terminal, reachable from any pending state

Transitions:
  UNSTAKED         → APPROVAL_PENDING  (approval needed)
  UNSTAKED         → APPROVAL_GRANTED  (approval already present)
  APPROVAL_PENDING → APPROVAL_GRANTED  (approval verified or mined)
  APPROVAL_GRANTED → STAKE_PENDING     (stake submitted)
  STAKE_PENDING    → STAKED            (custody confirmed)
  STAKED           → UNSTAKE_PENDING   (withdraw submitted)
  UNSTAKE_PENDING  → UNSTAKED          (custody returned)
  *_PENDING        → FAILED

A machine left in STAKE_PENDING or UNSTAKE_PENDING after the confirmation
window is "unconfirmed": not failed, to be settled by reconciliation.
=====================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from core.time import now_iso


class StakeState(str, Enum):
    """Stake lifecycle states."""
    UNSTAKED = "UNSTAKED"
    APPROVAL_PENDING = "APPROVAL_PENDING"
    APPROVAL_GRANTED = "APPROVAL_GRANTED"
    STAKE_PENDING = "STAKE_PENDING"
    STAKED = "STAKED"
    UNSTAKE_PENDING = "UNSTAKE_PENDING"
    FAILED = "FAILED"


PENDING_STATES = frozenset({
    StakeState.APPROVAL_PENDING,
    StakeState.STAKE_PENDING,
    StakeState.UNSTAKE_PENDING,
})

# Valid state transitions
VALID_TRANSITIONS: Dict[StakeState, List[StakeState]] = {
    StakeState.UNSTAKED: [StakeState.APPROVAL_PENDING, StakeState.APPROVAL_GRANTED],
    StakeState.APPROVAL_PENDING: [StakeState.APPROVAL_GRANTED, StakeState.FAILED],
    StakeState.APPROVAL_GRANTED: [StakeState.STAKE_PENDING],
    StakeState.STAKE_PENDING: [StakeState.STAKED, StakeState.FAILED],
    StakeState.STAKED: [StakeState.UNSTAKE_PENDING],
    StakeState.UNSTAKE_PENDING: [StakeState.UNSTAKED, StakeState.FAILED],
    StakeState.FAILED: [],  # Terminal state
}


@dataclass
class StateTransition:
    """Record of a state transition."""
    from_state: StakeState
    to_state: StakeState
    timestamp: str = ""
    reason: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = now_iso()


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""
    pass


@dataclass
class StakeStateMachine:
    """
    State machine for one stake or unstake operation.

    Tracks current state and transition history.
    """
    nft_id: str
    state: StakeState = StakeState.UNSTAKED
    history: List[StateTransition] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = now_iso()

    def can_transition_to(self, new_state: StakeState) -> bool:
        """Check if transition to new_state is valid."""
        return new_state in VALID_TRANSITIONS.get(self.state, [])

    def transition_to(
        self,
        new_state: StakeState,
        reason: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StateTransition:
        """
        Transition to a new state.

        Raises InvalidTransitionError if transition is not valid.
        """
        if not self.can_transition_to(new_state):
            raise InvalidTransitionError(
                f"Cannot transition from {self.state.value} to {new_state.value}. "
                f"Valid transitions: {[s.value for s in VALID_TRANSITIONS.get(self.state, [])]}"
            )

        transition = StateTransition(
            from_state=self.state,
            to_state=new_state,
            reason=reason,
            metadata=metadata or {},
        )

        self.history.append(transition)
        self.state = new_state

        return transition

    def fail(self, reason: str, metadata: Optional[Dict[str, Any]] = None) -> Optional[StateTransition]:
        """
        Move to FAILED if currently pending.

        Failures detected before anything was submitted (pre-checks) leave
        the machine where it is; returns None in that case.
        """
        if self.state not in PENDING_STATES:
            return None
        return self.transition_to(StakeState.FAILED, reason=reason, metadata=metadata)

    @property
    def is_terminal(self) -> bool:
        """Check if current state is terminal."""
        return len(VALID_TRANSITIONS.get(self.state, [])) == 0

    @property
    def is_pending(self) -> bool:
        return self.state in PENDING_STATES

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "nft_id": self.nft_id,
            "state": self.state.value,
            "is_terminal": self.is_terminal,
            "is_pending": self.is_pending,
            "created_at": self.created_at,
            "history": [
                {
                    "from_state": t.from_state.value,
                    "to_state": t.to_state.value,
                    "timestamp": t.timestamp,
                    "reason": t.reason,
                    "metadata": t.metadata,
                }
                for t in self.history
            ],
            "metadata": self.metadata,
        }
