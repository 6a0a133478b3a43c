"""
State machine for chain executions.

Implements explicit state transitions with guards and validation.
"""

from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field


class ChainState(str, Enum):
    """
    Possible states for a chain execution.

    State transitions:
    - QUEUED -> ACTIVE -> SUCCEEDED
    - QUEUED -> ACTIVE -> FAILED
    - ACTIVE -> QUEUED (execution window revoked before a terminal outcome)
    """

    QUEUED = "QUEUED"        # Persisted and waiting in the durable queue
    ACTIVE = "ACTIVE"        # Currently executing in this process
    SUCCEEDED = "SUCCEEDED"  # Every stage succeeded, definition deleted
    FAILED = "FAILED"        # A stage failed or timed out, definition deleted


class StateTransition(BaseModel):
    """Represents a state transition event."""

    from_state: str
    to_state: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    reason: Optional[str] = None
    triggered_by: Optional[str] = None
    metadata: dict = Field(default_factory=dict)


class InvalidStateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: str, to_state: str, message: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition from {from_state} to {to_state}"
            + (f": {message}" if message else "")
        )


# Type alias for transition guards
TransitionGuard = Callable[[], bool]


class ChainStateMachine:
    """
    State machine for one chain execution.

    Defines valid transitions and provides transition guards.
    """

    # Valid state transitions: from_state -> [valid_to_states]
    VALID_TRANSITIONS: dict[ChainState, set[ChainState]] = {
        ChainState.QUEUED: {ChainState.ACTIVE},
        ChainState.ACTIVE: {ChainState.SUCCEEDED, ChainState.FAILED, ChainState.QUEUED},
        ChainState.SUCCEEDED: set(),  # Terminal state
        ChainState.FAILED: set(),     # Terminal state
    }

    # Terminal states - no further transitions allowed
    TERMINAL_STATES: set[ChainState] = {ChainState.SUCCEEDED, ChainState.FAILED}

    def __init__(self, chain_id: str, initial_state: ChainState = ChainState.QUEUED):
        self.chain_id = chain_id
        self._state = initial_state
        self._history: list[StateTransition] = []

    @property
    def state(self) -> ChainState:
        """Get current state."""
        return self._state

    @property
    def history(self) -> list[StateTransition]:
        """Get state transition history."""
        return self._history.copy()

    @property
    def is_terminal(self) -> bool:
        """Check if current state is terminal."""
        return self._state in self.TERMINAL_STATES

    @property
    def is_success(self) -> bool:
        return self._state == ChainState.SUCCEEDED

    def can_transition_to(self, to_state: ChainState) -> bool:
        """Check if transition to given state is valid."""
        return to_state in self.VALID_TRANSITIONS.get(self._state, set())

    def get_valid_transitions(self) -> set[ChainState]:
        """Get all valid transitions from current state."""
        return self.VALID_TRANSITIONS.get(self._state, set()).copy()

    def transition(
        self,
        to_state: ChainState,
        reason: Optional[str] = None,
        triggered_by: Optional[str] = None,
        guard: Optional[TransitionGuard] = None,
        metadata: Optional[dict] = None,
    ) -> StateTransition:
        """
        Transition to a new state.

        Args:
            to_state: Target state
            reason: Reason for transition
            triggered_by: Who/what triggered the transition
            guard: Optional guard function that must return True
            metadata: Additional metadata for the transition

        Returns:
            StateTransition record

        Raises:
            InvalidStateTransitionError: If transition is not valid
        """
        if not self.can_transition_to(to_state):
            raise InvalidStateTransitionError(
                self._state.value,
                to_state.value,
                f"Valid transitions: {self.get_valid_transitions()}"
            )

        if guard is not None and not guard():
            raise InvalidStateTransitionError(
                self._state.value,
                to_state.value,
                "Guard condition failed"
            )

        transition = StateTransition(
            from_state=self._state.value,
            to_state=to_state.value,
            reason=reason,
            triggered_by=triggered_by,
            metadata=metadata or {},
        )

        self._history.append(transition)
        self._state = to_state

        return transition
