"""Stream session state machine for managing state transitions."""

from app.schemas import StreamState


class StreamStateMachine:
    """State machine for stream session transitions.

    State flow with triggers:
    - STARTING (session created, quota reserved) -> RUNNING (unit launched) | STOPPING (stop while launching)
      | ERROR (resolution/launch failure, launch timeout)
    - RUNNING -> STOPPING (stop requested) | ERROR (sweeper found the unit gone)
    - STOPPING -> STOPPED (unit torn down) | ERROR (stop failure escalation)
    - STOPPED/ERROR are terminal states; quota is released on entering either
    """

    TRANSITIONS: dict[StreamState, set[StreamState]] = {
        StreamState.STARTING: {
            StreamState.RUNNING,
            StreamState.STOPPING,
            StreamState.ERROR,
        },
        StreamState.RUNNING: {
            StreamState.STOPPING,
            StreamState.ERROR,
        },
        StreamState.STOPPING: {StreamState.STOPPED, StreamState.ERROR},
        StreamState.STOPPED: set(),
        StreamState.ERROR: set(),
    }

    TERMINAL_STATES: set[StreamState] = {StreamState.STOPPED, StreamState.ERROR}

    @classmethod
    def can_transition(cls, current: StreamState, new: StreamState) -> bool:
        """Check if state transition is valid.

        Args:
            current: Current session state
            new: Target state to transition to

        Returns:
            True if transition is valid, False otherwise
        """
        return new in cls.TRANSITIONS.get(current, set())

    @classmethod
    def is_terminal(cls, state: StreamState) -> bool:
        """Check if a state is terminal (no further transitions allowed)."""
        return state in cls.TERMINAL_STATES

    @classmethod
    def get_valid_transitions(cls, state: StreamState) -> set[StreamState]:
        """Get all valid transitions from a given state."""
        return cls.TRANSITIONS.get(state, set())

    @classmethod
    def get_valid_sources(cls, target: StreamState) -> set[StreamState]:
        """Get all states that can transition to the target state."""
        return {state for state, targets in cls.TRANSITIONS.items() if target in targets}
