"""Session state machine and per-cycle cancellation token."""

from __future__ import annotations

from enum import Enum, auto
from typing import Any

from livetutor.exceptions import LiveTutorError
from livetutor.logging_config import get_logger

logger: Any = get_logger(__name__)


class SessionState(Enum):
    """Conversation state for a live tutoring session."""

    IDLE = auto()  # Waiting for the user
    AWAITING_RESPONSE = auto()  # Cycle running, no audio produced yet
    SPEAKING = auto()  # Synthesized audio is flowing to the client
    INTERRUPTED = auto()  # Barge-in or stop, cleanup in progress


ALLOWED_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset(
        {SessionState.AWAITING_RESPONSE, SessionState.SPEAKING}
    ),
    SessionState.AWAITING_RESPONSE: frozenset(
        {SessionState.SPEAKING, SessionState.INTERRUPTED, SessionState.IDLE}
    ),
    SessionState.SPEAKING: frozenset(
        {SessionState.AWAITING_RESPONSE, SessionState.INTERRUPTED, SessionState.IDLE}
    ),
    SessionState.INTERRUPTED: frozenset({SessionState.IDLE}),
}


class IllegalTransitionError(LiveTutorError):
    """Requested state change is not in the transition table."""

    def __init__(self, current: SessionState, target: SessionState) -> None:
        super().__init__(f"Illegal transition {current.name} -> {target.name}")
        self.current = current
        self.target = target


class StateMachine:
    """Guarded holder for the current SessionState."""

    def __init__(self, initial: SessionState = SessionState.IDLE) -> None:
        self._state = initial

    @property
    def state(self) -> SessionState:
        return self._state

    def can_transition(self, target: SessionState) -> bool:
        return target == self._state or target in ALLOWED_TRANSITIONS[self._state]

    def transition_to(self, target: SessionState) -> bool:
        """Move to `target`.

        Returns:
            True if the state changed, False for a same-state request.

        Raises:
            IllegalTransitionError: If the move is not allowed.
        """
        if target == self._state:
            return False
        if target not in ALLOWED_TRANSITIONS[self._state]:
            raise IllegalTransitionError(self._state, target)
        logger.debug(f"State: {self._state.name} -> {target.name}")
        self._state = target
        return True

    def is_(self, *states: SessionState) -> bool:
        return self._state in states


class CancelToken:
    """One-way interrupt flag owned by a single generation cycle.

    A fresh token is created for every cycle; setting it is final.
    """

    __slots__ = ("_cancelled", "reason")

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    def cancel(self, reason: str = "interrupt") -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self._cancelled}, reason={self.reason!r})"
