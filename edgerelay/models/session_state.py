"""Session lifecycle states for a relay session.

``SessionStateMachine`` is the single owner of a session's state. It only
allows the transitions listed in ``ALLOWED_TRANSITIONS`` and keeps a short
history for diagnostics. Only the sequencer and the relay session call
``transition``.
"""

import time
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from edgerelay.config.logging_config import configure_logging
from edgerelay.errors import RelayError

logger = configure_logging("session_state")


class SessionState(Enum):
    """Lifecycle states of a relay session.

    Attributes:
        INITIALIZING: Acquiring the credential and opening the upstream link
        AWAITING_UPSTREAM_READY: Link open, waiting for session.created
        STREAMING: Audio may be appended upstream
        COMMITTING: Segment committed, response request not yet sent
        RESPONSE_PENDING: Response requested, waiting for the transcript
        CLOSED: Device disconnected, session finished normally
        FAILED: Fatal error, session aborted
    """

    INITIALIZING = "initializing"
    AWAITING_UPSTREAM_READY = "awaiting_upstream_ready"
    STREAMING = "streaming"
    COMMITTING = "committing"
    RESPONSE_PENDING = "response_pending"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.FAILED)


_TERMINAL = frozenset({SessionState.CLOSED, SessionState.FAILED})

ALLOWED_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.INITIALIZING: frozenset({SessionState.AWAITING_UPSTREAM_READY}) | _TERMINAL,
    SessionState.AWAITING_UPSTREAM_READY: frozenset({SessionState.STREAMING}) | _TERMINAL,
    SessionState.STREAMING: frozenset({SessionState.COMMITTING}) | _TERMINAL,
    SessionState.COMMITTING: frozenset({SessionState.RESPONSE_PENDING}) | _TERMINAL,
    SessionState.RESPONSE_PENDING: frozenset({SessionState.STREAMING}) | _TERMINAL,
    SessionState.CLOSED: frozenset(),
    SessionState.FAILED: frozenset(),
}


class InvalidStateTransition(RelayError):
    """Raised when a transition is not in ALLOWED_TRANSITIONS."""

    def __init__(self, current: SessionState, target: SessionState):
        super().__init__(f"Invalid transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


class SessionStateMachine:
    """Holds the current SessionState and validates every change."""

    def __init__(self, session_id: str = "", history_size: int = 50):
        self.session_id = session_id
        self._state = SessionState.INITIALIZING
        self._history: List[Tuple[float, SessionState, SessionState, str]] = []
        self._history_size = history_size

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    def can_transition(self, target: SessionState) -> bool:
        return target in ALLOWED_TRANSITIONS[self._state]

    def transition(self, target: SessionState, reason: str = "") -> SessionState:
        """Move to ``target``.

        Raises:
            InvalidStateTransition: if the move is not allowed
        """
        if not self.can_transition(target):
            raise InvalidStateTransition(self._state, target)

        previous = self._state
        self._state = target
        self._history.append((time.time(), previous, target, reason))
        if len(self._history) > self._history_size:
            self._history.pop(0)

        logger.info(
            f"[{self.session_id}] State {previous.value} -> {target.value}"
            + (f" ({reason})" if reason else "")
        )
        return previous

    def history(self) -> List[Dict[str, Optional[str]]]:
        return [
            {
                "timestamp": str(ts),
                "from": before.value,
                "to": after.value,
                "reason": reason or None,
            }
            for ts, before, after, reason in self._history
        ]
