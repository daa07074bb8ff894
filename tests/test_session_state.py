"""Tests for the session state machine."""

import pytest

from edgerelay.models.session_state import (
    ALLOWED_TRANSITIONS,
    InvalidStateTransition,
    SessionState,
    SessionStateMachine,
)


def test_starts_initializing():
    machine = SessionStateMachine("s1")
    assert machine.state == SessionState.INITIALIZING
    assert not machine.is_terminal


def test_happy_path():
    machine = SessionStateMachine("s1")
    for state in (
        SessionState.AWAITING_UPSTREAM_READY,
        SessionState.STREAMING,
        SessionState.COMMITTING,
        SessionState.RESPONSE_PENDING,
        SessionState.STREAMING,
        SessionState.CLOSED,
    ):
        machine.transition(state)
    assert machine.is_terminal
    assert [entry["to"] for entry in machine.history()][-1] == "closed"


@pytest.mark.parametrize(
    "path",
    [
        [SessionState.STREAMING],
        [SessionState.AWAITING_UPSTREAM_READY, SessionState.COMMITTING],
        [SessionState.AWAITING_UPSTREAM_READY, SessionState.STREAMING, SessionState.RESPONSE_PENDING],
    ],
)
def test_invalid_transitions_raise(path):
    machine = SessionStateMachine("s1")
    with pytest.raises(InvalidStateTransition):
        for state in path:
            machine.transition(state)


@pytest.mark.parametrize(
    "state", [s for s in SessionState if not s.is_terminal]
)
def test_every_live_state_can_fail_or_close(state):
    assert SessionState.FAILED in ALLOWED_TRANSITIONS[state]
    assert SessionState.CLOSED in ALLOWED_TRANSITIONS[state]


@pytest.mark.parametrize("terminal", [SessionState.CLOSED, SessionState.FAILED])
def test_terminal_states_are_final(terminal):
    machine = SessionStateMachine("s1")
    machine.transition(terminal, "test")
    for state in SessionState:
        assert not machine.can_transition(state)


def test_history_records_reason():
    machine = SessionStateMachine("s1")
    machine.transition(SessionState.FAILED, "credential_failure")
    entry = machine.history()[0]
    assert entry["from"] == "initializing"
    assert entry["to"] == "failed"
    assert entry["reason"] == "credential_failure"
