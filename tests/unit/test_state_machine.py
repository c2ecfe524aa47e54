"""Unit tests for the session phase state machine.

Tests cover:
- Valid phase transitions
- Invalid phase transition handling
- Interrupted flag on entering INTERRUPTED
- Transition logging
"""

from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from gamedeck.models import SessionPhase, SessionState
from gamedeck.orchestrator.state_machine import (
    VALID_TRANSITIONS,
    InvalidPhaseTransitionError,
    transition,
    validate_transition,
)


class TestValidTransitions:
    """Test the VALID_TRANSITIONS mapping and validation."""

    def test_valid_transitions_definition(self):
        """Verify VALID_TRANSITIONS includes all SessionPhase values."""
        assert set(VALID_TRANSITIONS) == set(SessionPhase)

    @pytest.mark.parametrize(
        "current,target,expected",
        [
            # Valid transitions
            (SessionPhase.IDLE, SessionPhase.SETUP, True),
            (SessionPhase.SETUP, SessionPhase.LAUNCHING, True),
            (SessionPhase.LAUNCHING, SessionPhase.MONITORING, True),
            (SessionPhase.MONITORING, SessionPhase.SHUTTING_DOWN, True),
            (SessionPhase.SETUP, SessionPhase.INTERRUPTED, True),
            (SessionPhase.LAUNCHING, SessionPhase.INTERRUPTED, True),
            (SessionPhase.MONITORING, SessionPhase.INTERRUPTED, True),
            (SessionPhase.INTERRUPTED, SessionPhase.SHUTTING_DOWN, True),
            (SessionPhase.SHUTTING_DOWN, SessionPhase.DONE, True),
            (SessionPhase.IDLE, SessionPhase.SHUTTING_DOWN, True),
            # Invalid transitions
            (SessionPhase.IDLE, SessionPhase.MONITORING, False),
            (SessionPhase.SETUP, SessionPhase.MONITORING, False),
            (SessionPhase.MONITORING, SessionPhase.LAUNCHING, False),
            (SessionPhase.INTERRUPTED, SessionPhase.SETUP, False),
            (SessionPhase.SHUTTING_DOWN, SessionPhase.INTERRUPTED, False),
            (SessionPhase.SHUTTING_DOWN, SessionPhase.SHUTTING_DOWN, False),
            (SessionPhase.DONE, SessionPhase.SHUTTING_DOWN, False),
            (SessionPhase.DONE, SessionPhase.IDLE, False),
        ],
    )
    def test_validate_transition(self, current, target, expected):
        assert validate_transition(current, target) is expected

    def test_done_is_terminal(self):
        assert VALID_TRANSITIONS[SessionPhase.DONE] == set()

    def test_every_non_terminal_phase_reaches_cleanup(self):
        """A failure in any live phase must still be able to shut down."""
        for phase in SessionPhase:
            if phase in (SessionPhase.SHUTTING_DOWN, SessionPhase.DONE):
                continue
            assert SessionPhase.SHUTTING_DOWN in VALID_TRANSITIONS[phase], phase


class TestTransition:
    """Test applying transitions to session state."""

    def test_happy_path(self):
        state = SessionState(game_id="apex")
        for phase in (
            SessionPhase.SETUP,
            SessionPhase.LAUNCHING,
            SessionPhase.MONITORING,
            SessionPhase.SHUTTING_DOWN,
            SessionPhase.DONE,
        ):
            transition(state, phase)
            assert state.phase == phase
        assert state.interrupted is False

    def test_interrupted_sets_flag(self):
        state = SessionState(game_id="apex", phase=SessionPhase.MONITORING)
        transition(state, SessionPhase.INTERRUPTED)
        assert state.interrupted is True

    def test_invalid_transition_raises(self):
        state = SessionState(game_id="apex", session_id="s1", phase=SessionPhase.DONE)

        with pytest.raises(InvalidPhaseTransitionError) as exc:
            transition(state, SessionPhase.SHUTTING_DOWN)

        assert exc.value.current == SessionPhase.DONE
        assert exc.value.target == SessionPhase.SHUTTING_DOWN
        assert "for session s1" in str(exc.value)
        assert state.phase == SessionPhase.DONE

    def test_transition_is_logged(self):
        state = SessionState(game_id="apex", session_id="s1")

        with capture_logs() as logs:
            transition(state, SessionPhase.SETUP)

        assert logs == [
            {
                "event": "session_transition",
                "log_level": "info",
                "session_id": "s1",
                "from_phase": "idle",
                "to_phase": "setup",
            }
        ]
