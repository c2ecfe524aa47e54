"""Session phase state machine.

Enforces the session lifecycle:

    IDLE → SETUP → LAUNCHING → MONITORING → SHUTTING_DOWN → DONE

``INTERRUPTED`` is reachable from SETUP, LAUNCHING and MONITORING and always
leads to SHUTTING_DOWN. Every non-terminal phase may also go straight to
SHUTTING_DOWN, so a failure anywhere still reaches cleanup.
"""

from __future__ import annotations

import structlog

from gamedeck.models import SessionPhase, SessionState

logger = structlog.get_logger(__name__)


class InvalidPhaseTransitionError(Exception):
    """Raised when an invalid phase transition is attempted.

    Attributes:
        current: The current phase.
        target: The attempted target phase.
        session_id: The session that failed to transition.
    """

    def __init__(
        self, current: SessionPhase, target: SessionPhase, session_id: str | None = None
    ):
        self.current = current
        self.target = target
        self.session_id = session_id
        msg = f"Invalid transition from {current.value} to {target.value}"
        if session_id:
            msg += f" for session {session_id}"
        super().__init__(msg)


# Authoritative phase machine definition
VALID_TRANSITIONS: dict[SessionPhase, set[SessionPhase]] = {
    SessionPhase.IDLE: {SessionPhase.SETUP, SessionPhase.SHUTTING_DOWN},
    SessionPhase.SETUP: {
        SessionPhase.LAUNCHING,
        SessionPhase.INTERRUPTED,
        SessionPhase.SHUTTING_DOWN,
    },
    SessionPhase.LAUNCHING: {
        SessionPhase.MONITORING,
        SessionPhase.INTERRUPTED,
        SessionPhase.SHUTTING_DOWN,
    },
    SessionPhase.MONITORING: {SessionPhase.INTERRUPTED, SessionPhase.SHUTTING_DOWN},
    SessionPhase.INTERRUPTED: {SessionPhase.SHUTTING_DOWN},
    SessionPhase.SHUTTING_DOWN: {SessionPhase.DONE},
    SessionPhase.DONE: set(),  # Terminal
}


def validate_transition(current: SessionPhase, target: SessionPhase) -> bool:
    """Return True if ``current`` → ``target`` is allowed."""
    return target in VALID_TRANSITIONS.get(current, set())


def transition(state: SessionState, target: SessionPhase) -> None:
    """Move ``state`` to ``target``.

    Args:
        state: Session state to update in place.
        target: Phase to enter.

    Raises:
        InvalidPhaseTransitionError: If the transition is not valid.
    """
    current = state.phase
    if not validate_transition(current, target):
        raise InvalidPhaseTransitionError(current, target, state.session_id)

    state.phase = target
    if target == SessionPhase.INTERRUPTED:
        state.interrupted = True

    logger.info(
        "session_transition",
        session_id=state.session_id,
        from_phase=current.value,
        to_phase=target.value,
    )
