"""Session orchestration: phase machine, interrupt handling, and the session runner."""

from __future__ import annotations

from gamedeck.orchestrator.interrupt import CancellationToken, InterruptHandler, OnceFlag
from gamedeck.orchestrator.session import SessionOrchestrator
from gamedeck.orchestrator.state_machine import (
    VALID_TRANSITIONS,
    InvalidPhaseTransitionError,
    transition,
    validate_transition,
)

__all__ = [
    "VALID_TRANSITIONS",
    "CancellationToken",
    "InterruptHandler",
    "InvalidPhaseTransitionError",
    "OnceFlag",
    "SessionOrchestrator",
    "transition",
    "validate_transition",
]
