"""Core data model for gamedeck sessions.

This module defines the immutable profiles supplied by the config loader,
the closed verb set used by managed applications, action results, and the
mutable per-session state owned by the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, SecretStr

# Bumped whenever a verb is added, removed, or changes meaning.
ACTION_SCHEMA_VERSION = 1


class ActionVerb(str, Enum):
    """Closed set of verbs applicable to a managed application."""

    NONE = "none"
    START_PROCESS = "start-process"
    STOP_PROCESS = "stop-process"
    TOGGLE_HOTKEYS = "toggle-hotkeys"
    PAUSE_WALLPAPER = "pause-wallpaper"
    PLAY_WALLPAPER = "play-wallpaper"
    START_REPLAY_BUFFER = "start-replay-buffer"
    STOP_REPLAY_BUFFER = "stop-replay-buffer"


@dataclass(frozen=True)
class VerbSpec:
    """Static metadata about a verb.

    Attributes:
        mutating: Whether a successful invocation changes application state
        idempotent_toggle: Whether the verb sets an absolute state, so it may run
            at shutdown even when this session did not mutate the application
        requires_path: Whether the application profile must carry an executable path
        requires_remote: Whether the verb drives the remote-control protocol
        requires_pattern: Whether the verb inspects running processes by name
    """

    mutating: bool
    idempotent_toggle: bool = False
    requires_path: bool = False
    requires_remote: bool = False
    requires_pattern: bool = False


VERB_SPECS: dict[ActionVerb, VerbSpec] = {
    ActionVerb.NONE: VerbSpec(mutating=False),
    ActionVerb.START_PROCESS: VerbSpec(mutating=True, requires_path=True, requires_pattern=True),
    ActionVerb.STOP_PROCESS: VerbSpec(mutating=True, requires_pattern=True),
    ActionVerb.TOGGLE_HOTKEYS: VerbSpec(mutating=True, requires_path=True),
    ActionVerb.PAUSE_WALLPAPER: VerbSpec(
        mutating=True, idempotent_toggle=True, requires_path=True
    ),
    ActionVerb.PLAY_WALLPAPER: VerbSpec(
        mutating=True, idempotent_toggle=True, requires_path=True
    ),
    ActionVerb.START_REPLAY_BUFFER: VerbSpec(
        mutating=True, requires_path=True, requires_remote=True, requires_pattern=True
    ),
    ActionVerb.STOP_REPLAY_BUFFER: VerbSpec(
        mutating=True, requires_remote=True, requires_pattern=True
    ),
}


class Platform(str, Enum):
    """Launch platforms a game profile can target."""

    STEAM = "steam"
    EPIC = "epic"
    RIOT = "riot"
    UBISOFT = "ubisoft"
    EA = "ea"
    DIRECT = "direct"
    NONE = "none"


class ObsSettings(BaseModel):
    """Remote-control connection settings for a recorder application.

    Attributes:
        host: Host the control socket listens on
        port: Control socket port
        password: Optional authentication password
        startup_delay_seconds: Delay before a background job first connects
            after this session started the application
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = Field(default="localhost")
    port: int = Field(default=4455, ge=1, le=65535)
    password: SecretStr | None = Field(default=None)
    startup_delay_seconds: float = Field(default=10.0, ge=0.0, le=300.0)

    @property
    def url(self) -> str:
        """WebSocket URL of the control socket."""
        return f"ws://{self.host}:{self.port}"


class ManagedApplicationProfile(BaseModel):
    """An auxiliary application toggled around a game session."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    path: str = Field(default="", description="Executable path, may contain env or glob tokens")
    process_name: str = Field(default="", description="Process-name pattern")
    startup_action: ActionVerb = Field(default=ActionVerb.NONE)
    shutdown_action: ActionVerb = Field(default=ActionVerb.NONE)
    arguments: list[str] = Field(default_factory=list)
    toggle_arguments: list[str] = Field(default_factory=lambda: ["/hs"])
    termination_timeout_seconds: float = Field(default=5.0, ge=0.0, le=120.0)
    obs: ObsSettings | None = Field(default=None)


class GameProfile(BaseModel):
    """A game and the managed applications wrapped around it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    name: str = Field(default="")
    platform: Platform = Field(default=Platform.DIRECT)
    platform_id: str = Field(default="", description="Store-specific identifier")
    process_name: str = Field(min_length=1, description="Process-name pattern to monitor")
    managed_apps: list[str] = Field(default_factory=list)
    path: str = Field(default="", description="Executable path for direct launch")
    arguments: list[str] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.name or self.id


class ActionResult(BaseModel):
    """Outcome of invoking one verb against one application.

    Attributes:
        success: Whether the verb completed
        already_in_desired_state: Whether nothing needed doing
        message: Optional detail for logs
    """

    success: bool
    already_in_desired_state: bool = False
    message: str | None = None

    @classmethod
    def ok(cls, message: str | None = None) -> ActionResult:
        return cls(success=True, message=message)

    @classmethod
    def unchanged(cls, message: str | None = None) -> ActionResult:
        return cls(success=True, already_in_desired_state=True, message=message)

    @classmethod
    def failed(cls, message: str) -> ActionResult:
        return cls(success=False, message=message)


class SessionPhase(str, Enum):
    """Session lifecycle phases.

    Phase transitions:
        IDLE → SETUP → LAUNCHING → MONITORING → SHUTTING_DOWN → DONE
                 ↓         ↓           ↓
                        INTERRUPTED → SHUTTING_DOWN
    """

    IDLE = "idle"
    SETUP = "setup"
    LAUNCHING = "launching"
    MONITORING = "monitoring"
    INTERRUPTED = "interrupted"
    SHUTTING_DOWN = "shutting_down"
    DONE = "done"


class ExitCode(IntEnum):
    """Process exit codes reported by the CLI."""

    OK = 0
    LAUNCH_FAILED = 1
    CONFIGURATION_ERROR = 2
    UNEXPECTED_ERROR = 3


@dataclass
class SessionState:
    """Mutable state of one session.

    Attributes:
        game_id: Identifier of the game being played
        session_id: Unique identifier of this session
        phase: Current lifecycle phase
        started_at: Session start timestamp
        game_process: Handle of the monitored game process, once found
        mutated_applications: Ids of applications this session started or
            stopped, in the order they were mutated
        interrupted: Whether an external interrupt was received
        exit_code: Final exit code, set once the session is done
    """

    game_id: str
    session_id: str = field(default_factory=lambda: uuid4().hex[:12])
    phase: SessionPhase = SessionPhase.IDLE
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    game_process: Any | None = None
    mutated_applications: list[str] = field(default_factory=list)
    interrupted: bool = False
    exit_code: ExitCode | None = None

    def record_mutation(self, app_id: str) -> None:
        """Mark an application as mutated by this session."""
        if app_id not in self.mutated_applications:
            self.mutated_applications.append(app_id)

    def was_mutated(self, app_id: str) -> bool:
        return app_id in self.mutated_applications

    @property
    def duration_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.started_at).total_seconds()
