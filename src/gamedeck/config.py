"""Configuration management for gamedeck.

This module defines the configuration schema using Pydantic settings,
supporting TOML files, environment variables, and programmatic overrides.
Game and managed application profiles live in the same TOML file.

Configuration loading priority (highest to lowest):
1. Programmatic overrides (passed to GamedeckConfig constructor)
2. Environment variables (GAMEDECK_* prefix)
3. TOML configuration file
4. Default values defined in this module

Example TOML configuration:
    [session]
    process_start_grace_seconds = 120

    [apps.obs]
    path = "%ProgramFiles%/obs-studio/bin/64bit/obs64.exe"
    process_name = "obs64"
    startup_action = "start-replay-buffer"
    shutdown_action = "stop-process"

    [games.apex]
    name = "Apex Legends"
    platform = "steam"
    platform_id = "1172470"
    process_name = "r5apex*"
    managed_apps = ["obs"]

Example environment variable override:
    GAMEDECK_SESSION__POLL_INTERVAL_SECONDS=3
    GAMEDECK_LOGGING__FORMAT=console
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

import tomli
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gamedeck.errors import ConfigurationError
from gamedeck.models import GameProfile, ManagedApplicationProfile


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json or console)
        file: Optional log file path (None for stdout only)
        rotation_size_mb: Log file rotation size in megabytes
        retention_count: Number of rotated log files to keep
    """

    model_config = SettingsConfigDict(
        env_prefix="GAMEDECK_LOGGING__",
        extra="forbid",
    )

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file: Path | None = Field(default=None)
    rotation_size_mb: int = Field(default=10, ge=1, le=1000)
    retention_count: int = Field(default=5, ge=1, le=100)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is recognized."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format is recognized."""
        valid_formats = {"json", "console"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of {valid_formats}")
        return v_lower


def _default_runtime_dir() -> Path:
    return Path(tempfile.gettempdir()) / "gamedeck"


class SessionConfig(BaseSettings):
    """Session timing configuration.

    Attributes:
        process_start_grace_seconds: How long to wait for the game process to appear
        poll_interval_seconds: Interval between process polls
        native_wait_slice_seconds: Slice length of a native wait before the
            interrupt token is re-checked
        handshake_timeout_seconds: Remote-control handshake timeout
        request_timeout_seconds: Remote-control per-request timeout
        background_job_timeout_seconds: Lifetime bound of a background job
        runtime_dir: Directory holding cross-session application leases
    """

    model_config = SettingsConfigDict(
        env_prefix="GAMEDECK_SESSION__",
        extra="forbid",
    )

    process_start_grace_seconds: float = Field(default=300.0, ge=0.0, le=3600.0)
    poll_interval_seconds: float = Field(default=5.0, ge=0.01, le=10.0)
    native_wait_slice_seconds: float = Field(default=1.0, ge=0.01, le=60.0)
    handshake_timeout_seconds: float = Field(default=5.0, gt=0.0, le=60.0)
    request_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)
    background_job_timeout_seconds: float = Field(default=60.0, gt=0.0, le=900.0)
    runtime_dir: Path = Field(default_factory=_default_runtime_dir)


class LauncherConfig(BaseSettings):
    """Explicit launcher executable paths.

    Any path left unset is filled in by best-effort detection at launch time.

    Attributes:
        steam_path: Path to steam.exe
        riot_client_path: Path to RiotClientServices.exe
        riot_patchline: Patchline passed to the Riot Client
    """

    model_config = SettingsConfigDict(
        env_prefix="GAMEDECK_LAUNCHERS__",
        extra="forbid",
    )

    steam_path: Path | None = Field(default=None)
    riot_client_path: Path | None = Field(default=None)
    riot_patchline: str = Field(default="live")


class GamedeckConfig(BaseSettings):
    """Root configuration for gamedeck.

    Aggregates all subsystem configurations together with the game and
    managed application profiles. Profile ids are taken from their TOML
    table keys.

    Environment variable format for nested config:
        GAMEDECK_<SECTION>__<KEY>=value
    """

    model_config = SettingsConfigDict(
        env_prefix="GAMEDECK_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    launchers: LauncherConfig = Field(default_factory=LauncherConfig)
    apps: dict[str, ManagedApplicationProfile] = Field(default_factory=dict)
    games: dict[str, GameProfile] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def inject_profile_ids(cls, data: Any) -> Any:
        """Fill each profile's ``id`` from its table key."""
        if not isinstance(data, dict):
            return data
        for section in ("apps", "games"):
            profiles = data.get(section)
            if not isinstance(profiles, dict):
                continue
            data[section] = {
                key: ({"id": key, **value} if isinstance(value, dict) else value)
                for key, value in profiles.items()
            }
        return data

    def get_game(self, game_id: str) -> GameProfile:
        """Look up a game profile.

        Raises:
            ConfigurationError: If the game is not configured
        """
        try:
            return self.games[game_id]
        except KeyError:
            known = ", ".join(sorted(self.games)) or "none"
            raise ConfigurationError(
                f"Unknown game (configured: {known})", subject=game_id
            ) from None

    def apps_for(self, game: GameProfile) -> list[ManagedApplicationProfile]:
        """Resolve a game's managed application references in declared order.

        Raises:
            ConfigurationError: If a reference names an unknown application
        """
        resolved: list[ManagedApplicationProfile] = []
        for app_id in game.managed_apps:
            app = self.apps.get(app_id)
            if app is None:
                raise ConfigurationError(
                    f"References unknown managed application {app_id!r}", subject=game.id
                )
            resolved.append(app)
        return resolved


def load_config(config_path: Path | None = None) -> GamedeckConfig:
    """Load configuration from TOML file with environment variable overrides.

    Configuration search order (first found is used):
    1. config_path if explicitly provided
    2. ./gamedeck.toml (current directory)
    3. ~/.config/gamedeck/config.toml (user config directory)

    Args:
        config_path: Explicit path to TOML config file. If None, searches
                    default locations.

    Returns:
        GamedeckConfig: Fully resolved configuration instance.

    Raises:
        ConfigurationError: If config_path doesn't exist or the file contains
            invalid TOML or invalid configuration.
    """
    toml_data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        selected_path: Path | None = config_path
    else:
        search_paths = [
            Path.cwd() / "gamedeck.toml",
            Path(os.path.expanduser("~")) / ".config" / "gamedeck" / "config.toml",
        ]
        selected_path = None
        for path in search_paths:
            if path.exists():
                selected_path = path
                break

    if selected_path is not None:
        try:
            with open(selected_path, "rb") as f:
                toml_data = tomli.load(f)
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {selected_path}: {e}") from e

    try:
        return GamedeckConfig(**toml_data)
    except Exception as e:
        if selected_path:
            raise ConfigurationError(
                f"Invalid configuration in {selected_path}: {e}"
            ) from e
        raise ConfigurationError(f"Invalid configuration: {e}") from e
