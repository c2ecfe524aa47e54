"""Platform launcher abstraction.

Resolves a game profile into a concrete launch command for its platform and
issues it. Store platforms receive the game's store identifier through their
own launcher executable or URI scheme, the ``direct`` platform runs the game
executable itself, and the ``none`` platform assumes the game is already
running.

Example usage:
    >>> launcher = get_launcher(game.platform, ctx)
    >>> command = launcher.resolve(game)
    >>> await launcher.launch(game)
"""

from __future__ import annotations

import shutil
import sys
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, Field, model_validator

from gamedeck.config import LauncherConfig
from gamedeck.context import SessionContext
from gamedeck.errors import IntegrationError, LaunchError
from gamedeck.logging import get_logger
from gamedeck.models import GameProfile, Platform
from gamedeck.patterns import ProcessPattern
from gamedeck.process import expand_path_tokens, resolve_executable_path

logger = get_logger(__name__)


class LaunchKind(str, Enum):
    """How a launch command is issued."""

    EXECUTABLE = "executable"
    URI = "uri"
    NONE = "none"


class LaunchCommand(BaseModel):
    """A resolved, platform-specific launch command.

    Attributes:
        platform: Platform the command targets
        kind: Whether to run an executable, open a URI, or do nothing
        argv: Executable and arguments (EXECUTABLE only)
        uri: URI to open (URI only)
    """

    platform: Platform
    kind: LaunchKind
    argv: list[str] = Field(default_factory=list)
    uri: str | None = Field(default=None)

    @model_validator(mode="after")
    def check_target(self) -> LaunchCommand:
        if self.kind == LaunchKind.EXECUTABLE and not self.argv:
            raise ValueError("executable launch command requires argv")
        if self.kind == LaunchKind.URI and not self.uri:
            raise ValueError("uri launch command requires a uri")
        return self


    def describe(self) -> str:
        if self.kind == LaunchKind.EXECUTABLE:
            return " ".join(self.argv)
        if self.kind == LaunchKind.URI:
            return str(self.uri)
        return "(already running)"


# Well-known install locations, checked after explicit configuration
_WELL_KNOWN_PATHS: dict[Platform, list[str]] = {
    Platform.STEAM: [
        "%ProgramFiles(x86)%/Steam/steam.exe",
        "%ProgramFiles%/Steam/steam.exe",
    ],
    Platform.RIOT: [
        "%SystemDrive%/Riot Games/Riot Client/RiotClientServices.exe",
        "C:/Riot Games/Riot Client/RiotClientServices.exe",
    ],
    Platform.EPIC: [
        "%ProgramFiles(x86)%/Epic Games/Launcher/Portal/Binaries/Win64/EpicGamesLauncher.exe",
    ],
    Platform.UBISOFT: [
        "%ProgramFiles(x86)%/Ubisoft/Ubisoft Game Launcher/upc.exe",
    ],
    Platform.EA: [
        "%ProgramFiles%/Electronic Arts/EA Desktop/EA Desktop/EADesktop.exe",
    ],
}

_PATH_COMMANDS: dict[Platform, str] = {
    Platform.STEAM: "steam",
}


def _steam_from_registry() -> Path | None:
    if sys.platform != "win32":
        return None
    import winreg

    try:
        with winreg.OpenKey(winreg.HKEY_CURRENT_USER, r"Software\Valve\Steam") as key:
            value, _ = winreg.QueryValueEx(key, "SteamExe")
    except OSError:
        return None
    return Path(value)


def detect_installed_launchers(config: LauncherConfig | None = None) -> dict[Platform, Path]:
    """Best-effort detection of installed store launchers.

    Checks explicit configuration, the Windows registry (Steam), well-known
    install paths, and ``PATH``. Never raises.

    Args:
        config: Launcher configuration with optional explicit paths

    Returns:
        Mapping of platform to launcher executable for every launcher found
    """
    found: dict[Platform, Path] = {}
    explicit: dict[Platform, Path | None] = {}
    if config is not None:
        explicit = {Platform.STEAM: config.steam_path, Platform.RIOT: config.riot_client_path}

    for platform in (Platform.STEAM, Platform.RIOT, Platform.EPIC, Platform.UBISOFT, Platform.EA):
        candidates: list[Path] = []
        if explicit.get(platform) is not None:
            candidates.append(Path(expand_path_tokens(str(explicit[platform]))))
        if platform == Platform.STEAM:
            registry_path = _steam_from_registry()
            if registry_path is not None:
                candidates.append(registry_path)
        candidates.extend(Path(expand_path_tokens(p)) for p in _WELL_KNOWN_PATHS.get(platform, []))
        command = _PATH_COMMANDS.get(platform)
        if command:
            which = shutil.which(command)
            if which:
                candidates.append(Path(which))

        for candidate in candidates:
            try:
                if candidate.is_file():
                    found[platform] = candidate
                    break
            except OSError:
                continue

    logger.debug("launchers_detected", launchers={p.value: str(v) for p, v in found.items()})
    return found


class PlatformLauncher(ABC):
    """Base class for platform launchers.

    Attributes:
        ctx: Session context
    """

    platform: ClassVar[Platform]

    def __init__(self, ctx: SessionContext) -> None:
        self.ctx = ctx
        self._logger = logger.bind(component=type(self).__name__)

    @abstractmethod
    def resolve(self, profile: GameProfile) -> LaunchCommand:
        """Build the launch command for ``profile``.

        Raises:
            LaunchError: If the command cannot be resolved
        """

    def process_pattern(self, profile: GameProfile) -> ProcessPattern:
        """Process-name pattern to monitor after launch."""
        return ProcessPattern.parse(profile.process_name)

    async def launch(self, profile: GameProfile) -> None:
        """Resolve and issue the launch command.

        Raises:
            LaunchError: If the command cannot be resolved or issued
        """
        command = self.resolve(profile)
        self._logger.info(
            "game_launching",
            game_id=profile.id,
            platform=self.platform.value,
            command=command.describe(),
        )
        try:
            if command.kind == LaunchKind.EXECUTABLE:
                await self.ctx.supervisor.start(Path(command.argv[0]), command.argv[1:])
            elif command.kind == LaunchKind.URI and command.uri is not None:
                await self.ctx.supervisor.open_uri(command.uri)
        except (IntegrationError, OSError) as e:
            raise LaunchError(
                f"{self.platform.value} launch of {profile.id} failed: {e}",
                platform=self.platform.value,
            ) from e

    def _executable(self, argv: list[str]) -> LaunchCommand:
        return LaunchCommand(platform=self.platform, kind=LaunchKind.EXECUTABLE, argv=argv)

    def _uri(self, uri: str) -> LaunchCommand:
        return LaunchCommand(platform=self.platform, kind=LaunchKind.URI, uri=uri)

    def _detected(self) -> Path | None:
        return detect_installed_launchers(self.ctx.config.launchers).get(self.platform)


class SteamLauncher(PlatformLauncher):
    """Launches through ``steam.exe -applaunch``, or the steam:// URI when Steam is not found."""

    platform = Platform.STEAM

    def resolve(self, profile: GameProfile) -> LaunchCommand:
        steam = self._detected()
        if steam is not None:
            return self._executable([str(steam), "-applaunch", profile.platform_id])
        return self._uri(f"steam://rungameid/{profile.platform_id}")


class EpicLauncher(PlatformLauncher):
    platform = Platform.EPIC

    def resolve(self, profile: GameProfile) -> LaunchCommand:
        return self._uri(
            f"com.epicgames.launcher://apps/{profile.platform_id}?action=launch&silent=true"
        )


class RiotLauncher(PlatformLauncher):
    """Launches through the Riot Client, which has no URI scheme."""

    platform = Platform.RIOT

    def resolve(self, profile: GameProfile) -> LaunchCommand:
        client = self._detected()
        if client is None:
            raise LaunchError(
                "Riot Client not found; set launchers.riot_client_path",
                platform=self.platform.value,
            )
        patchline = self.ctx.config.launchers.riot_patchline
        return self._executable(
            [
                str(client),
                f"--launch-product={profile.platform_id}",
                f"--launch-patchline={patchline}",
            ]
        )


class UbisoftLauncher(PlatformLauncher):
    platform = Platform.UBISOFT

    def resolve(self, profile: GameProfile) -> LaunchCommand:
        return self._uri(f"uplay://launch/{profile.platform_id}/0")


class EaLauncher(PlatformLauncher):
    platform = Platform.EA

    def resolve(self, profile: GameProfile) -> LaunchCommand:
        return self._uri(f"origin2://game/launch?offerIds={profile.platform_id}")


class DirectLauncher(PlatformLauncher):
    """Runs the game executable directly."""

    platform = Platform.DIRECT

    def resolve(self, profile: GameProfile) -> LaunchCommand:
        try:
            path = resolve_executable_path(profile.path)
        except IntegrationError as e:
            raise LaunchError(str(e), platform=self.platform.value) from e
        return self._executable([str(path), *profile.arguments])


class NullLauncher(PlatformLauncher):
    """For games started by other means; the process is assumed to be running."""

    platform = Platform.NONE

    def resolve(self, profile: GameProfile) -> LaunchCommand:
        return LaunchCommand(platform=self.platform, kind=LaunchKind.NONE)


LAUNCHERS: dict[Platform, type[PlatformLauncher]] = {
    Platform.STEAM: SteamLauncher,
    Platform.EPIC: EpicLauncher,
    Platform.RIOT: RiotLauncher,
    Platform.UBISOFT: UbisoftLauncher,
    Platform.EA: EaLauncher,
    Platform.DIRECT: DirectLauncher,
    Platform.NONE: NullLauncher,
}


def get_launcher(platform: Platform, ctx: SessionContext) -> PlatformLauncher:
    """Instantiate the launcher for ``platform``.

    Raises:
        LaunchError: If no launcher supports the platform
    """
    launcher_cls = LAUNCHERS.get(platform)
    if launcher_cls is None:
        raise LaunchError(f"Unsupported platform: {platform}", platform=str(platform))
    return launcher_cls(ctx)
