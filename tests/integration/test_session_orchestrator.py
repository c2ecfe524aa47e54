"""Integration tests for full game sessions.

Each test drives ``SessionOrchestrator.run_session`` end to end against the
in-memory process table and recorder socket, then checks which applications
were touched at shutdown and that cleanup ran exactly once.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
import structlog
from structlog.testing import capture_logs

from gamedeck.apps import ManagedApplicationController, build_default_registry
from gamedeck.errors import LaunchError
from gamedeck.launchers import NullLauncher
from gamedeck.models import ExitCode, GameProfile, SessionPhase
from gamedeck.orchestrator import CancellationToken, SessionOrchestrator
from tests.fakes import FakeSupervisor, make_executable

pytestmark = pytest.mark.integration


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def apps(bin_dir: Path) -> dict[str, dict]:
    """Two process-managed applications and one hotkey toggle."""
    return {
        "discord": {
            "path": make_executable(bin_dir, "Discord.exe"),
            "process_name": "discord",
            "startup_action": "start-process",
            "shutdown_action": "stop-process",
        },
        "voice": {
            "path": make_executable(bin_dir, "Voice.exe"),
            "process_name": "voice",
            "startup_action": "start-process",
            "shutdown_action": "stop-process",
        },
        "ahk": {
            "path": make_executable(bin_dir, "Ditto.exe"),
            "startup_action": "toggle-hotkeys",
            "shutdown_action": "toggle-hotkeys",
        },
    }


@pytest.fixture
def game_config(bin_dir: Path) -> dict:
    return {
        "name": "Test Game",
        "platform": "direct",
        "path": make_executable(bin_dir, "game.exe"),
        "process_name": "game",
        "managed_apps": ["discord", "voice", "ahk"],
    }


@pytest.fixture
def session(make_config, make_context, apps, game_config, token):
    """Build an orchestrator and the game profile it should run."""

    def _make(**game_overrides) -> tuple[SessionOrchestrator, GameProfile]:
        config = make_config(apps=apps, games={"test": {**game_config, **game_overrides}})
        orchestrator = SessionOrchestrator(
            make_context(config), build_default_registry(), token=token
        )
        return orchestrator, config.get_game("test")

    return _make


def _names(supervisor: FakeSupervisor) -> list[str]:
    return [path.name for path, _ in supervisor.started]


# ============================================================================
# Normal sessions
# ============================================================================


@pytest.mark.asyncio
async def test_game_exits_normally(session, supervisor: FakeSupervisor) -> None:
    supervisor.game_lifetime = 3
    orchestrator, game = session()

    exit_code = await orchestrator.run_session(game)

    assert exit_code == ExitCode.OK
    assert _names(supervisor)[:4] == ["Discord.exe", "Voice.exe", "Ditto.exe", "game.exe"]
    # Shutdown runs in reverse declared order, toggles included
    assert list(orchestrator.shutdown_results) == ["ahk", "voice", "discord"]
    assert supervisor.stopped == ["Voice.exe", "Discord.exe"]
    assert orchestrator.shutdown_passes == 1
    assert orchestrator.state is not None
    assert orchestrator.state.phase == SessionPhase.DONE
    assert orchestrator.state.exit_code == ExitCode.OK
    assert orchestrator.state.interrupted is False


@pytest.mark.asyncio
async def test_already_running_application_is_left_alone(session, supervisor) -> None:
    supervisor.add_process("Discord.exe")
    supervisor.game_lifetime = 2
    orchestrator, game = session()

    await orchestrator.run_session(game)

    assert orchestrator.setup_results["discord"].already_in_desired_state
    assert "Discord.exe" not in supervisor.stopped
    assert supervisor.stopped == ["Voice.exe"]
    assert orchestrator.state.mutated_applications == ["voice", "ahk"]


@pytest.mark.asyncio
async def test_game_process_never_appears(make_config, make_context, token) -> None:
    config = make_config(games={"ghost": {"process_name": "ghost", "platform": "none"}})
    orchestrator = SessionOrchestrator(make_context(config), build_default_registry(), token=token)

    with capture_logs() as logs:
        exit_code = await orchestrator.run_session(config.get_game("ghost"))

    assert exit_code == ExitCode.OK
    warning = next(e for e in logs if e["event"] == "game_process_not_found")
    assert warning["log_level"] == "warning"
    assert warning["pattern"] == "ghost"
    assert orchestrator.shutdown_passes == 1
    assert orchestrator.state.phase == SessionPhase.DONE


@pytest.mark.asyncio
async def test_already_running_game_is_monitored(make_config, make_context, supervisor, token):
    supervisor.add_process("r5apex_dx12.exe", checks_until_exit=2)
    config = make_config(games={"apex": {"process_name": "r5apex|r5apex_dx12", "platform": "none"}})
    orchestrator = SessionOrchestrator(make_context(config), build_default_registry(), token=token)

    with capture_logs() as logs:
        exit_code = await orchestrator.run_session(config.get_game("apex"))

    assert exit_code == ExitCode.OK
    events = [e["event"] for e in logs]
    assert "game_process_found" in events
    assert "game_process_exited" in events
    assert supervisor.started == []


@pytest.mark.asyncio
async def test_refused_wait_falls_back_to_polling(session, supervisor: FakeSupervisor) -> None:
    supervisor.refuse_wait = True
    supervisor.game_lifetime = 3
    orchestrator, game = session()

    with capture_logs() as logs:
        exit_code = await orchestrator.run_session(game)

    assert exit_code == ExitCode.OK
    refused = next(e for e in logs if e["event"] == "native_wait_refused")
    assert refused["fallback"] == "polling"
    exited = next(e for e in logs if e["event"] == "game_process_exited")
    assert exited["detected_by"] == "polling"


@pytest.mark.asyncio
async def test_session_context_is_cleared_afterwards(session, supervisor) -> None:
    supervisor.game_lifetime = 1
    orchestrator, game = session()

    await orchestrator.run_session(game)

    assert "session_id" not in structlog.contextvars.get_contextvars()


# ============================================================================
# Interrupts
# ============================================================================


@pytest.mark.asyncio
async def test_interrupt_while_monitoring(session, supervisor: FakeSupervisor, token) -> None:
    supervisor.add_process("Discord.exe")

    def interrupt_when_checked(handle) -> None:
        if handle.name == "game.exe":
            token.cancel("SIGINT")

    supervisor.on_check = interrupt_when_checked
    orchestrator, game = session()

    exit_code = await orchestrator.run_session(game)

    assert exit_code == ExitCode.OK
    assert orchestrator.state.interrupted is True
    assert orchestrator.shutdown_passes == 1
    # Only applications this session mutated are stopped
    assert supervisor.stopped == ["Voice.exe"]
    assert list(orchestrator.shutdown_results) == ["ahk", "voice"]


@pytest.mark.asyncio
async def test_interrupt_during_polling_fallback(session, supervisor, token) -> None:
    supervisor.refuse_wait = True
    supervisor.on_check = lambda handle: token.cancel("SIGTERM")
    orchestrator, game = session()

    exit_code = await orchestrator.run_session(game)

    assert exit_code == ExitCode.OK
    assert orchestrator.state.interrupted is True
    assert orchestrator.state.phase == SessionPhase.DONE


@pytest.mark.asyncio
async def test_interrupt_during_setup_skips_remaining_apps(session, supervisor, token) -> None:
    original_start = supervisor.start

    async def start_then_interrupt(path, args=(), cwd=None):
        handle = await original_start(path, args, cwd)
        token.cancel("SIGINT")
        return handle

    supervisor.start = start_then_interrupt  # type: ignore[method-assign]
    orchestrator, game = session()

    exit_code = await orchestrator.run_session(game)

    assert exit_code == ExitCode.OK
    assert list(orchestrator.setup_results) == ["discord"]
    # Voice and the hotkey toggle never ran, so shutdown leaves them alone
    assert _names(supervisor) == ["Discord.exe"]
    assert list(orchestrator.shutdown_results) == ["discord"]
    assert supervisor.stopped == ["Discord.exe"]
    assert orchestrator.state.interrupted is True


@pytest.mark.asyncio
async def test_interrupt_before_session_starts(session, supervisor, token) -> None:
    token.cancel("SIGINT")
    orchestrator, game = session()

    exit_code = await orchestrator.run_session(game)

    assert exit_code == ExitCode.OK
    assert "game.exe" not in _names(supervisor)
    assert orchestrator.setup_results == {}
    assert orchestrator.shutdown_results == {}
    assert supervisor.started == []
    assert orchestrator.state.phase == SessionPhase.DONE


# ============================================================================
# Failures still shut down exactly once
# ============================================================================


@pytest.mark.asyncio
async def test_launch_failure(session, supervisor: FakeSupervisor) -> None:
    class BrokenLauncher(NullLauncher):
        async def launch(self, profile):
            raise LaunchError("store refused", platform="direct")

    orchestrator, game = session()
    orchestrator._launcher_factory = lambda platform, ctx: BrokenLauncher(ctx)

    with capture_logs() as logs:
        exit_code = await orchestrator.run_session(game)

    assert exit_code == ExitCode.LAUNCH_FAILED
    assert any(e["event"] == "launch_failed" for e in logs)
    assert orchestrator.shutdown_passes == 1
    assert supervisor.stopped == ["Voice.exe", "Discord.exe"]
    assert orchestrator.state.phase == SessionPhase.DONE


@pytest.mark.asyncio
async def test_missing_game_executable_is_launch_failure(session, supervisor, tmp_path) -> None:
    orchestrator, game = session(path=str(tmp_path / "missing" / "game.exe"))

    exit_code = await orchestrator.run_session(game)

    assert exit_code == ExitCode.LAUNCH_FAILED
    assert "game.exe" not in _names(supervisor)
    assert orchestrator.shutdown_passes == 1


@pytest.mark.asyncio
async def test_unknown_app_reference_is_configuration_error(make_config, make_context, token):
    config = make_config(games={"g": {"process_name": "g", "managed_apps": ["ghost"]}})
    orchestrator = SessionOrchestrator(make_context(config), build_default_registry(), token=token)

    exit_code = await orchestrator.run_session(config.get_game("g"))

    assert exit_code == ExitCode.CONFIGURATION_ERROR
    assert orchestrator.shutdown_passes == 1
    assert orchestrator.state.phase == SessionPhase.DONE


@pytest.mark.asyncio
async def test_unexpected_error_in_setup(session, supervisor) -> None:
    orchestrator, game = session()

    with patch.object(
        ManagedApplicationController, "startup", side_effect=RuntimeError("kaboom")
    ), capture_logs() as logs:
        exit_code = await orchestrator.run_session(game)

    assert exit_code == ExitCode.UNEXPECTED_ERROR
    failure = next(e for e in logs if e["event"] == "session_failed")
    assert failure["error_type"] == "RuntimeError"
    assert orchestrator.shutdown_passes == 1
    # Nothing was mutated, so the hotkeys are not flipped
    assert orchestrator.shutdown_results == {}
    assert supervisor.started == []


@pytest.mark.asyncio
async def test_unexpected_error_while_monitoring(session, supervisor: FakeSupervisor) -> None:
    async def broken_find(pattern):
        raise RuntimeError("process table unavailable")

    orchestrator, game = session()
    supervisor.find_processes = broken_find  # type: ignore[method-assign]

    exit_code = await orchestrator.run_session(game)

    assert exit_code == ExitCode.UNEXPECTED_ERROR
    assert orchestrator.shutdown_passes == 1
    assert orchestrator.state.phase == SessionPhase.DONE


@pytest.mark.asyncio
async def test_orchestrator_can_run_consecutive_sessions(session, supervisor) -> None:
    supervisor.game_lifetime = 1
    orchestrator, game = session()

    await orchestrator.run_session(game)
    first = orchestrator.state
    await orchestrator.run_session(game)

    assert orchestrator.state is not first
    assert orchestrator.shutdown_passes == 1
    assert orchestrator.state.phase == SessionPhase.DONE
