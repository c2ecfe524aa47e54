"""Built-in handlers for the closed verb set.

Each handler receives an ``ActionRequest`` and returns an ``ActionResult``.
Handlers raise ``IntegrationError`` freely; the controller converts any
exception into a failed result.
"""

from __future__ import annotations

from typing import Any

from gamedeck.apps.registry import ActionHandlerRegistry, ActionRequest
from gamedeck.errors import IntegrationError, RemoteRequestFailed
from gamedeck.logging import get_logger
from gamedeck.models import ActionResult, ActionVerb, ObsSettings
from gamedeck.patterns import ProcessPattern
from gamedeck.process import resolve_executable_path
from gamedeck.remote.protocol import RemoteControlConnection

logger = get_logger(__name__)

# Remote request types and status codes understood by the recorder
GET_REPLAY_BUFFER_STATUS = "GetReplayBufferStatus"
START_REPLAY_BUFFER = "StartReplayBuffer"
STOP_REPLAY_BUFFER = "StopReplayBuffer"
STATUS_OUTPUT_RUNNING = 500
STATUS_OUTPUT_NOT_RUNNING = 501

WALLPAPER_CONTROL_FLAG = "-control"


def _require_pattern(request: ActionRequest) -> ProcessPattern:
    if request.pattern is None:
        raise IntegrationError(f"{request.app.id} has no process_name to match")
    return request.pattern


async def _is_running(request: ActionRequest) -> bool:
    procs = await request.ctx.supervisor.find_processes(_require_pattern(request))
    return bool(procs)


async def do_nothing(request: ActionRequest) -> ActionResult:
    return ActionResult.unchanged("no action configured")


async def start_process(request: ActionRequest) -> ActionResult:
    """Start the application unless a matching process is already running."""
    if await _is_running(request):
        return ActionResult.unchanged("already running")

    path = resolve_executable_path(request.app.path)
    await request.ctx.supervisor.start(path, request.app.arguments)
    return ActionResult.ok(f"started {path.name}")


async def stop_process(request: ActionRequest) -> ActionResult:
    """Terminate every process matching the application's pattern."""
    supervisor = request.ctx.supervisor
    procs = await supervisor.find_processes(_require_pattern(request))
    if not procs:
        return ActionResult.unchanged("not running")

    stopped = 0
    for proc in procs:
        if await supervisor.stop(proc, timeout=request.app.termination_timeout_seconds):
            stopped += 1

    if stopped < len(procs):
        return ActionResult.failed(f"stopped {stopped} of {len(procs)} processes")
    return ActionResult.ok(f"stopped {stopped} processes")


async def toggle_hotkeys(request: ActionRequest) -> ActionResult:
    """Flip a hotkey tool's global hotkeys by running it with its toggle arguments."""
    path = resolve_executable_path(request.app.path)
    await request.ctx.supervisor.start(path, request.app.toggle_arguments)
    return ActionResult.ok("hotkeys toggled")


async def _wallpaper_control(request: ActionRequest, command: str) -> ActionResult:
    path = resolve_executable_path(request.app.path)
    await request.ctx.supervisor.start(path, [WALLPAPER_CONTROL_FLAG, command])
    return ActionResult.ok(f"wallpaper {command}")


async def pause_wallpaper(request: ActionRequest) -> ActionResult:
    return await _wallpaper_control(request, "pause")


async def play_wallpaper(request: ActionRequest) -> ActionResult:
    return await _wallpaper_control(request, "play")


async def _start_buffer(connection: RemoteControlConnection) -> Any:
    try:
        return await connection.request(START_REPLAY_BUFFER)
    except RemoteRequestFailed as e:
        if e.code == STATUS_OUTPUT_RUNNING:
            logger.info("replay_buffer_already_active", url=connection.url)
            return {}
        raise


async def start_replay_buffer(request: ActionRequest) -> ActionResult:
    """Ensure the recorder runs with its replay buffer active.

    When this session has to start the recorder, its control socket is not
    ready yet, so the buffer is started by a background job after the
    configured delay. A recorder that is already running belongs to the user:
    its buffer is started inline if needed, and the application is reported
    as already in the desired state so shutdown leaves it alone.
    """
    ctx = request.ctx
    settings = request.app.obs or ObsSettings()

    if await _is_running(request):
        async with ctx.remote_connection(settings) as connection:
            status = await connection.request(GET_REPLAY_BUFFER_STATUS)
            if status.get("outputActive"):
                return ActionResult.unchanged("already running, replay buffer active")
            await _start_buffer(connection)
        return ActionResult.unchanged("already running, replay buffer started")

    path = resolve_executable_path(request.app.path)
    await ctx.supervisor.start(path, request.app.arguments)
    ctx.jobs.submit_remote(
        f"{request.app.id}:{ActionVerb.START_REPLAY_BUFFER.value}",
        lambda: ctx.remote_connection(settings),
        _start_buffer,
        delay_seconds=settings.startup_delay_seconds,
    )
    return ActionResult.ok(f"started {path.name}, replay buffer scheduled")


async def stop_replay_buffer(request: ActionRequest) -> ActionResult:
    """Stop the recorder's replay buffer if the recorder is running."""
    if not await _is_running(request):
        return ActionResult.unchanged("recorder not running")

    settings = request.app.obs or ObsSettings()
    async with request.ctx.remote_connection(settings) as connection:
        try:
            await connection.request(STOP_REPLAY_BUFFER)
        except RemoteRequestFailed as e:
            if e.code == STATUS_OUTPUT_NOT_RUNNING:
                return ActionResult.unchanged("replay buffer not active")
            raise
    return ActionResult.ok("replay buffer stopped")


def build_default_registry() -> ActionHandlerRegistry:
    """Create a registry covering the full verb set."""
    registry = ActionHandlerRegistry()
    registry.register(ActionVerb.NONE, do_nothing)
    registry.register(ActionVerb.START_PROCESS, start_process)
    registry.register(ActionVerb.STOP_PROCESS, stop_process)
    registry.register(ActionVerb.TOGGLE_HOTKEYS, toggle_hotkeys)
    registry.register(ActionVerb.PAUSE_WALLPAPER, pause_wallpaper)
    registry.register(ActionVerb.PLAY_WALLPAPER, play_wallpaper)
    registry.register(ActionVerb.START_REPLAY_BUFFER, start_replay_buffer)
    registry.register(ActionVerb.STOP_REPLAY_BUFFER, stop_replay_buffer)
    return registry
