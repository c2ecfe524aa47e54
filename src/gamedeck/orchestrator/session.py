"""Session orchestrator.

Sequences one gaming session:

    Setup → Launching → Monitoring → ShuttingDown → Done

Setup runs every referenced application's startup verb in declared order and
never aborts on a single failure. Launching is fatal on failure. Monitoring
waits for the game process to appear within a grace period, then blocks until
it exits, preferring the native wait and falling back to polling when the
wait is refused. ShuttingDown runs exactly once per session from a
``finally`` block, whatever ended the session.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import structlog

from gamedeck.apps.controller import ManagedApplicationController
from gamedeck.apps.registry import ActionHandlerRegistry
from gamedeck.context import SessionContext
from gamedeck.errors import ConfigurationError, LaunchError, WaitRefusedError
from gamedeck.launchers import PlatformLauncher, get_launcher
from gamedeck.leases import LeaseRegistry
from gamedeck.logging import bind_session_context, clear_session_context
from gamedeck.models import (
    ActionResult,
    ExitCode,
    GameProfile,
    ManagedApplicationProfile,
    Platform,
    SessionPhase,
    SessionState,
)
from gamedeck.orchestrator.interrupt import CancellationToken, OnceFlag
from gamedeck.orchestrator.state_machine import transition
from gamedeck.patterns import ProcessPattern

logger = structlog.get_logger(__name__)

LauncherFactory = Callable[[Platform, SessionContext], PlatformLauncher]

_INTERRUPTIBLE_PHASES = (SessionPhase.SETUP, SessionPhase.LAUNCHING, SessionPhase.MONITORING)


class SessionOrchestrator:
    """Runs a game session from setup to cleanup.

    Attributes:
        ctx: Session context
        registry: Verb handler registry, already validated against the profiles
        token: Cancellation token observed by every phase
        state: State of the most recent session
        setup_results: Startup outcome per application of the most recent session
        shutdown_results: Shutdown outcome per application of the most recent session
        shutdown_passes: Number of ShuttingDown passes run for the most recent session
    """

    def __init__(
        self,
        ctx: SessionContext,
        registry: ActionHandlerRegistry,
        launcher_factory: LauncherFactory | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self.ctx = ctx
        self.registry = registry
        self.token = token if token is not None else CancellationToken()
        self._launcher_factory = launcher_factory or get_launcher
        self.state: SessionState | None = None
        self.setup_results: dict[str, ActionResult] = {}
        self.shutdown_results: dict[str, ActionResult] = {}
        self.shutdown_passes = 0
        self._shutdown_once = OnceFlag()
        self._logger = logger.bind(component="SessionOrchestrator")

    async def run_session(self, profile: GameProfile) -> ExitCode:
        """Run one complete session for ``profile``.

        Args:
            profile: Game to play

        Returns:
            ``ExitCode.OK`` for any session that reaches Done through normal
            exit, a missing game process, or an interrupt; a non-zero code for
            launch, configuration, or unexpected errors
        """
        state = SessionState(game_id=profile.id)
        self.state = state
        self.setup_results = {}
        self.shutdown_results = {}
        self.shutdown_passes = 0
        self._shutdown_once = OnceFlag()

        leases = LeaseRegistry(self.ctx.config.session.runtime_dir, state.session_id)
        controller = ManagedApplicationController(self.ctx, self.registry, state, leases)
        apps: list[ManagedApplicationProfile] = []

        bind_session_context(state.session_id, profile.id)
        log = self._logger.bind(session_id=state.session_id, game_id=profile.id)
        log.info("session_started", game=profile.display_name, platform=profile.platform.value)

        exit_code = ExitCode.OK
        try:
            apps = self.ctx.config.apps_for(profile)
            await self._setup(state, controller, apps)
            if not self._check_interrupt(state):
                launcher = self._launcher_factory(profile.platform, self.ctx)
                await self._launch(state, launcher, profile)
                await self._monitor(state, launcher, profile)
        except LaunchError as e:
            log.error("launch_failed", error=str(e), platform=e.platform)
            exit_code = ExitCode.LAUNCH_FAILED
        except ConfigurationError as e:
            log.error("session_configuration_error", error=str(e))
            exit_code = ExitCode.CONFIGURATION_ERROR
        except asyncio.CancelledError:
            self.token.cancel(reason="task_cancelled")
            raise
        except Exception as e:
            log.exception("session_failed", error=str(e), error_type=type(e).__name__)
            exit_code = ExitCode.UNEXPECTED_ERROR
        finally:
            try:
                await self._shut_down(state, controller, apps, leases)
            finally:
                clear_session_context()

        state.exit_code = exit_code
        log.info(
            "session_completed",
            exit_code=int(exit_code),
            interrupted=state.interrupted,
            duration_seconds=round(state.duration_seconds, 1),
            mutated_applications=list(state.mutated_applications),
        )
        return exit_code

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _setup(
        self,
        state: SessionState,
        controller: ManagedApplicationController,
        apps: list[ManagedApplicationProfile],
    ) -> None:
        transition(state, SessionPhase.SETUP)
        for app in apps:
            if self._check_interrupt(state):
                return
            self.setup_results[app.id] = await controller.startup(app)

    async def _launch(
        self, state: SessionState, launcher: PlatformLauncher, profile: GameProfile
    ) -> None:
        transition(state, SessionPhase.LAUNCHING)
        await launcher.launch(profile)

    async def _monitor(
        self, state: SessionState, launcher: PlatformLauncher, profile: GameProfile
    ) -> None:
        if self._check_interrupt(state):
            return
        transition(state, SessionPhase.MONITORING)

        pattern = launcher.process_pattern(profile)
        handle = await self._await_process(pattern)
        if handle is None:
            if not self._check_interrupt(state):
                self._logger.warning(
                    "game_process_not_found",
                    pattern=pattern.source,
                    grace_seconds=self.ctx.config.session.process_start_grace_seconds,
                )
            return

        state.game_process = handle
        self._logger.info("game_process_found", pid=getattr(handle, "pid", None))
        await self._await_exit(handle)
        self._check_interrupt(state)

    async def _shut_down(
        self,
        state: SessionState,
        controller: ManagedApplicationController,
        apps: list[ManagedApplicationProfile],
        leases: LeaseRegistry,
    ) -> None:
        if not self._shutdown_once.try_acquire():
            self._logger.debug("shutdown_already_done", session_id=state.session_id)
            return
        self.shutdown_passes += 1

        if self.token.cancelled and state.phase in _INTERRUPTIBLE_PHASES:
            transition(state, SessionPhase.INTERRUPTED)
        transition(state, SessionPhase.SHUTTING_DOWN)

        try:
            await self.ctx.jobs.cancel_all()
            plan = controller.shutdown_plan(apps)
            self._logger.info("shutdown_plan", apps=[a.id for a in plan])
            for app in plan:
                self.shutdown_results[app.id] = await controller.shutdown(app)
        finally:
            leases.release_all()
            transition(state, SessionPhase.DONE)

    # ------------------------------------------------------------------
    # Monitoring helpers
    # ------------------------------------------------------------------

    def _check_interrupt(self, state: SessionState) -> bool:
        """Enter INTERRUPTED if the token was cancelled. Returns True when interrupted."""
        if not self.token.cancelled:
            return False
        if state.phase in _INTERRUPTIBLE_PHASES:
            self._logger.warning(
                "session_interrupted", phase=state.phase.value, reason=self.token.reason
            )
            transition(state, SessionPhase.INTERRUPTED)
        return True

    async def _sleep_or_cancel(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds. Returns True if the token was cancelled meanwhile."""
        if self.token.cancelled:
            return True
        try:
            await asyncio.wait_for(self.token.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _await_process(self, pattern: ProcessPattern) -> Any | None:
        """Poll for the first process matching ``pattern`` within the grace period."""
        session_config = self.ctx.config.session
        loop = asyncio.get_running_loop()
        deadline = loop.time() + session_config.process_start_grace_seconds

        while True:
            procs = await self.ctx.supervisor.find_processes(pattern)
            if procs:
                return procs[0]
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            if await self._sleep_or_cancel(min(session_config.poll_interval_seconds, remaining)):
                return None

    async def _await_exit(self, handle: Any) -> None:
        """Block until ``handle`` exits or the session is interrupted."""
        wait_slice = self.ctx.config.session.native_wait_slice_seconds
        while not self.token.cancelled:
            try:
                exited = await self.ctx.supervisor.wait_for_exit(handle, timeout=wait_slice)
            except WaitRefusedError as e:
                self._logger.warning("native_wait_refused", error=str(e), fallback="polling")
                await self._poll_until_exit(handle)
                return
            if exited:
                self._logger.info("game_process_exited")
                return

    async def _poll_until_exit(self, handle: Any) -> None:
        interval = self.ctx.config.session.poll_interval_seconds
        while not self.token.cancelled:
            if not await self.ctx.supervisor.is_running(handle):
                self._logger.info("game_process_exited", detected_by="polling")
                return
            if await self._sleep_or_cancel(interval):
                return
