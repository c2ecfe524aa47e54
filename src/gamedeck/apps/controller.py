"""Managed application controller.

Executes one verb against one configured application, converts any handler
failure into a failed ``ActionResult``, and records in the ``SessionState``
which applications this session actually mutated. The shutdown plan is
derived from that record so a session never stops an application it found
already running.
"""

from __future__ import annotations

import asyncio
from typing import Iterable

import structlog

from gamedeck.apps.registry import ActionHandlerRegistry, ActionRequest
from gamedeck.context import SessionContext
from gamedeck.leases import LeaseRegistry
from gamedeck.models import (
    VERB_SPECS,
    ActionResult,
    ActionVerb,
    ManagedApplicationProfile,
    SessionState,
)
from gamedeck.patterns import ProcessPattern

logger = structlog.get_logger(__name__)


class ManagedApplicationController:
    """Runs lifecycle verbs against managed applications for one session.

    Attributes:
        ctx: Session context
        registry: Verb handler registry
        state: State of the session this controller works for
        leases: Optional cross-session lease registry
    """

    def __init__(
        self,
        ctx: SessionContext,
        registry: ActionHandlerRegistry,
        state: SessionState,
        leases: LeaseRegistry | None = None,
    ) -> None:
        self.ctx = ctx
        self.registry = registry
        self.state = state
        self.leases = leases
        self._logger = logger.bind(component="ManagedApplicationController")

    async def invoke(self, app: ManagedApplicationProfile, verb: ActionVerb) -> ActionResult:
        """Execute ``verb`` against ``app``.

        Never raises for handler failures: exceptions are logged with the
        application id and verb and returned as ``success=False``.

        Args:
            app: Target application profile
            verb: Verb to perform

        Returns:
            Outcome of the verb
        """
        log = self._logger.bind(app_id=app.id, verb=verb.value)

        try:
            handler = self.registry.resolve(verb)
            pattern = ProcessPattern.parse(app.process_name) if app.process_name.strip() else None
            result = await handler(ActionRequest(app=app, verb=verb, ctx=self.ctx, pattern=pattern))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("action_failed", error=str(e), error_type=type(e).__name__)
            return ActionResult.failed(str(e))

        if result.success and not result.already_in_desired_state and VERB_SPECS[verb].mutating:
            self.state.record_mutation(app.id)

        if result.success:
            log.info(
                "action_completed",
                already_in_desired_state=result.already_in_desired_state,
                detail=result.message,
            )
        else:
            log.warning("action_unsuccessful", detail=result.message)
        return result

    async def startup(self, app: ManagedApplicationProfile) -> ActionResult:
        """Run the application's startup verb, taking a session lease first."""
        if self.leases is not None:
            self.leases.acquire(app.id)
        return await self.invoke(app, app.startup_action)

    def shutdown_plan(
        self, apps: Iterable[ManagedApplicationProfile]
    ) -> list[ManagedApplicationProfile]:
        """Applications whose shutdown verb should run, in reverse declared order.

        An application qualifies when this session mutated it, or when its
        shutdown verb is an idempotent toggle. Applications whose shutdown
        verb is ``none`` are skipped.
        """
        plan: list[ManagedApplicationProfile] = []
        for app in reversed(list(apps)):
            if app.shutdown_action == ActionVerb.NONE:
                continue
            spec = VERB_SPECS[app.shutdown_action]
            if self.state.was_mutated(app.id) or spec.idempotent_toggle:
                plan.append(app)
        return plan

    async def shutdown(self, app: ManagedApplicationProfile) -> ActionResult:
        """Run the application's shutdown verb.

        A stop is skipped while another live session holds a lease on the
        same application.
        """
        if app.shutdown_action == ActionVerb.STOP_PROCESS and self.leases is not None:
            holders = self.leases.other_holders(app.id)
            if holders:
                self._logger.info(
                    "stop_skipped_shared_application",
                    app_id=app.id,
                    other_sessions=holders,
                )
                return ActionResult.unchanged("still used by another session")
        return await self.invoke(app, app.shutdown_action)
