"""Action handler registry for managed applications.

Maps each ``ActionVerb`` to the coroutine that performs it. The registry is
checked for exhaustiveness against the loaded profiles before a session
starts, so a verb without a handler is a configuration error and never a
runtime fault.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable

import structlog

from gamedeck.errors import ConfigurationError
from gamedeck.models import (
    ACTION_SCHEMA_VERSION,
    VERB_SPECS,
    ActionResult,
    ActionVerb,
    GameProfile,
    ManagedApplicationProfile,
    Platform,
)
from gamedeck.patterns import ProcessPattern

if TYPE_CHECKING:
    from gamedeck.config import GamedeckConfig
    from gamedeck.context import SessionContext

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ActionRequest:
    """Everything a handler needs to perform one verb.

    Attributes:
        app: Target application profile
        verb: Verb being performed
        ctx: Session context with collaborators and configuration
        pattern: Parsed process-name pattern, when the profile has one
    """

    app: ManagedApplicationProfile
    verb: ActionVerb
    ctx: SessionContext
    pattern: ProcessPattern | None = None


ActionHandler = Callable[[ActionRequest], Awaitable[ActionResult]]


def parse_verb(name: str, subject: str | None = None) -> ActionVerb:
    """Resolve a verb name to an ``ActionVerb``.

    Raises:
        ConfigurationError: If the name is not part of the verb set
    """
    try:
        return ActionVerb(name)
    except ValueError:
        known = ", ".join(v.value for v in ActionVerb)
        raise ConfigurationError(
            f"Unknown action {name!r} (schema v{ACTION_SCHEMA_VERSION}: {known})",
            subject=subject,
        ) from None


class ActionHandlerRegistry:
    """Registry of verb handlers."""

    def __init__(self) -> None:
        self._handlers: dict[ActionVerb, ActionHandler] = {}

    def register(self, verb: ActionVerb, handler: ActionHandler) -> None:
        """Register the handler for a verb.

        Raises:
            ValueError: If the verb already has a handler
        """
        if verb in self._handlers:
            raise ValueError(f"Handler already registered for {verb.value}")
        self._handlers[verb] = handler

    def handles(self, verb: ActionVerb) -> Callable[[ActionHandler], ActionHandler]:
        """Decorator form of ``register``."""

        def decorator(handler: ActionHandler) -> ActionHandler:
            self.register(verb, handler)
            return handler

        return decorator

    def resolve(self, verb: ActionVerb) -> ActionHandler:
        """Return the handler for a verb.

        Raises:
            ConfigurationError: If no handler is registered
        """
        handler = self._handlers.get(verb)
        if handler is None:
            raise ConfigurationError(f"No handler registered for action {verb.value!r}")
        return handler

    def __contains__(self, verb: object) -> bool:
        return verb in self._handlers

    @property
    def verbs(self) -> frozenset[ActionVerb]:
        return frozenset(self._handlers)

    def missing_verbs(self) -> list[ActionVerb]:
        """Verbs of the closed set that have no handler."""
        return [v for v in ActionVerb if v not in self._handlers]

    def validate_application(self, app: ManagedApplicationProfile) -> None:
        """Check one application profile against the registry.

        Raises:
            ConfigurationError: On a missing handler, missing path, missing
                process pattern, or malformed pattern
        """
        for verb in (app.startup_action, app.shutdown_action):
            if verb not in self._handlers:
                raise ConfigurationError(
                    f"No handler registered for action {verb.value!r}", subject=app.id
                )
            spec = VERB_SPECS[verb]
            if spec.requires_path and not app.path.strip():
                raise ConfigurationError(
                    f"Action {verb.value!r} requires an executable path", subject=app.id
                )
            if spec.requires_pattern and not app.process_name.strip():
                raise ConfigurationError(
                    f"Action {verb.value!r} requires a process_name", subject=app.id
                )

        if app.process_name.strip():
            try:
                ProcessPattern.parse(app.process_name)
            except ConfigurationError as e:
                raise ConfigurationError(str(e), subject=app.id) from e

    def validate_game(self, game: GameProfile) -> None:
        """Check a game profile's own fields.

        Raises:
            ConfigurationError: On a malformed pattern or missing launch data
        """
        try:
            ProcessPattern.parse(game.process_name)
        except ConfigurationError as e:
            raise ConfigurationError(str(e), subject=game.id) from e

        if game.platform == Platform.DIRECT and not game.path.strip():
            raise ConfigurationError("Direct launch requires a path", subject=game.id)
        if game.platform not in (Platform.DIRECT, Platform.NONE) and not game.platform_id:
            raise ConfigurationError(
                f"Platform {game.platform.value!r} requires a platform_id", subject=game.id
            )

    def validate(
        self,
        config: GamedeckConfig,
        games: Iterable[GameProfile] | None = None,
    ) -> None:
        """Validate profiles before any session starts.

        Args:
            config: Loaded configuration
            games: Games to validate (defaults to every configured game)

        Raises:
            ConfigurationError: On the first problem found
        """
        selected = list(games) if games is not None else list(config.games.values())
        checked_apps: set[str] = set()
        for game in selected:
            self.validate_game(game)
            for app in config.apps_for(game):
                if app.id in checked_apps:
                    continue
                self.validate_application(app)
                checked_apps.add(app.id)

        logger.debug(
            "profiles_validated",
            games=[g.id for g in selected],
            apps=sorted(checked_apps),
            schema_version=ACTION_SCHEMA_VERSION,
        )
