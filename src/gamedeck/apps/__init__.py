"""Managed application control: verb registry, handlers, and controller."""

from __future__ import annotations

from gamedeck.apps.controller import ManagedApplicationController
from gamedeck.apps.handlers import build_default_registry
from gamedeck.apps.registry import (
    ActionHandler,
    ActionHandlerRegistry,
    ActionRequest,
    parse_verb,
)

__all__ = [
    "ActionHandler",
    "ActionHandlerRegistry",
    "ActionRequest",
    "ManagedApplicationController",
    "build_default_registry",
    "parse_verb",
]
