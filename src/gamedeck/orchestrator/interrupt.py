"""Interrupt handling for sessions.

An external interrupt (Ctrl+C, SIGTERM) is not an error: it cancels the
session's ``CancellationToken``, which the orchestrator observes between
applications in Setup and on every iteration while monitoring. Cancellation is
a compare-and-set on a single flag, so only the first interrupt counts and any
later one is logged and dropped.

Example usage:
    >>> token = CancellationToken()
    >>> with InterruptHandler(token):
    ...     exit_code = asyncio.run(orchestrator.run_session(game))
"""

from __future__ import annotations

import asyncio
import signal
import sys
import threading
from types import FrameType
from typing import Callable, ClassVar

import structlog

logger = structlog.get_logger(__name__)


class OnceFlag:
    """A flag that can be acquired exactly once.

    The internal lock only guards the flag swap and is never held across I/O.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._set = False

    def try_acquire(self) -> bool:
        """Set the flag. Returns True only for the first caller."""
        with self._lock:
            if self._set:
                return False
            self._set = True
            return True

    @property
    def is_set(self) -> bool:
        return self._set


class CancellationToken:
    """Thread-safe, signal-safe cancellation token.

    ``cancel`` may be called from a signal handler or another thread;
    coroutines blocked in ``wait`` are woken on their own event loop.

    Attributes:
        reason: Reason passed to the first successful ``cancel`` call
    """

    def __init__(self) -> None:
        self._once = OnceFlag()
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._event: asyncio.Event | None = None
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._once.is_set

    def cancel(self, reason: str = "interrupt") -> bool:
        """Request cancellation.

        Args:
            reason: Short description recorded on the token

        Returns:
            True if this call cancelled the token, False if it was already
            cancelled
        """
        if not self._once.try_acquire():
            return False
        self.reason = reason

        with self._lock:
            loop, event = self._loop, self._event
        if loop is not None and event is not None and not loop.is_closed():
            loop.call_soon_threadsafe(event.set)
        return True

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._event is None or self._loop is not loop:
                self._loop = loop
                self._event = asyncio.Event()
            event = self._event
        # Covers a cancel that landed before the event was bound
        if self.cancelled:
            return
        await event.wait()


def _default_signals() -> tuple[signal.Signals, ...]:
    if sys.platform == "win32":
        return (signal.SIGINT, signal.SIGBREAK)
    return (signal.SIGINT, signal.SIGTERM)


class InterruptHandler:
    """Routes OS interrupt signals into a ``CancellationToken``.

    Each handler installs once and uninstalls once; at most one handler is
    active per process. Previous signal handlers are restored on uninstall.

    Attributes:
        token: Token cancelled by the first interrupt
        signals: Signals this handler traps
    """

    _active: ClassVar[InterruptHandler | None] = None

    def __init__(
        self,
        token: CancellationToken,
        signals: tuple[signal.Signals, ...] | None = None,
        on_interrupt: Callable[[str], None] | None = None,
    ) -> None:
        self.token = token
        self.signals = signals if signals is not None else _default_signals()
        self._on_interrupt = on_interrupt
        self._previous: dict[signal.Signals, object] = {}
        self._installed_once = False

    @property
    def installed(self) -> bool:
        return InterruptHandler._active is self

    def install(self) -> None:
        """Install signal handlers.

        Raises:
            RuntimeError: If this handler was installed before, or another
                handler is currently active
        """
        if self._installed_once:
            raise RuntimeError("InterruptHandler can only be installed once")
        if InterruptHandler._active is not None:
            raise RuntimeError("Another InterruptHandler is already installed")

        for sig in self.signals:
            self._previous[sig] = signal.signal(sig, self._handle)
        self._installed_once = True
        InterruptHandler._active = self
        logger.debug("interrupt_handler_installed", signals=[s.name for s in self.signals])

    def uninstall(self) -> None:
        """Restore the previous signal handlers. Safe to call when not installed."""
        if InterruptHandler._active is not self:
            return
        for sig, previous in self._previous.items():
            signal.signal(sig, previous)
        self._previous.clear()
        InterruptHandler._active = None
        logger.debug("interrupt_handler_uninstalled")

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        name = signal.Signals(signum).name
        if self.token.cancel(reason=name):
            logger.warning("interrupt_received", signal=name)
            if self._on_interrupt is not None:
                self._on_interrupt(name)
        else:
            logger.info("interrupt_ignored", signal=name, reason="shutdown already requested")

    def __enter__(self) -> InterruptHandler:
        self.install()
        return self

    def __exit__(self, *exc: object) -> None:
        self.uninstall()
