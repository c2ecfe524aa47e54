"""Explicit context shared by every gamedeck component.

Components receive a ``SessionContext`` in their constructor instead of
reaching for module-level configuration or singletons.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from gamedeck.config import GamedeckConfig
from gamedeck.models import ObsSettings
from gamedeck.process import ProcessSupervisor
from gamedeck.remote.dispatcher import BackgroundJobDispatcher
from gamedeck.remote.protocol import RemoteControlConnection
from gamedeck.remote.transport import TransportFactory, open_websocket


@dataclass
class SessionContext:
    """Collaborators and configuration for one gamedeck process.

    Attributes:
        config: Loaded gamedeck configuration
        supervisor: Process supervisor used to find, start, and stop processes
        dispatcher: Background job dispatcher for fire-and-forget remote jobs
        transport_factory: Opens remote-control sockets
    """

    config: GamedeckConfig
    supervisor: ProcessSupervisor = field(default_factory=ProcessSupervisor)
    dispatcher: BackgroundJobDispatcher | None = None
    transport_factory: TransportFactory = open_websocket

    @property
    def jobs(self) -> BackgroundJobDispatcher:
        """Background job dispatcher, created on first use."""
        if self.dispatcher is None:
            self.dispatcher = BackgroundJobDispatcher(
                job_timeout=self.config.session.background_job_timeout_seconds
            )
        return self.dispatcher

    def remote_connection(self, settings: ObsSettings) -> RemoteControlConnection:
        """Create an unconnected remote-control connection for ``settings``."""
        password = settings.password.get_secret_value() if settings.password else None
        return RemoteControlConnection(
            settings.url,
            password=password,
            transport_factory=self.transport_factory,
            handshake_timeout=self.config.session.handshake_timeout_seconds,
            request_timeout=self.config.session.request_timeout_seconds,
        )
