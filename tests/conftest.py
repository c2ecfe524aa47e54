"""Shared pytest fixtures for gamedeck tests."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pytest
import structlog

from gamedeck.config import GamedeckConfig
from gamedeck.context import SessionContext
from tests.fakes import FakeObsServer, FakeSupervisor, FakeTransport


@pytest.fixture(autouse=True)
def reset_structlog():
    """Keep structlog and stdlib logging at defaults between tests."""
    yield
    logging.getLogger().handlers.clear()
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def supervisor() -> FakeSupervisor:
    """Create an empty fake process table."""
    return FakeSupervisor()


@pytest.fixture
def obs_server() -> FakeObsServer:
    """Create a recorder control socket without authentication."""
    return FakeObsServer()


@pytest.fixture
def transports() -> list[FakeTransport]:
    """Collects every transport opened through ``transport_factory``."""
    return []


@pytest.fixture
def transport_factory(obs_server: FakeObsServer, transports: list[FakeTransport]):
    """Create a transport factory connected to ``obs_server``."""

    async def factory(url: str, timeout: float) -> FakeTransport:
        transport = FakeTransport(obs_server)
        transports.append(transport)
        return transport

    return factory


@pytest.fixture
def bin_dir(tmp_path: Path) -> Path:
    """Directory holding fake executables."""
    directory = tmp_path / "bin"
    directory.mkdir()
    return directory


@pytest.fixture
def make_config(tmp_path: Path):
    """Build a GamedeckConfig with fast session timings.

    Returns:
        Callable accepting ``apps``, ``games`` and ``session`` overrides
    """

    def _make(
        apps: dict[str, dict[str, Any]] | None = None,
        games: dict[str, dict[str, Any]] | None = None,
        **session: Any,
    ) -> GamedeckConfig:
        session_values: dict[str, Any] = {
            "process_start_grace_seconds": 0.05,
            "poll_interval_seconds": 0.01,
            "native_wait_slice_seconds": 0.01,
            "handshake_timeout_seconds": 1.0,
            "request_timeout_seconds": 1.0,
            "background_job_timeout_seconds": 1.0,
            "runtime_dir": tmp_path / "runtime",
        }
        session_values.update(session)
        return GamedeckConfig(
            session=session_values,
            apps=apps or {},
            games=games or {},
        )

    return _make


@pytest.fixture
def make_context(supervisor: FakeSupervisor, transport_factory):
    """Build a SessionContext wired to the fake supervisor and socket."""

    def _make(config: GamedeckConfig) -> SessionContext:
        return SessionContext(
            config=config,
            supervisor=supervisor,  # type: ignore[arg-type]
            transport_factory=transport_factory,
        )

    return _make
