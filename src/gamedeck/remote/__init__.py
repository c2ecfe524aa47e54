"""Remote-control protocol client and background job dispatcher."""

from __future__ import annotations

from gamedeck.remote.dispatcher import BackgroundJob, BackgroundJobDispatcher, JobStatus
from gamedeck.remote.protocol import (
    RPC_VERSION,
    ConnectionState,
    OpCode,
    RemoteControlConnection,
    compute_auth_response,
)
from gamedeck.remote.transport import MessageTransport, WebSocketTransport, open_websocket

__all__ = [
    # Dispatcher
    "BackgroundJob",
    "BackgroundJobDispatcher",
    "JobStatus",
    # Protocol
    "RPC_VERSION",
    "ConnectionState",
    "OpCode",
    "RemoteControlConnection",
    "compute_auth_response",
    # Transport
    "MessageTransport",
    "WebSocketTransport",
    "open_websocket",
]
