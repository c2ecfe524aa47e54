"""Remote-control protocol client.

Implements the JSON request/response protocol used to drive a companion
application (a screen recorder) over a persistent WebSocket. Every frame is
an envelope ``{"op": <int>, "d": <payload>}``.

Handshake:
    1. Server sends Hello (op 0) with ``rpcVersion`` and optional
       ``authentication: {salt, challenge}``.
    2. Client sends Identify (op 1) with ``rpcVersion`` and, when challenged,
       ``authentication = b64(sha256(b64(sha256(password + salt)) + challenge))``.
    3. Server answers Identified (op 2). Anything else, or nothing within the
       handshake timeout, faults the connection.

After the handshake, Request (op 6) frames carry a unique ``requestId`` and
RequestResponse (op 7) frames are matched back to callers strictly by id.

Example usage:
    >>> async with RemoteControlConnection("ws://localhost:4455", password="pw") as conn:
    ...     status = await conn.request("GetReplayBufferStatus")
    ...     print(status["outputActive"])
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
from enum import Enum, IntEnum
from typing import Any
from uuid import uuid4

from gamedeck.errors import AuthenticationError, RemoteControlError, RemoteRequestFailed
from gamedeck.logging import get_logger
from gamedeck.remote.transport import MessageTransport, TransportFactory, open_websocket

RPC_VERSION = 1

logger = get_logger(__name__)


class OpCode(IntEnum):
    """Envelope op codes."""

    HELLO = 0
    IDENTIFY = 1
    IDENTIFIED = 2
    REIDENTIFY = 3
    EVENT = 5
    REQUEST = 6
    REQUEST_RESPONSE = 7


class ConnectionState(str, Enum):
    """Connection lifecycle states.

    State transitions:
        DISCONNECTED → CONNECTING → AWAITING_HELLO → AWAITING_IDENTIFIED → READY
                           ↓              ↓                  ↓               ↓
                        FAULTED        FAULTED            FAULTED     CLOSED | FAULTED
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_HELLO = "awaiting_hello"
    AWAITING_IDENTIFIED = "awaiting_identified"
    READY = "ready"
    CLOSED = "closed"
    FAULTED = "faulted"


VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING, ConnectionState.CLOSED},
    ConnectionState.CONNECTING: {ConnectionState.AWAITING_HELLO, ConnectionState.FAULTED},
    ConnectionState.AWAITING_HELLO: {
        ConnectionState.AWAITING_IDENTIFIED,
        ConnectionState.FAULTED,
    },
    ConnectionState.AWAITING_IDENTIFIED: {ConnectionState.READY, ConnectionState.FAULTED},
    ConnectionState.READY: {ConnectionState.CLOSED, ConnectionState.FAULTED},
    ConnectionState.CLOSED: set(),
    ConnectionState.FAULTED: {ConnectionState.CLOSED},
}


def compute_auth_response(password: str, salt: str, challenge: str) -> str:
    """Compute the Identify authentication string.

    Args:
        password: Shared secret configured on the server
        salt: Salt from the Hello frame
        challenge: Challenge from the Hello frame

    Returns:
        Base64-encoded SHA-256 of (base64 SHA-256 of password+salt) + challenge
    """
    secret = base64.b64encode(
        hashlib.sha256((password + salt).encode("utf-8")).digest()
    ).decode("utf-8")
    return base64.b64encode(
        hashlib.sha256((secret + challenge).encode("utf-8")).digest()
    ).decode("utf-8")


def parse_auth_challenge(authentication: Any) -> tuple[str, str] | None:
    """Extract ``(salt, challenge)`` from a Hello ``authentication`` field.

    Returns:
        None when the server does not require authentication

    Raises:
        AuthenticationError: If the field is present but malformed
    """
    if authentication is None:
        return None
    if not isinstance(authentication, dict):
        raise AuthenticationError(
            f"Hello authentication must be an object, got {type(authentication).__name__}"
        )
    salt = authentication.get("salt")
    challenge = authentication.get("challenge")
    if not isinstance(salt, str) or not isinstance(challenge, str):
        raise AuthenticationError("Hello authentication requires string salt and challenge")
    return salt, challenge


def encode_message(op: OpCode, payload: dict[str, Any]) -> str:
    """Serialize an envelope to a JSON text frame."""
    return json.dumps({"op": int(op), "d": payload})


def decode_message(raw: str) -> tuple[int, dict[str, Any]]:
    """Parse a JSON text frame into ``(op, payload)``.

    Raises:
        RemoteControlError: If the frame is not a valid envelope
    """
    try:
        message = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RemoteControlError(f"Malformed frame: {e}") from e

    if not isinstance(message, dict) or not isinstance(message.get("op"), int):
        raise RemoteControlError(f"Frame is not an envelope: {raw[:200]}")
    payload = message.get("d") or {}
    if not isinstance(payload, dict):
        raise RemoteControlError(f"Envelope payload is not an object: {raw[:200]}")
    return message["op"], payload


class RemoteControlConnection:
    """One authenticated connection to a remote-control socket.

    The connection owns a reader task that receives every frame after the
    handshake and resolves pending requests by ``requestId``. The pending
    table is the only state shared between the reader task and callers, and
    it is only ever inserted into, matched by id, and removed from.

    Attributes:
        url: Socket URL
        handshake_timeout: Seconds allowed for the whole handshake
        request_timeout: Default per-request timeout in seconds
    """

    def __init__(
        self,
        url: str,
        password: str | None = None,
        transport_factory: TransportFactory = open_websocket,
        handshake_timeout: float = 5.0,
        request_timeout: float = 10.0,
    ) -> None:
        self.url = url
        self.handshake_timeout = handshake_timeout
        self.request_timeout = request_timeout
        self._password = password
        self._transport_factory = transport_factory
        self._transport: MessageTransport | None = None
        self._state = ConnectionState.DISCONNECTED
        self._negotiated_rpc_version: int | None = None
        self._authenticated = False
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._logger = logger.bind(component="RemoteControlConnection", url=url)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def negotiated_rpc_version(self) -> int | None:
        return self._negotiated_rpc_version

    @property
    def authenticated(self) -> bool:
        """Whether the server challenged us and accepted our response."""
        return self._authenticated

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _transition(self, target: ConnectionState) -> None:
        if target not in VALID_TRANSITIONS[self._state]:
            raise RemoteControlError(
                f"Invalid connection transition from {self._state.value} to {target.value}"
            )
        self._logger.debug(
            "connection_transition", from_state=self._state.value, to_state=target.value
        )
        self._state = target

    async def connect(self) -> None:
        """Open the socket and complete the handshake.

        Raises:
            RemoteControlError: If the socket cannot be opened
            AuthenticationError: If the handshake fails or times out
        """
        self._transition(ConnectionState.CONNECTING)
        try:
            transport = await self._transport_factory(self.url, self.handshake_timeout)
        except RemoteControlError:
            self._transition(ConnectionState.FAULTED)
            raise
        self._transport = transport

        self._transition(ConnectionState.AWAITING_HELLO)
        try:
            await asyncio.wait_for(self._handshake(transport), timeout=self.handshake_timeout)
        except asyncio.CancelledError:
            await self._fault(RemoteControlError(f"Handshake with {self.url} cancelled"))
            raise
        except asyncio.TimeoutError:
            error = AuthenticationError(
                f"Handshake with {self.url} timed out after {self.handshake_timeout}s"
            )
            await self._fault(error)
            raise error from None
        except RemoteControlError as e:
            await self._fault(e)
            if isinstance(e, AuthenticationError):
                raise
            raise AuthenticationError(f"Handshake with {self.url} failed: {e}") from e

        self._transition(ConnectionState.READY)
        self._reader_task = asyncio.create_task(
            self._reader_loop(transport), name=f"remote-reader-{self.url}"
        )
        self._logger.info(
            "remote_connection_ready",
            rpc_version=self._negotiated_rpc_version,
            authenticated=self._authenticated,
        )

    async def _handshake(self, transport: MessageTransport) -> None:
        op, hello = decode_message(await transport.receive())
        if op != OpCode.HELLO:
            raise AuthenticationError(f"Expected Hello (op 0), got op {op}")

        identify: dict[str, Any] = {"rpcVersion": RPC_VERSION, "eventSubscriptions": 0}
        challenge = parse_auth_challenge(hello.get("authentication"))
        if challenge is not None:
            if self._password is None:
                raise AuthenticationError("Server requires authentication but no password is set")
            salt, nonce = challenge
            identify["authentication"] = compute_auth_response(self._password, salt, nonce)

        self._transition(ConnectionState.AWAITING_IDENTIFIED)
        await transport.send(encode_message(OpCode.IDENTIFY, identify))

        op, identified = decode_message(await transport.receive())
        if op != OpCode.IDENTIFIED:
            raise AuthenticationError(f"Expected Identified (op 2), got op {op}")

        version = identified.get("negotiatedRpcVersion", hello.get("rpcVersion", RPC_VERSION))
        if not isinstance(version, int) or isinstance(version, bool):
            raise AuthenticationError(f"Invalid negotiated RPC version: {version!r}")
        self._negotiated_rpc_version = version
        self._authenticated = challenge is not None

    async def _reader_loop(self, transport: MessageTransport) -> None:
        try:
            while True:
                raw = await transport.receive()
                try:
                    op, payload = decode_message(raw)
                except RemoteControlError as e:
                    self._logger.warning("remote_frame_discarded", error=str(e))
                    continue

                if op == OpCode.REQUEST_RESPONSE:
                    self._resolve(payload)
                else:
                    self._logger.debug("remote_frame_ignored", op=op)
        except asyncio.CancelledError:
            raise
        except RemoteControlError as e:
            if self._state == ConnectionState.READY:
                await self._fault(e)
        except Exception as e:
            self._logger.exception("remote_reader_crashed")
            await self._fault(RemoteControlError(f"Reader failed: {e}"))

    def _resolve(self, payload: dict[str, Any]) -> None:
        request_id = payload.get("requestId")
        future = self._pending.pop(str(request_id), None) if request_id is not None else None
        if future is None:
            self._logger.debug("remote_response_unmatched", request_id=request_id)
            return
        if not future.done():
            future.set_result(payload)

    async def _fault(self, error: RemoteControlError) -> None:
        if self._state in (ConnectionState.FAULTED, ConnectionState.CLOSED):
            return
        self._logger.warning("remote_connection_faulted", error=str(error), state=self._state.value)
        self._state = ConnectionState.FAULTED
        self._fail_pending(error)
        if self._transport is not None:
            try:
                await self._transport.close()
            except Exception as e:
                self._logger.debug("transport_close_failed", error=str(e))

    def _fail_pending(self, error: RemoteControlError) -> None:
        pending = list(self._pending.items())
        self._pending.clear()
        for _, future in pending:
            if not future.done():
                future.set_exception(error)

    async def request(
        self,
        request_type: str,
        request_data: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a request and wait for its correlated response.

        Args:
            request_type: Remote request name, e.g. ``"StartReplayBuffer"``
            request_data: Optional request parameters
            timeout: Override of the default request timeout

        Returns:
            The ``responseData`` object (empty when the response carries none)

        Raises:
            RemoteControlError: If the connection is not ready, the socket
                fails, or the response does not arrive in time
            RemoteRequestFailed: If the remote end reports a failed status
        """
        if self._state != ConnectionState.READY or self._transport is None:
            raise RemoteControlError(
                f"Cannot send {request_type}: connection is {self._state.value}"
            )

        request_id = uuid4().hex
        payload: dict[str, Any] = {"requestType": request_type, "requestId": request_id}
        if request_data:
            payload["requestData"] = request_data

        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        wait_for = timeout if timeout is not None else self.request_timeout

        try:
            await self._transport.send(encode_message(OpCode.REQUEST, payload))
            self._logger.debug("remote_request_sent", request_type=request_type, request_id=request_id)
            response = await asyncio.wait_for(future, timeout=wait_for)
        except asyncio.TimeoutError:
            raise RemoteControlError(
                f"{request_type} timed out after {wait_for}s"
            ) from None
        finally:
            self._pending.pop(request_id, None)

        status = response.get("requestStatus") or {}
        if not status.get("result", False):
            raise RemoteRequestFailed(
                request_type, int(status.get("code", 0)), status.get("comment")
            )
        return response.get("responseData") or {}

    async def close(self, drain_timeout: float = 2.0) -> None:
        """Close the connection after in-flight requests finish.

        Waits up to ``drain_timeout`` seconds for pending requests, then fails
        whatever is left. Safe to call in any state and more than once.
        """
        if self._state == ConnectionState.CLOSED:
            return

        if self._pending and self._state == ConnectionState.READY:
            in_flight = list(self._pending.values())
            await asyncio.wait(in_flight, timeout=drain_timeout)

        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            finally:
                self._reader_task = None

        self._fail_pending(RemoteControlError(f"Connection to {self.url} closed"))
        if self._transport is not None:
            try:
                await self._transport.close()
            except Exception as e:
                self._logger.debug("transport_close_failed", error=str(e))
            self._transport = None

        if self._state != ConnectionState.CLOSED:
            self._state = ConnectionState.CLOSED
        self._logger.debug("remote_connection_closed")

    async def __aenter__(self) -> RemoteControlConnection:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
