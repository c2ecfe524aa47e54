"""Socket transports for the remote-control protocol.

The protocol client talks to a ``MessageTransport``: something that sends and
receives whole text frames. ``WebSocketTransport`` is the production
implementation on top of aiohttp; tests substitute an in-memory transport.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Protocol

import aiohttp

from gamedeck.errors import RemoteControlError
from gamedeck.logging import get_logger

# Subprotocol announced by the recorder's control socket for JSON framing
JSON_SUBPROTOCOL = "obswebsocket.json"

logger = get_logger(__name__)


class MessageTransport(Protocol):
    """A bidirectional text-frame channel."""

    async def send(self, text: str) -> None:
        """Send one text frame."""
        ...

    async def receive(self) -> str:
        """Receive one text frame.

        Raises:
            RemoteControlError: If the channel is closed or errored
        """
        ...

    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        ...


TransportFactory = Callable[[str, float], Awaitable[MessageTransport]]


class WebSocketTransport:
    """aiohttp WebSocket client transport.

    Attributes:
        url: WebSocket URL this transport is connected to
    """

    def __init__(
        self,
        url: str,
        session: aiohttp.ClientSession,
        ws: aiohttp.ClientWebSocketResponse,
    ) -> None:
        self.url = url
        self._session = session
        self._ws = ws

    @classmethod
    async def connect(cls, url: str, timeout: float) -> WebSocketTransport:
        """Open a WebSocket connection.

        Args:
            url: WebSocket URL, e.g. ``ws://localhost:4455``
            timeout: Seconds allowed for the TCP connect and upgrade

        Raises:
            RemoteControlError: If the connection cannot be established
        """
        session = aiohttp.ClientSession()
        try:
            ws = await asyncio.wait_for(
                session.ws_connect(url, protocols=(JSON_SUBPROTOCOL,), autoping=True),
                timeout=timeout,
            )
        except asyncio.CancelledError:
            await session.close()
            raise
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            await session.close()
            raise RemoteControlError(f"Cannot connect to {url}: {str(e) or type(e).__name__}") from e

        logger.debug("websocket_connected", url=url)
        return cls(url, session, ws)

    async def send(self, text: str) -> None:
        if self._ws.closed:
            raise RemoteControlError(f"Socket to {self.url} is closed")
        try:
            await self._ws.send_str(text)
        except (aiohttp.ClientError, ConnectionError) as e:
            raise RemoteControlError(f"Send to {self.url} failed: {e}") from e

    async def receive(self) -> str:
        msg = await self._ws.receive()
        if msg.type == aiohttp.WSMsgType.TEXT:
            return str(msg.data)
        if msg.type == aiohttp.WSMsgType.BINARY:
            try:
                return bytes(msg.data).decode("utf-8")
            except UnicodeDecodeError as e:
                raise RemoteControlError(f"Binary frame from {self.url} is not UTF-8: {e}") from e
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise RemoteControlError(f"Socket to {self.url} errored: {self._ws.exception()}")
        raise RemoteControlError(
            f"Socket to {self.url} closed (code={self._ws.close_code})"
        )

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()
        if not self._session.closed:
            await self._session.close()


async def open_websocket(url: str, timeout: float) -> MessageTransport:
    """Default ``TransportFactory``."""
    return await WebSocketTransport.connect(url, timeout)
