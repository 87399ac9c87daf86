"""Test helpers: a recording WebSocket server and a fake stdin reader."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from websockets.asyncio.server import Server, ServerConnection, serve

from mcp_ws_bridge.config import BridgeSettings

# The server side traces the request headers at DEBUG, bearer token included
server_logger = logging.getLogger("tests.websockets.server")
server_logger.setLevel(logging.INFO)


class WebSocketTestServer:
    """A WebSocket server recording what a bridge sends it.

    Attributes:
        received: Messages received from the bridge, in order
        headers: Handshake headers of each connection
        subprotocols: Negotiated subprotocol of each connection
        connected: Set once a client has connected
    """

    def __init__(
        self, *, subprotocols: list[str] | None = None, read: bool = True
    ) -> None:
        self.received: list[str] = []
        self.headers: list[dict[str, str]] = []
        self.subprotocols: list[str | None] = []
        self.connected = asyncio.Event()
        self.closed = asyncio.Event()
        self.connections: list[ServerConnection] = []
        self._subprotocols = subprotocols
        self._read = read
        self._server: Server | None = None
        self._message_event = asyncio.Event()

    @property
    def port(self) -> int:
        assert self._server is not None
        return self._server.sockets[0].getsockname()[1]

    @property
    def url(self) -> str:
        return f"ws://127.0.0.1:{self.port}"

    async def _handler(self, connection: ServerConnection) -> None:
        self.connections.append(connection)
        self.headers.append(dict(connection.request.headers))
        self.subprotocols.append(connection.subprotocol)
        self.connected.set()
        if not self._read:
            # Never consume messages, so the client hits backpressure
            await connection.wait_closed()
            self.closed.set()
            return
        try:
            async for message in connection:
                self.received.append(message)
                self._message_event.set()
        except Exception:
            pass
        finally:
            self.closed.set()

    async def start(self) -> None:
        kwargs: dict[str, Any] = {"logger": server_logger}
        if self._subprotocols is not None:
            kwargs["subprotocols"] = self._subprotocols
        self._server = await serve(self._handler, "127.0.0.1", 0, **kwargs)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def wait_for_messages(self, count: int, timeout: float = 2.0) -> list[str]:
        """Wait until at least ``count`` messages have arrived."""

        async def _wait() -> None:
            while len(self.received) < count:
                self._message_event.clear()
                await self._message_event.wait()

        await asyncio.wait_for(_wait(), timeout)
        return list(self.received)

    async def send(self, message: str) -> None:
        """Send a message to the most recent client."""
        await self.connections[-1].send(message)

    async def close_client(self, code: int = 1000, reason: str = "") -> None:
        """Close the most recent client connection with a close frame."""
        await self.connections[-1].close(code, reason)

    def abort_client(self) -> None:
        """Drop the most recent client connection without a closing handshake."""
        self.connections[-1].transport.abort()


class QueueLineReader:
    """An async line reader fed from a test, standing in for stdin."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()

    def feed(self, data: bytes) -> None:
        self._queue.put_nowait(data)

    def feed_line(self, line: str) -> None:
        self.feed(line.encode("utf-8") + b"\n")

    def feed_eof(self) -> None:
        self.feed(b"")

    async def readline(self) -> bytes:
        return await self._queue.get()


def make_settings(url: str, **kwargs: Any) -> BridgeSettings:
    """Build settings for a test bridge with fast timeouts."""
    kwargs.setdefault("open_timeout", 2.0)
    kwargs.setdefault("close_timeout", 0.5)
    return BridgeSettings(url=url, **kwargs)
