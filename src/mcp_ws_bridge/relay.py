"""Connector and relays between stdin/stdout and a WebSocket connection.

Relays messages from the MCP client (stdin) to the WebSocket server and
frames from the WebSocket server back to the client (stdout). Connection
state and the pending buffer live on the Bridge; the relays only read the
state and send through it.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from typing import TYPE_CHECKING, Protocol, TextIO

from websockets.asyncio.client import ClientConnection, connect
from websockets.typing import Subprotocol

from mcp_ws_bridge.protocol import (
    DEFAULT_CLOSE_TIMEOUT,
    DEFAULT_OPEN_TIMEOUT,
    DEFAULT_SUBPROTOCOL,
    STDIN_LINE_LIMIT,
    ConnectionState,
    frame_line,
    is_complete_line,
    preview,
    strip_line_terminator,
)

if TYPE_CHECKING:
    from mcp_ws_bridge.bridge import Bridge

logger = logging.getLogger(__name__)

# Logger handed to websockets. Its DEBUG output dumps the handshake headers,
# Authorization included, so it stays at INFO whatever the root level is.
protocol_logger = logging.getLogger("mcp_ws_bridge.websockets")
protocol_logger.setLevel(logging.INFO)


class AsyncLineReader(Protocol):
    """Protocol for async line readers (duck typing for StreamReader)."""

    async def readline(self) -> bytes:
        """Read a line asynchronously."""
        ...


# =============================================================================
# Connector
# =============================================================================


class Connector:
    """Opens the single outbound WebSocket connection.

    A token is sent as an ``Authorization: Bearer`` handshake header, never
    in the url. There is no retry: a failed attempt raises to the caller.

    Attributes:
        url: The ws:// or wss:// url to connect to
        token: Optional bearer token
        subprotocol: Subprotocol to offer, or None to offer none
        open_timeout: Seconds allowed for the opening handshake
        close_timeout: Seconds allowed for the closing handshake
    """

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        subprotocol: str | None = DEFAULT_SUBPROTOCOL,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
    ) -> None:
        self.url = url
        self.token = token
        self.subprotocol = subprotocol
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout

    @property
    def headers(self) -> dict[str, str]:
        """Extra handshake headers."""
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    @property
    def subprotocols(self) -> list[Subprotocol] | None:
        """Subprotocols offered in the handshake."""
        if self.subprotocol is None:
            return None
        return [Subprotocol(self.subprotocol)]

    async def connect(self) -> ClientConnection:
        """Open the connection.

        Returns:
            The open client connection

        Raises:
            ExceptionGroup: If no resolved address accepts the connection,
                with one OSError per address
            OSError: If the TLS setup fails
            TimeoutError: If the handshake does not finish in time
            websockets.exceptions.WebSocketException: If the handshake fails
        """
        logger.debug(
            "Connecting to %s (subprotocol=%s, auth=%s)",
            self.url,
            self.subprotocol or "none",
            "***" if self.token else "none",
        )
        connection = await connect(
            self.url,
            additional_headers=self.headers,
            subprotocols=self.subprotocols,
            open_timeout=self.open_timeout,
            close_timeout=self.close_timeout,
            max_size=None,
            logger=protocol_logger,
            all_errors=True,
        )
        logger.info("Connected to WebSocket server at %s", self.url)
        return connection


# =============================================================================
# Inbound Relay (stdin -> socket)
# =============================================================================


class InboundRelay:
    """Reads newline-delimited messages from stdin and hands them to the bridge.

    Each complete line is forwarded while the connection is open, buffered
    while it is connecting, and dropped (with a warning) once it is closing
    or closed. A trailing fragment without a newline is not delivered.
    """

    def __init__(self, bridge: Bridge) -> None:
        self._bridge = bridge

    async def run(self, stdin: AsyncLineReader) -> None:
        """Relay stdin until end of input.

        Args:
            stdin: The async stdin stream reader
        """
        while True:
            line_bytes = await stdin.readline()

            if not line_bytes:
                logger.info("EOF on stdin, inbound relay stopped")
                return

            if not is_complete_line(line_bytes):
                logger.warning(
                    "Discarding incomplete line at end of stdin: %s",
                    preview(line_bytes.decode("utf-8", errors="replace")),
                )
                return

            line = strip_line_terminator(line_bytes.decode("utf-8", errors="replace"))
            await self.forward(line)

    async def forward(self, line: str) -> None:
        """Route one message according to the connection state.

        Args:
            line: The message, without its line terminator
        """
        state = self._bridge.state
        if state is ConnectionState.OPEN:
            await self._bridge.send(line)
        elif state is ConnectionState.CONNECTING:
            self._bridge.buffer(line)
        else:
            logger.warning(
                "Dropping message, connection %s: %s", state.value, preview(line)
            )


# =============================================================================
# Outbound Relay (socket -> stdout)
# =============================================================================


class OutboundRelay:
    """Writes every frame received from the socket to stdout as one line."""

    def __init__(self, stdout: TextIO | None = None) -> None:
        """Initialize the relay.

        Args:
            stdout: The stdout stream to write to (defaults to sys.stdout)
        """
        self._stdout: TextIO = stdout if stdout is not None else sys.stdout

    def write(self, message: str | bytes) -> None:
        """Write one message to stdout.

        Args:
            message: Text frame, or binary frame decoded as UTF-8
        """
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        logger.debug("Received from WebSocket: %s", preview(message))
        self._stdout.write(frame_line(message))
        self._stdout.flush()

    async def run(self, connection: ClientConnection) -> None:
        """Relay frames until the connection closes.

        Returns normally on a normal closure; raises
        ``websockets.exceptions.ConnectionClosedError`` otherwise.

        Args:
            connection: The open client connection
        """
        async for message in connection:
            self.write(message)


# =============================================================================
# Stdin Readers
# =============================================================================


class PipeStdinReader:
    """Line reader over an asyncio StreamReader connected to the stdin pipe.

    A line longer than the stream limit is discarded up to and including its
    newline, so no tail fragment of it is ever returned as a line.
    """

    def __init__(self, reader: asyncio.StreamReader, limit: int = STDIN_LINE_LIMIT) -> None:
        self._reader = reader
        self._limit = limit

    async def readline(self) -> bytes:
        """Read the next line that fits the limit.

        Returns:
            The line including its newline, a final partial line, or empty
            bytes on EOF.
        """
        while True:
            try:
                return await self._reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                return e.partial
            except asyncio.LimitOverrunError as e:
                await self._skip_line(e.consumed)
                logger.error("Dropping stdin line longer than %d bytes", self._limit)

    async def _skip_line(self, consumed: int) -> None:
        """Discard input through the next newline."""
        while True:
            # consumed bytes are known to precede any newline in the buffer
            await self._reader.readexactly(consumed)
            try:
                await self._reader.readuntil(b"\n")
                return
            except asyncio.IncompleteReadError:
                return
            except asyncio.LimitOverrunError as e:
                consumed = e.consumed


class ThreadedStdinReader:
    """Async stdin reader using a background thread.

    On Windows, asyncio's ProactorEventLoop doesn't support
    `loop.connect_read_pipe()` for stdin, and on POSIX a regular file
    redirected to stdin cannot be registered with the selector. This class
    works around both by using a daemon thread that performs blocking reads
    from stdin and puts lines into an asyncio-compatible queue.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def _reader_thread(self) -> None:
        """Background thread that reads from stdin and puts lines in queue."""
        try:
            while True:
                line = sys.stdin.buffer.readline()
                if not line:
                    break
                if self._loop is not None:
                    self._loop.call_soon_threadsafe(self._queue.put_nowait, line)
        except (OSError, ValueError) as e:
            logger.error("Stdin reader failed: %s: %s", type(e).__name__, e)
        finally:
            # Signal EOF by putting empty bytes
            if self._loop is not None and not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self._queue.put_nowait, b"")

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the background reader thread.

        Args:
            loop: The asyncio event loop to use for queue operations
        """
        self._loop = loop
        self._thread = threading.Thread(
            target=self._reader_thread, name="stdin-reader", daemon=True
        )
        self._thread.start()

    async def readline(self) -> bytes:
        """Read a line from stdin asynchronously.

        Returns:
            The next line from stdin as bytes, or empty bytes on EOF.
        """
        return await self._queue.get()


async def create_stdin_reader() -> AsyncLineReader:
    """Create an async reader for stdin.

    Uses connect_read_pipe() where the platform and the stdin type allow it,
    and the thread-based reader otherwise.

    Returns:
        An async reader with a readline() method
    """
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        reader = asyncio.StreamReader(limit=STDIN_LINE_LIMIT)
        protocol = asyncio.StreamReaderProtocol(reader)
        try:
            await loop.connect_read_pipe(lambda: protocol, sys.stdin)
            return PipeStdinReader(reader)
        except ValueError:
            logger.debug("stdin is not a pipe, falling back to threaded reader")

    threaded = ThreadedStdinReader()
    threaded.start(loop)
    return threaded
