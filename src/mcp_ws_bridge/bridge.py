"""Lifecycle controller for one stdio <-> WebSocket bridge.

The Bridge owns the connection state, the pending message buffer and the
exit-code contract:

- Lines read while connecting are buffered and drained in order on open
- Both relays run until the socket closes or a termination signal arrives
- Exit code 1 on a failed connect or a lost connection, 0 otherwise
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections import deque
from typing import TextIO
from urllib.parse import urlsplit

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException

from mcp_ws_bridge.config import BridgeSettings
from mcp_ws_bridge.errors import format_error
from mcp_ws_bridge.protocol import (
    EXIT_FAILURE,
    EXIT_SUCCESS,
    NORMAL_CLOSURE,
    CloseKind,
    ConnectionState,
    preview,
)
from mcp_ws_bridge.relay import (
    AsyncLineReader,
    Connector,
    InboundRelay,
    OutboundRelay,
    create_stdin_reader,
)

logger = logging.getLogger(__name__)


class Bridge:
    """Bridges one stdin/stdout pair to one WebSocket connection.

    State moves forward only: connecting -> open -> closing -> closed, with
    connecting -> closed on a failed connect or an early signal.

    Attributes:
        settings: The bridge configuration
        close_kind: How the bridge closed, None while running
        close_code: Close code received from the server, if any
        close_reason: Close reason received from the server, if any
    """

    def __init__(
        self,
        settings: BridgeSettings,
        *,
        stdout: TextIO | None = None,
        connector: Connector | None = None,
    ) -> None:
        """Initialize the bridge.

        Args:
            settings: The bridge configuration
            stdout: The stream relayed messages are written to (defaults to sys.stdout)
            connector: Connector to use (defaults to one built from settings)
        """
        self.settings = settings
        self._connector = connector or Connector(
            settings.target_url,
            token=settings.token,
            subprotocol=settings.subprotocol,
            open_timeout=settings.open_timeout,
            close_timeout=settings.close_timeout,
        )
        self._inbound = InboundRelay(self)
        self._outbound = OutboundRelay(stdout)

        self._state = ConnectionState.CONNECTING
        self._pending: deque[str] = deque()
        self._connection: ClientConnection | None = None
        self._stop_event: asyncio.Event | None = None

        self.close_kind: CloseKind | None = None
        self.close_code: int | None = None
        self.close_reason: str | None = None

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def pending(self) -> tuple[str, ...]:
        """Messages waiting for the connection to open."""
        return tuple(self._pending)

    def _transition(self, new_state: ConnectionState) -> None:
        """Move to a later state; backwards or repeated moves are ignored."""
        if new_state.rank <= self._state.rank:
            return
        logger.debug("Connection state: %s -> %s", self._state.value, new_state.value)
        self._state = new_state
        if new_state is not ConnectionState.OPEN and self._pending:
            for line in self._pending:
                logger.warning(
                    "Dropping buffered message, connection %s: %s",
                    new_state.value,
                    preview(line),
                )
            self._pending.clear()

    def _finish(self, kind: CloseKind) -> None:
        self._transition(ConnectionState.CLOSED)
        self.close_kind = kind
        logger.debug("Bridge finished: %s", kind.value)

    # -------------------------------------------------------------------------
    # Operations used by the relays
    # -------------------------------------------------------------------------

    def buffer(self, line: str) -> None:
        """Queue a message until the connection opens.

        Args:
            line: The message to hold
        """
        logger.debug("Buffering message (WebSocket not ready): %s", preview(line))
        self._pending.append(line)

    async def send(self, line: str) -> None:
        """Send a message over the open connection.

        A message that cannot be sent because the connection closed in the
        meantime is dropped with a warning.

        Args:
            line: The message to send
        """
        if self._connection is None:
            logger.warning("Dropping message, no connection: %s", preview(line))
            return
        logger.debug("Sending to WebSocket: %s", preview(line))
        try:
            await self._connection.send(line)
        except ConnectionClosed:
            logger.warning("Dropping message, connection closed: %s", preview(line))

    def request_shutdown(self, reason: str = "shutdown requested") -> None:
        """Ask the bridge to close the connection and exit with code 0.

        Safe to call from a signal handler and before run() starts.

        Args:
            reason: Description for the log, e.g. the signal name
        """
        logger.debug("Received %s, closing connection", reason)
        if self._state is ConnectionState.OPEN:
            self._transition(ConnectionState.CLOSING)
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        self._stop_event.set()

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to request_shutdown()."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(
                    sig,
                    lambda signum, _frame: loop.call_soon_threadsafe(
                        self.request_shutdown, signal.Signals(signum).name
                    ),
                )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def run(self, stdin: AsyncLineReader) -> int:
        """Run the bridge until the connection ends.

        Stdin is read from the start, so lines written while the
        connection is still being established are buffered, not lost.

        Args:
            stdin: The async stdin stream reader

        Returns:
            Exit code (0 for graceful termination, 1 for failure)
        """
        if self._stop_event is None:
            self._stop_event = asyncio.Event()

        logger.debug("Starting MCP WebSocket bridge: %s", self.settings.to_dict())
        inbound_task = asyncio.create_task(self._inbound.run(stdin), name="inbound-relay")
        stop_task = asyncio.create_task(self._stop_event.wait(), name="bridge-stop")
        try:
            return await self._run_session(stop_task)
        finally:
            for task in (inbound_task, stop_task):
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def _run_session(self, stop_task: asyncio.Task[bool]) -> int:
        connect_task = asyncio.create_task(self._connector.connect(), name="connector")
        await asyncio.wait({connect_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        if not connect_task.done():
            connect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await connect_task
            self._finish(CloseKind.GRACEFUL)
            return EXIT_SUCCESS

        try:
            connection = connect_task.result()
        except (OSError, ExceptionGroup, asyncio.TimeoutError, WebSocketException) as e:
            self._report_connect_error(e)
            self._finish(CloseKind.FATAL)
            return EXIT_FAILURE

        self._connection = connection
        drain_task = asyncio.create_task(self._drain_pending(), name="drain-pending")
        await asyncio.wait({drain_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        if not drain_task.done():
            drain_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await drain_task

        if stop_task.done():
            await self._close_connection()
            self._finish(CloseKind.GRACEFUL)
            return EXIT_SUCCESS

        outbound_task = asyncio.create_task(
            self._outbound.run(connection), name="outbound-relay"
        )
        await asyncio.wait({outbound_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        if not outbound_task.done():
            outbound_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await outbound_task
            await self._close_connection()
            self._finish(CloseKind.GRACEFUL)
            return EXIT_SUCCESS

        try:
            outbound_task.result()
        except ConnectionClosedError as e:
            if e.rcvd is None:
                # Connection lost without a closing handshake
                logger.error(
                    "WebSocket error: %s",
                    format_error(e.__cause__ or e),
                )
                self._finish(CloseKind.ABNORMAL)
                return EXIT_FAILURE
            return self._report_close(e.rcvd.code, e.rcvd.reason)

        return self._report_close(connection.close_code, connection.close_reason)

    async def _drain_pending(self) -> None:
        """Send buffered messages in order, then mark the connection open.

        Lines arriving while the drain awaits are appended to the buffer
        and sent by this same loop, so they never overtake older lines. A
        line stays buffered until its send returns, so a drain cancelled by
        shutdown reports it with the rest of the buffer.
        """
        while self._pending:
            line = self._pending[0]
            logger.debug("Sending buffered message to WebSocket: %s", preview(line))
            await self.send(line)
            self._pending.popleft()
        self._transition(ConnectionState.OPEN)
        logger.debug("WebSocket connection established")

    async def _close_connection(self) -> None:
        """Close the connection, waiting at most close_timeout for the handshake."""
        self._transition(ConnectionState.CLOSING)
        if self._connection is None:
            return
        try:
            await asyncio.wait_for(
                self._connection.close(), timeout=self.settings.close_timeout
            )
        except (asyncio.TimeoutError, OSError) as e:
            logger.debug("Closing handshake did not complete: %r", e)
            self._connection.transport.abort()

    def _report_connect_error(self, exc: BaseException) -> None:
        """Write a failed connect to stderr as one line."""
        host, port = self._target_endpoint()
        logger.error(
            "WebSocket error: %s",
            format_error(exc, address=host, port=port),
            exc_info=exc if self.settings.debug else None,
        )

    def _report_close(self, code: int | None, reason: str | None) -> int:
        """Record a server-initiated close and return the exit code."""
        self.close_code = code
        self.close_reason = reason or ""
        logger.debug("WebSocket connection closed: %s %s", code, self.close_reason)
        if code == NORMAL_CLOSURE:
            logger.info("WebSocket connection closed")
            self._finish(CloseKind.GRACEFUL)
        else:
            logger.warning(
                "WebSocket connection closed unexpectedly: code=%s reason=%s",
                code,
                self.close_reason,
            )
            self._finish(CloseKind.ABNORMAL)
        return EXIT_SUCCESS

    def _target_endpoint(self) -> tuple[str | None, int | None]:
        """Host and port of the target url, for error reports."""
        try:
            parts = urlsplit(self._connector.url)
            return parts.hostname, parts.port or (443 if parts.scheme == "wss" else 80)
        except ValueError:
            return None, None


async def run_bridge(settings: BridgeSettings) -> int:
    """Run one bridge over the process stdin/stdout.

    This is the main entry point for running the bridge.

    Args:
        settings: The bridge configuration

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    bridge = Bridge(settings)
    bridge.install_signal_handlers()

    try:
        stdin_reader = await create_stdin_reader()
        return await bridge.run(stdin_reader)
    except asyncio.CancelledError:
        logger.info("Bridge cancelled")
        return EXIT_SUCCESS
    except OSError as e:
        logger.error("Bridge I/O error: %s", format_error(e))
        return EXIT_FAILURE
    except Exception as e:
        logger.exception("Bridge failed with unexpected error: %s", e)
        return EXIT_FAILURE
