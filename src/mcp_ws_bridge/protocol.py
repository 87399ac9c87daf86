"""Protocol constants and line handling for the bridge.

Handles:
- Protocol constants (default endpoint, subprotocol, close codes)
- Newline-delimited message framing on the stdio side
- Truncated previews for debug tracing
"""

from __future__ import annotations

from enum import Enum

# =============================================================================
# Protocol Constants
# =============================================================================

# Default WebSocket endpoint, used when no url is given
DEFAULT_HOST: str = "localhost"
DEFAULT_PORT: int = 18081

# Subprotocol offered during the handshake
DEFAULT_SUBPROTOCOL: str = "mcp"

# Accepted url schemes
WS_SCHEMES: tuple[str, ...] = ("ws://", "wss://")

# WebSocket close codes
NORMAL_CLOSURE: int = 1000

# Handshake and closing timeouts
DEFAULT_OPEN_TIMEOUT: float = 10.0  # seconds
DEFAULT_CLOSE_TIMEOUT: float = 0.5  # seconds

# Largest stdin line accepted by the pipe reader
STDIN_LINE_LIMIT: int = 64 * 1024 * 1024  # 64MB

# Debug traces show at most this many characters of a message
PREVIEW_LENGTH: int = 100

# Exit codes
EXIT_SUCCESS: int = 0
EXIT_FAILURE: int = 1


# =============================================================================
# Connection State
# =============================================================================


class ConnectionState(str, Enum):
    """State of the single bridge connection. Transitions only move forward."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"

    @property
    def rank(self) -> int:
        """Position in the connecting -> open -> closing -> closed order."""
        return list(ConnectionState).index(self)


class CloseKind(str, Enum):
    """How the connection reached the closed state."""

    GRACEFUL = "graceful"
    ABNORMAL = "abnormal"
    FATAL = "fatal"


# =============================================================================
# Line Framing
# =============================================================================


def is_complete_line(data: bytes) -> bool:
    """Check if raw stdin data is a complete, newline-terminated record.

    A fragment at end of input without a trailing newline is not a message.

    Args:
        data: Raw bytes returned by readline()

    Returns:
        True if the data ends with a newline
    """
    return data.endswith(b"\n")


def strip_line_terminator(line: str) -> str:
    """Remove the line terminator from a stdin record.

    Only the terminator is removed ("\\n" or "\\r\\n"); any other
    whitespace is part of the payload.

    Args:
        line: The decoded line

    Returns:
        The payload without its terminator
    """
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith("\n"):
        return line[:-1]
    return line


def frame_line(message: str) -> str:
    """Frame a socket message for stdout (payload plus one newline)."""
    return message + "\n"


def preview(message: str, limit: int = PREVIEW_LENGTH) -> str:
    """Truncate a message for debug output.

    Args:
        message: The message to preview
        limit: Maximum number of characters to keep

    Returns:
        The first ``limit`` characters of the message
    """
    return message[:limit]


def build_url(host: str, port: int, *, secure: bool = False) -> str:
    """Build a WebSocket url from host and port.

    IPv6 literals are bracketed.
    """
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    scheme = "wss" if secure else "ws"
    return f"{scheme}://{host}:{port}"
