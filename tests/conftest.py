"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
import socket
from collections.abc import AsyncGenerator, Generator

import pytest

from helpers import QueueLineReader, WebSocketTestServer


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def ws_server() -> AsyncGenerator[WebSocketTestServer, None]:
    """Start a real WebSocket server on an ephemeral port."""
    server = WebSocketTestServer()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
async def mcp_ws_server() -> AsyncGenerator[WebSocketTestServer, None]:
    """Start a WebSocket server that accepts the mcp subprotocol."""
    server = WebSocketTestServer(subprotocols=["mcp"])
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def stdin_reader() -> QueueLineReader:
    """Create a fake stdin reader."""
    return QueueLineReader()


@pytest.fixture
def unused_port() -> int:
    """Return a local port with no listener."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(autouse=True)
def clean_env() -> Generator[None, None, None]:
    """Keep bridge environment variables from leaking into tests."""
    saved = {
        key: value
        for key, value in os.environ.items()
        if key.startswith("MCP_BRIDGE_") or key == "DEBUG"
    }
    for key in saved:
        del os.environ[key]

    yield

    for key in list(os.environ):
        if key.startswith("MCP_BRIDGE_") or key == "DEBUG":
            del os.environ[key]
    os.environ.update(saved)
