"""Entry point for the MCP WebSocket Bridge.

Launched by an MCP client as a stdio server. Relays stdin lines to a
WebSocket server and WebSocket frames back to stdout.

Usage:
    mcp-ws-bridge [options] [url] [token]
    mcp-ws-bridge --port 18081
    mcp-ws-bridge ws://localhost:7400
    mcp-ws-bridge wss://remote:7400 secret-token-123
    python -m mcp_ws_bridge ws://localhost:7400

Exit codes:
    0: Graceful termination (signal, or connection closed by the server)
    1: Connection failed, or was lost without a closing handshake
    2: Invalid arguments or configuration
"""

from __future__ import annotations

import argparse
import asyncio
import io
import sys
from typing import Any

from pydantic import ValidationError

from mcp_ws_bridge import __version__
from mcp_ws_bridge.bridge import run_bridge
from mcp_ws_bridge.config import BridgeSettings
from mcp_ws_bridge.protocol import DEFAULT_HOST, DEFAULT_PORT, WS_SCHEMES

EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="mcp-ws-bridge",
        description="Relay MCP messages between stdio and a WebSocket server.",
    )
    parser.add_argument(
        "url",
        nargs="?",
        help="WebSocket url (ws:// or wss://); overrides --host/--port",
    )
    parser.add_argument(
        "token",
        nargs="?",
        help="Bearer token sent in the Authorization header",
    )
    parser.add_argument(
        "--host",
        help=f"WebSocket host when no url is given (default: {DEFAULT_HOST})",
    )
    parser.add_argument(
        "--port",
        type=int,
        help=f"WebSocket port when no url is given (default: {DEFAULT_PORT})",
    )
    subprotocol = parser.add_mutually_exclusive_group()
    subprotocol.add_argument(
        "--subprotocol",
        help="Subprotocol offered in the handshake (default: mcp)",
    )
    subprotocol.add_argument(
        "--no-subprotocol",
        action="store_true",
        help="Do not offer a subprotocol",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Trace connection state and messages to stderr",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_args(argv: list[str] | None = None) -> dict[str, Any]:
    """Parse command-line arguments into settings overrides.

    Only options given on the command line are returned, so values from
    the environment stay in effect for everything else.

    Args:
        argv: Arguments without the program name (defaults to sys.argv[1:])

    Returns:
        Keyword arguments for BridgeSettings
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.url is not None and not args.url.startswith(WS_SCHEMES):
        parser.error(f"url must start with ws:// or wss://, got {args.url!r}")

    overrides: dict[str, Any] = {}
    if args.url is not None:
        overrides["url"] = args.url
    if args.token is not None:
        overrides["token"] = args.token
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.no_subprotocol:
        overrides["subprotocol"] = None
    elif args.subprotocol is not None:
        overrides["subprotocol"] = args.subprotocol
    if args.debug:
        overrides["debug"] = True
    return overrides


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    overrides = parse_args(argv)

    try:
        settings = BridgeSettings(**overrides)
    except ValidationError as e:
        print(f"mcp-ws-bridge: invalid configuration: {e}", file=sys.stderr)
        return EXIT_USAGE

    settings.setup_logging()

    # Relayed messages are UTF-8 regardless of the locale
    if isinstance(sys.stdout, io.TextIOWrapper):
        sys.stdout.reconfigure(encoding="utf-8")

    return asyncio.run(run_bridge(settings))


if __name__ == "__main__":
    sys.exit(main())
