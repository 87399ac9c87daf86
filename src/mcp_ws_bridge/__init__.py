"""MCP WebSocket Bridge - Relay between a stdio MCP client and a WebSocket server.

A thin async relay that:
- Is launched by an MCP client as a stdio server subprocess
- Reads newline-delimited messages from stdin (client -> bridge)
- Relays each message as one text frame over a WebSocket connection
- Relays frames from the WebSocket server back to the client via stdout
"""

__version__ = "0.1.0"
