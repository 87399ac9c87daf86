"""Configuration management for the MCP WebSocket Bridge.

This module provides the bridge configuration with support for:
- Environment variables (base layer)
- Command-line overrides (applied by the entry point)
- Type validation via Pydantic

Environment Variables:
    MCP_BRIDGE_URL: Full WebSocket url (ws:// or wss://), overrides host/port
    MCP_BRIDGE_HOST: WebSocket host (default: localhost)
    MCP_BRIDGE_PORT: WebSocket port (default: 18081)
    MCP_BRIDGE_TOKEN: Bearer token sent in the Authorization header
    MCP_BRIDGE_SUBPROTOCOL: Subprotocol to offer, "none" to disable (default: mcp)
    MCP_BRIDGE_LOG_LEVEL: Logging level (default: INFO)
    MCP_BRIDGE_OPEN_TIMEOUT: Handshake timeout in seconds (default: 10)
    MCP_BRIDGE_CLOSE_TIMEOUT: Closing handshake timeout in seconds (default: 0.5)
    MCP_BRIDGE_DEBUG / DEBUG: Set to 1 to trace every message to stderr

Usage:
    from mcp_ws_bridge.config import BridgeSettings

    settings = BridgeSettings()
    settings.target_url  # "ws://localhost:18081"

    # Command-line values are passed as overrides
    settings = BridgeSettings(url="wss://remote:7400", token="secret")
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mcp_ws_bridge.protocol import (
    DEFAULT_CLOSE_TIMEOUT,
    DEFAULT_HOST,
    DEFAULT_OPEN_TIMEOUT,
    DEFAULT_PORT,
    DEFAULT_SUBPROTOCOL,
    WS_SCHEMES,
    build_url,
)

_TRUTHY = {"1", "true", "yes", "on"}
_NO_SUBPROTOCOL = {"", "none", "off", "false"}


class BridgeSettings(BaseSettings):
    """Bridge configuration with environment variable support.

    All settings can be overridden via environment variables prefixed with
    MCP_BRIDGE_. The debug toggle also honours a plain DEBUG variable.

    Attributes:
        url: Explicit WebSocket url; takes precedence over host/port
        host: Host used to build the url when none is given
        port: Port used to build the url when none is given
        token: Optional bearer token for the handshake
        subprotocol: Subprotocol offered in the handshake, or None
        debug: Trace state transitions and messages to stderr
        log_level: Logging level when debug is off
        open_timeout: Seconds allowed for the opening handshake
        close_timeout: Seconds allowed for the closing handshake
    """

    model_config = SettingsConfigDict(
        env_prefix="MCP_BRIDGE_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    # Target configuration
    url: str | None = Field(
        default=None,
        description="WebSocket url (ws:// or wss://)",
    )
    host: str = Field(
        default=DEFAULT_HOST,
        description="WebSocket host, used when url is not set",
    )
    port: int = Field(
        default=DEFAULT_PORT,
        ge=1,
        le=65535,
        description="WebSocket port, used when url is not set",
    )

    # Handshake configuration
    token: str | None = Field(
        default=None,
        description="Bearer token sent as the Authorization header",
    )
    subprotocol: str | None = Field(
        default=DEFAULT_SUBPROTOCOL,
        description="Subprotocol offered during the handshake, None for no subprotocol",
    )
    open_timeout: float = Field(
        default=DEFAULT_OPEN_TIMEOUT,
        gt=0,
        description="Opening handshake timeout (seconds)",
    )
    close_timeout: float = Field(
        default=DEFAULT_CLOSE_TIMEOUT,
        gt=0,
        description="Closing handshake timeout (seconds)",
    )

    # Logging configuration
    debug: bool = Field(
        default=False,
        validation_alias=AliasChoices("debug", "MCP_BRIDGE_DEBUG", "DEBUG"),
        description="Trace every state transition and message to stderr",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("url")
    @classmethod
    def validate_url_scheme(cls, v: str | None) -> str | None:
        """Require a ws:// or wss:// url."""
        if v is not None and not v.startswith(WS_SCHEMES):
            raise ValueError(f"url must start with ws:// or wss://, got {v!r}")
        return v

    @field_validator("token", mode="before")
    @classmethod
    def normalize_token(cls, v: Any) -> Any:
        """Treat an empty token as no token."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("subprotocol", mode="before")
    @classmethod
    def normalize_subprotocol(cls, v: Any) -> Any:
        """Map "none" and empty values to no subprotocol."""
        if isinstance(v, str) and v.strip().lower() in _NO_SUBPROTOCOL:
            return None
        return v

    @field_validator("debug", mode="before")
    @classmethod
    def parse_debug_flag(cls, v: Any) -> Any:
        """Accept loose boolean strings such as DEBUG=1 or DEBUG=yes."""
        if isinstance(v, str):
            return v.strip().lower() in _TRUTHY
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def target_url(self) -> str:
        """The url to connect to: explicit url, else built from host/port."""
        if self.url is not None:
            return self.url
        return build_url(self.host, self.port)

    @property
    def effective_log_level(self) -> str:
        """Logging level after applying the debug toggle."""
        return "DEBUG" if self.debug else self.log_level

    def setup_logging(self) -> None:
        """Configure logging based on config settings.

        Logs go to stderr so stdout is reserved for relayed messages.
        """
        logging.basicConfig(
            level=getattr(logging, self.effective_log_level, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            stream=sys.stderr,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for logging/debugging.

        The token is redacted.

        Returns:
            Dictionary of all config values
        """
        return {
            "target_url": self.target_url,
            "token": "***" if self.token else "none",
            "subprotocol": self.subprotocol,
            "open_timeout": self.open_timeout,
            "close_timeout": self.close_timeout,
            "debug": self.debug,
            "log_level": self.effective_log_level,
        }
