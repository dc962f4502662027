"""Relay configuration from environment variables and --key=value overrides."""

import os
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

SERVER_NAME = "figma-relay"
SERVER_VERSION = "0.1.0"

TRANSPORT_MODES = ("stdio", "http", "both")


@dataclass(frozen=True)
class RelayConfig:
    host: str = "127.0.0.1"
    port: int = 8765
    request_timeout_ms: int = 15000
    max_events: int = 200
    mcp_path: str = "/mcp"
    transport: str = "both"
    log_level: str = "INFO"

    @property
    def stdio_enabled(self) -> bool:
        return self.transport in ("stdio", "both")

    @property
    def mcp_http_enabled(self) -> bool:
        return self.transport in ("http", "both")


def _positive_int(raw: Optional[str], default: int, name: str) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"⚠️ Ignoring {name}={raw!r}: not an integer, using {default}")
        return default
    if value <= 0:
        logger.warning(f"⚠️ Ignoring {name}={raw!r}: must be positive, using {default}")
        return default
    return value


def _parse_overrides(argv: List[str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for arg in argv:
        if arg.startswith("--") and "=" in arg:
            key, value = arg[2:].split("=", 1)
            overrides[key] = value
    return overrides


def load_config(argv: Optional[List[str]] = None, env: Optional[Dict[str, str]] = None) -> RelayConfig:
    """Get configuration from environment variables (and .env) or CLI args."""
    if env is None:
        load_dotenv()
        env = dict(os.environ)
    overrides = _parse_overrides(argv or [])
    defaults = RelayConfig()

    def pick(option: str, variable: str) -> Optional[str]:
        if option in overrides:
            return overrides[option]
        return env.get(variable)

    transport = (pick("transport", "FIGMA_MCP_TRANSPORT") or defaults.transport).lower()
    if transport not in TRANSPORT_MODES:
        logger.warning(f"⚠️ Unknown transport mode {transport!r}, using {defaults.transport}")
        transport = defaults.transport

    mcp_path = pick("mcp-path", "FIGMA_MCP_MCP_PATH") or defaults.mcp_path
    if not mcp_path.startswith("/"):
        mcp_path = "/" + mcp_path

    return RelayConfig(
        host=pick("host", "FIGMA_MCP_HOST") or defaults.host,
        port=_positive_int(pick("port", "FIGMA_MCP_PORT"), defaults.port, "port"),
        request_timeout_ms=_positive_int(
            pick("timeout-ms", "FIGMA_MCP_TIMEOUT_MS"), defaults.request_timeout_ms, "timeout-ms"
        ),
        max_events=_positive_int(pick("max-events", "FIGMA_MCP_MAX_EVENTS"), defaults.max_events, "max-events"),
        mcp_path=mcp_path,
        transport=transport,
        log_level=(pick("log-level", "FIGMA_MCP_LOG_LEVEL") or defaults.log_level).upper(),
    )
