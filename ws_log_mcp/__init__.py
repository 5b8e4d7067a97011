"""ws-log-mcp: expose a reconnecting log WebSocket as an MCP resource and tool."""

__version__ = "1.0.0"

from .config import ConfigError, load_config, validate_config
from .core.connection import ReconnectingConnection
from .core.log_buffer import LogBuffer
from .core.sessions import Session, SessionRegistry
from .mcp.server import LogBridge, create_connection
from .types import BridgeConfig, ConnectionState, Credentials, SessionState

__all__ = [
    "LogBridge",
    "LogBuffer",
    "ReconnectingConnection",
    "Session",
    "SessionRegistry",
    "create_connection",
    "load_config",
    "validate_config",
    "BridgeConfig",
    "ConfigError",
    "ConnectionState",
    "Credentials",
    "SessionState",
]
