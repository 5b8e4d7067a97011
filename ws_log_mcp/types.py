"""Dataclasses, enums, and event types for ws-log-mcp."""

from __future__ import annotations

import base64
import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

LOG_URI = "ws-log://logs"
TOOL_NAME = "get_ws_logs"
MAX_LOG_LINES = 10_000
INITIAL_RECONNECT_S = 1.0
MAX_RECONNECT_S = 30.0
DEFAULT_PORT = 3000


def utc_timestamp(at: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-01-01T00:00:00.000Z."""
    at = at or datetime.now(timezone.utc)
    return at.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Upstream
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Credentials:
    user: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(user={self.user!r}, password='***')"

    def authorization_header(self) -> str:
        token = base64.b64encode(f"{self.user}:{self.password}".encode()).decode("ascii")
        return f"Basic {token}"


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"      # explicit shutdown in progress; no retry afterwards


# ---------------------------------------------------------------------------
# Connection events (one producer, one consumer)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Opened:
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def describe(self) -> str:
        return f"[{utc_timestamp(self.at)}] WebSocket connected"


@dataclass(frozen=True)
class Message:
    text: str

    def describe(self) -> str:
        return self.text


@dataclass(frozen=True)
class Closed:
    code: int | None
    reason: str = ""
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def describe(self) -> str:
        return f"[{utc_timestamp(self.at)}] WebSocket closed (code={self.code} reason={self.reason})"


@dataclass(frozen=True)
class Errored:
    message: str
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def describe(self) -> str:
        return f"[{utc_timestamp(self.at)}] WebSocket error: {self.message}"


ConnectionEvent = Opened | Message | Closed | Errored


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class SessionState(enum.Enum):
    OPEN = "open"        # transport attached, handshake not yet observed
    ACTIVE = "active"    # client has completed the handshake and made a request
    CLOSED = "closed"    # terminal


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class UpstreamConfig:
    url: str = ""
    user: str = ""
    password: str = ""

    @property
    def credentials(self) -> Credentials:
        return Credentials(self.user, self.password)


@dataclass
class ReconnectConfig:
    initial_delay: float = INITIAL_RECONNECT_S
    max_delay: float = MAX_RECONNECT_S


@dataclass
class ServerConfig:
    transport: str = "sse"  # "sse" or "stdio"
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    notify_timeout: float = 5.0


@dataclass
class BridgeConfig:
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    capacity: int = MAX_LOG_LINES
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    log_level: str = "info"
