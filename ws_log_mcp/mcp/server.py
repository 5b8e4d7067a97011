"""MCP surface for the upstream log buffer.

``LogBridge`` is the one service object of the process: it owns the log
buffer and the session registry, consumes upstream connection events, and
builds one low-level MCP ``Server`` per downstream session exposing:

- resource ``ws-log://logs``: the whole buffer as text/plain, subscribable;
- tool ``get_ws_logs``: the last ``lines`` entries (clamped to the capacity).

Every buffer change is followed by a ``notifications/resources/updated``
fan-out to all active sessions.
"""

from __future__ import annotations

import asyncio
import logging

from mcp import types
from mcp.server.lowlevel import NotificationOptions, Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from pydantic import AnyUrl

from .. import __version__
from ..core.backoff import Backoff
from ..core.connection import ReconnectingConnection
from ..core.log_buffer import LogBuffer
from ..core.sessions import Session, SessionRegistry
from ..types import LOG_URI, MAX_LOG_LINES, TOOL_NAME, BridgeConfig, ConnectionEvent, SessionState

logger = logging.getLogger(__name__)

SERVER_NAME = "ws-log-mcp"
STDIO_SESSION_ID = "stdio"


class LogServer(Server):
    """Low-level server that also advertises resource subscriptions.

    ``Server.get_capabilities`` always reports ``subscribe=False`` even when a
    subscribe handler is registered.
    """

    def get_capabilities(self, *args, **kwargs) -> types.ServerCapabilities:
        capabilities = super().get_capabilities(*args, **kwargs)
        if capabilities.resources is not None and types.SubscribeRequest in self.request_handlers:
            capabilities.resources.subscribe = True
        return capabilities


def clamp_lines(lines: int | None, capacity: int) -> int | None:
    """Clamp a requested tail length into ``[1, capacity]``; ``None`` means all."""
    if lines is None:
        return None
    return max(1, min(int(lines), capacity))


class LogBridge:
    """Owns the buffer and registry; wires sessions to them."""

    def __init__(
        self,
        capacity: int = MAX_LOG_LINES,
        notify_timeout: float = 5.0,
        name: str = SERVER_NAME,
    ) -> None:
        self._name = name
        self._buffer = LogBuffer(capacity)
        self._registry = SessionRegistry(notify_timeout=notify_timeout)
        self._pending: set[asyncio.Task] = set()

    @property
    def buffer(self) -> LogBuffer:
        return self._buffer

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Upstream side
    # ------------------------------------------------------------------

    def handle_event(self, event: ConnectionEvent) -> None:
        """Connection sink: record the event and tell every session."""
        self._buffer.append(event.describe())
        self._schedule_notify()

    def _schedule_notify(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop, so no live transports to notify
        task = loop.create_task(self._registry.notify_all(LOG_URI))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight notification fan-outs."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Handlers (transport independent)
    # ------------------------------------------------------------------

    def read_logs(self) -> str:
        return self._buffer.text()

    def get_logs(self, lines: int | None = None) -> str:
        return self._buffer.text(clamp_lines(lines, self._buffer.capacity))

    def tool_definition(self) -> types.Tool:
        return types.Tool(
            name=TOOL_NAME,
            description=(
                "Return recent WebSocket log entries for debugging. "
                "Optionally limit to the last N lines."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "lines": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": self._buffer.capacity,
                        "description": "Return only the last N lines (default: all)",
                    },
                },
            },
        )

    def resource_definition(self) -> types.Resource:
        return types.Resource(
            uri=AnyUrl(LOG_URI),
            name="logs",
            description="Live logs from the upstream logging WebSocket",
            mimeType="text/plain",
        )

    # ------------------------------------------------------------------
    # Per-session MCP server
    # ------------------------------------------------------------------

    def create_server(self, session: Session) -> LogServer:
        """Build an MCP server whose handlers serve *session*."""
        server = LogServer(self._name, version=__version__)

        def bind() -> None:
            # First request after the handshake: remember the peer for fan-out.
            if session.state is SessionState.OPEN:
                session.activate(server.request_context.session)

        def check_uri(uri: AnyUrl) -> None:
            if str(uri).rstrip("/") != LOG_URI:
                raise ValueError(f"Unknown resource: {uri}")

        @server.list_resources()
        async def list_resources() -> list[types.Resource]:
            bind()
            return [self.resource_definition()]

        @server.read_resource()
        async def read_resource(uri: AnyUrl) -> list[ReadResourceContents]:
            bind()
            check_uri(uri)
            return [ReadResourceContents(content=self.read_logs(), mime_type="text/plain")]

        @server.subscribe_resource()
        async def subscribe_resource(uri: AnyUrl) -> None:
            bind()
            check_uri(uri)
            session.subscribed = True

        @server.unsubscribe_resource()
        async def unsubscribe_resource(uri: AnyUrl) -> None:
            bind()
            check_uri(uri)
            session.subscribed = False

        @server.list_tools()
        async def list_tools() -> list[types.Tool]:
            bind()
            return [self.tool_definition()]

        @server.call_tool()
        async def call_tool(name: str, arguments: dict | None) -> list[types.TextContent]:
            bind()
            if name != TOOL_NAME:
                raise ValueError(f"Unknown tool: {name}")
            lines = (arguments or {}).get("lines")
            return [types.TextContent(type="text", text=self.get_logs(lines))]

        return server

    async def serve(self, session: Session, read_stream, write_stream) -> None:
        """Run the MCP protocol for *session* until its transport closes."""
        server = self.create_server(session)
        options = server.create_initialization_options(
            notification_options=NotificationOptions(resources_changed=True),
        )
        logger.debug("Serving MCP for session %s", session.session_id)
        try:
            await server.run(read_stream, write_stream, options)
        finally:
            self._registry.remove(session.session_id)

    async def run_stdio(self, connection: ReconnectingConnection | None = None) -> None:
        """Single persistent session over stdin/stdout for the process lifetime."""
        async with stdio_server() as (read_stream, write_stream):
            session = self._registry.open("stdio", STDIO_SESSION_ID)
            if connection is not None:
                connection.start()
            try:
                await self.serve(session, read_stream, write_stream)
            finally:
                if connection is not None:
                    await connection.close()
                await self.drain()


def create_connection(
    config: BridgeConfig,
    bridge: LogBridge,
    **kwargs,
) -> ReconnectingConnection:
    """Build the upstream connection that feeds *bridge*."""
    return ReconnectingConnection(
        config.upstream.url,
        config.upstream.credentials,
        bridge.handle_event,
        backoff=Backoff(config.reconnect.initial_delay, config.reconnect.max_delay),
        **kwargs,
    )
