"""HTTP+SSE transport: many MCP sessions multiplexed over one FastAPI app.

Framing, session ids and message routing come from the SDK's
``SseServerTransport``: ``GET /mcp`` opens an event stream and announces a
``/messages/?session_id=...`` endpoint; POSTs to that endpoint are routed to
the matching stream.  Missing, malformed or unknown ids are rejected by the
SDK before the registry or the buffer is touched.

Usage:
    ws-log-mcp serve --transport sse --port 3000
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from mcp.server.sse import SseServerTransport

from ..core.connection import ReconnectingConnection
from ..mcp.server import LogBridge

logger = logging.getLogger(__name__)


class SseSessionTransport:
    """Registers one bridge session per SSE stream opened on the SDK transport."""

    def __init__(self, bridge: LogBridge, messages_path: str = "/messages/") -> None:
        self._bridge = bridge
        self.sse = SseServerTransport(messages_path)

    async def handle_stream(self, request: Request) -> None:
        """Serve one client for as long as its event stream stays open."""
        async with self.sse.connect_sse(
            request.scope, request.receive, request._send,
        ) as (read_stream, write_stream):
            session = self._bridge.registry.open("sse", uuid4().hex)
            logger.debug("SSE stream established for session %s", session.session_id)
            await self._bridge.serve(session, read_stream, write_stream)


def create_app(
    bridge: LogBridge,
    connection: ReconnectingConnection | None = None,
    *,
    endpoint: str = "/mcp",
    messages_path: str = "/messages/",
) -> FastAPI:
    """Create the FastAPI app serving MCP over SSE.

    Args:
        bridge: Shared log bridge (buffer + session registry).
        connection: Upstream connection started/stopped with the app lifespan.
        endpoint: Path of the stream-establishing GET.
        messages_path: Path clients POST JSON-RPC messages to.
    """
    transport = SseSessionTransport(bridge, messages_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        if connection is not None:
            connection.start()
        yield
        if connection is not None:
            await connection.close()
        await bridge.drain()

    app = FastAPI(title="ws-log-mcp", lifespan=lifespan)
    app.state.bridge = bridge
    app.state.transport = transport

    @app.get(endpoint)
    async def establish_stream(request: Request):
        await transport.handle_stream(request)
        # The stream has already been answered; this only satisfies the route.
        return Response()

    app.mount(messages_path, app=transport.sse.handle_post_message)

    @app.get("/health")
    async def health():
        buffer = bridge.buffer
        return JSONResponse({
            "status": "ok",
            "upstream": connection.state.value if connection is not None else None,
            "buffer": {
                "lines": len(buffer),
                "capacity": buffer.capacity,
                "dropped": buffer.dropped,
            },
            "sessions": len(bridge.registry),
            "active_sessions": len(bridge.registry.active()),
        })

    return app
