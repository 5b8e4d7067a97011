"""Reconnecting upstream WebSocket client.

Owns the socket lifecycle for one endpoint and turns it into an explicit
event stream (``Opened``, ``Message``, ``Closed``, ``Errored``) delivered to
a single sink.  Failed or closed connections are retried with exponential
backoff through an injectable scheduler, so tests can step time manually.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from typing import Any, AsyncIterator, Callable, Protocol

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from ..types import (
    Closed,
    ConnectionEvent,
    ConnectionState,
    Credentials,
    Errored,
    Message,
    Opened,
)
from .backoff import AsyncioScheduler, Backoff, Cancellable, Scheduler

logger = logging.getLogger(__name__)

ABNORMAL_CLOSURE = 1006


class UpstreamSocket(Protocol):
    close_code: int | None
    close_reason: str | None

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...

    async def close(self) -> None: ...


Connector = Callable[[str, dict[str, str]], AbstractAsyncContextManager[Any]]


def websocket_connector(url: str, headers: dict[str, str]) -> AbstractAsyncContextManager[Any]:
    """Open a client WebSocket with per-message deflate disabled."""
    return connect(url, additional_headers=headers, compression=None)


def _decode(data: str | bytes | bytearray | memoryview) -> str:
    if isinstance(data, str):
        return data
    return bytes(data).decode("utf-8", errors="replace")


def _close_info(exc: ConnectionClosed) -> tuple[int, str]:
    """Close code/reason received from the peer, or 1006 when none arrived."""
    rcvd = getattr(exc, "rcvd", None)
    if rcvd is not None:
        return rcvd.code, rcvd.reason
    return ABNORMAL_CLOSURE, ""


class ReconnectingConnection:
    """Keeps one upstream socket alive, forever retrying with backoff.

    State machine::

        DISCONNECTED -start-> CONNECTING -open-> CONNECTED
        CONNECTING/CONNECTED -error/close-> DISCONNECTED (retry scheduled)
        any -close()-> CLOSING -> DISCONNECTED (no retry until start())

    Every attempt ends with exactly one ``Closed`` or ``Errored`` event and,
    unless ``close()`` was requested, exactly one scheduled retry.
    """

    def __init__(
        self,
        url: str,
        credentials: Credentials,
        sink: Callable[[ConnectionEvent], None],
        *,
        backoff: Backoff | None = None,
        scheduler: Scheduler | None = None,
        connector: Connector = websocket_connector,
    ) -> None:
        self._url = url
        self._credentials = credentials
        self._sink = sink
        self._backoff = backoff or Backoff()
        self._scheduler = scheduler or AsyncioScheduler()
        self._connector = connector
        self._state = ConnectionState.DISCONNECTED
        self._closing = False
        self._socket: UpstreamSocket | None = None
        self._retry: Cancellable | None = None
        self._task: asyncio.Task | None = None
        self.attempts = 0
        self.last_delay: float | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def backoff(self) -> Backoff:
        return self._backoff

    @property
    def retry_pending(self) -> bool:
        return self._retry is not None

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self._credentials.authorization_header()}

    def _emit(self, event: ConnectionEvent) -> None:
        try:
            self._sink(event)
        except Exception:
            logger.exception("Connection event sink failed on %s", type(event).__name__)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin connecting unless an attempt is running or already scheduled."""
        self._closing = False
        if self._retry is not None or (self._task is not None and not self._task.done()):
            return
        self._spawn()

    def _spawn(self) -> None:
        self._retry = None
        self._task = asyncio.ensure_future(self.connect_once())

    async def connect_once(self) -> None:
        """Run a single connection attempt to completion, then schedule a retry."""
        if self._closing:
            return
        self.attempts += 1
        self._state = ConnectionState.CONNECTING
        logger.debug("Connecting to upstream (attempt %d)", self.attempts)

        event: ConnectionEvent
        try:
            async with self._connector(self._url, self._headers()) as ws:
                self._socket = ws
                self._state = ConnectionState.CONNECTED
                self._backoff.reset()
                logger.info("Upstream connected")
                self._emit(Opened())
                async for data in ws:
                    self._emit(Message(_decode(data)))
            event = Closed(ws.close_code, ws.close_reason or "")
        except ConnectionClosed as exc:
            event = Closed(*_close_info(exc))
        except Exception as exc:
            logger.warning("Upstream connection failed: %s", exc)
            event = Errored(str(exc) or type(exc).__name__)
        finally:
            self._socket = None

        self._state = ConnectionState.DISCONNECTED
        if isinstance(event, Closed):
            logger.info("Upstream closed (code=%s reason=%s)", event.code, event.reason)
        self._emit(event)

        if not self._closing:
            self._schedule_retry()

    def _schedule_retry(self) -> None:
        delay = self._backoff.next_delay()
        self.last_delay = delay
        logger.info("Reconnecting to upstream in %.1fs", delay)
        self._retry = self._scheduler.call_later(delay, self._spawn)

    async def close(self) -> None:
        """Stop retrying and close the live socket, if any."""
        self._closing = True
        if self._retry is not None:
            self._retry.cancel()
            self._retry = None
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            self._state = ConnectionState.CLOSING

        task = self._task
        if self._socket is not None:
            await self._socket.close()
        elif task is not None and not task.done():
            task.cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        self._state = ConnectionState.DISCONNECTED
