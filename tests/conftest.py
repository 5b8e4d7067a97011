"""Shared fixtures and fakes for ws-log-mcp tests."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Callable

import pytest

from ws_log_mcp.core.log_buffer import LogBuffer
from ws_log_mcp.mcp.server import LogBridge
from ws_log_mcp.types import Credentials


class FakeHandle:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Records delayed callbacks instead of running them; ``fire()`` runs the next one."""

    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []

    @property
    def delays(self) -> list[float]:
        return [h.delay for h in self.handles]

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    def fire(self) -> None:
        handle = self.pending[0]
        handle.cancelled = True
        handle.callback()


class FakeSocket:
    """Async-iterable stand-in for a client WebSocket."""

    def __init__(self, frames=(), close_code: int | None = 1000, close_reason: str = "") -> None:
        self.frames = list(frames)
        self.close_code = close_code
        self.close_reason = close_reason
        self.closed = False

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for frame in self.frames:
            if self.closed:
                return
            if isinstance(frame, BaseException):
                raise frame
            yield frame

    async def close(self) -> None:
        self.closed = True


class FakeConnector:
    """Scripted connector: each attempt pops the next socket or exception."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, dict[str, str]]] = []

    def __call__(self, url: str, headers: dict[str, str]):
        self.calls.append((url, dict(headers)))
        outcome = self.outcomes.pop(0)

        @asynccontextmanager
        async def _open():
            if isinstance(outcome, BaseException):
                raise outcome
            yield outcome

        return _open()


class FakePeer:
    """Records resource-updated notifications; optionally raises or hangs."""

    def __init__(self, error: BaseException | None = None, hang: bool = False) -> None:
        self.error = error
        self.hang = hang
        self.uris: list[str] = []

    async def send_resource_updated(self, uri) -> None:
        if self.error is not None:
            raise self.error
        if self.hang:
            import asyncio
            await asyncio.sleep(3600)
        self.uris.append(str(uri).rstrip("/"))


@pytest.fixture
def credentials() -> Credentials:
    return Credentials("alice", "s3cret:with-colon")


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def buffer() -> LogBuffer:
    return LogBuffer(capacity=3)


@pytest.fixture
def bridge() -> LogBridge:
    return LogBridge(capacity=100, notify_timeout=0.5)
