"""Tests for the reconnecting upstream connection state machine."""

from __future__ import annotations

import asyncio
import base64

import pytest
from websockets.exceptions import ConnectionClosedError
from websockets.frames import Close

from conftest import FakeConnector, FakeScheduler, FakeSocket
from ws_log_mcp.core.backoff import Backoff
from ws_log_mcp.core.connection import ReconnectingConnection
from ws_log_mcp.types import Closed, ConnectionState, Errored, Message, Opened


def _make(connector, scheduler, credentials, initial=1.0, maximum=30.0):
    events: list = []
    conn = ReconnectingConnection(
        "wss://logs.example/ws?appId=1",
        credentials,
        events.append,
        backoff=Backoff(initial, maximum),
        scheduler=scheduler,
        connector=connector,
    )
    return conn, events


class TestEvents:
    @pytest.mark.asyncio
    async def test_open_messages_close(self, scheduler, credentials):
        socket = FakeSocket(["hello", b"caf\xc3\xa9"], close_code=1000, close_reason="bye")
        conn, events = _make(FakeConnector(socket), scheduler, credentials)

        await conn.connect_once()

        assert isinstance(events[0], Opened)
        assert events[1] == Message("hello")
        assert events[2] == Message("café")
        assert isinstance(events[3], Closed)
        assert (events[3].code, events[3].reason) == (1000, "bye")
        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_replaced(self, scheduler, credentials):
        conn, events = _make(FakeConnector(FakeSocket([b"\xff ok"])), scheduler, credentials)
        await conn.connect_once()
        assert events[1] == Message("\ufffd ok")

    @pytest.mark.asyncio
    async def test_connect_failure_is_errored_event(self, scheduler, credentials):
        conn, events = _make(FakeConnector(OSError("connection refused")), scheduler, credentials)
        await conn.connect_once()
        assert len(events) == 1
        assert isinstance(events[0], Errored)
        assert events[0].message == "connection refused"
        assert "WebSocket error: connection refused" in events[0].describe()

    @pytest.mark.asyncio
    async def test_abnormal_close_mid_stream(self, scheduler, credentials):
        socket = FakeSocket(["a", ConnectionClosedError(Close(1011, "server restart"), None)])
        conn, events = _make(FakeConnector(socket), scheduler, credentials)
        await conn.connect_once()
        assert events[-1].code == 1011
        assert events[-1].reason == "server restart"

    @pytest.mark.asyncio
    async def test_close_without_frame_reports_1006(self, scheduler, credentials):
        socket = FakeSocket([ConnectionClosedError(None, None)])
        conn, events = _make(FakeConnector(socket), scheduler, credentials)
        await conn.connect_once()
        assert events[-1].code == 1006

    @pytest.mark.asyncio
    async def test_basic_auth_header_on_every_attempt(self, scheduler, credentials):
        connector = FakeConnector(OSError("x"), OSError("y"))
        conn, _ = _make(connector, scheduler, credentials)
        await conn.connect_once()
        await conn.connect_once()

        expected = "Basic " + base64.b64encode(b"alice:s3cret:with-colon").decode()
        assert [h["Authorization"] for _, h in connector.calls] == [expected, expected]
        assert connector.calls[0][0] == "wss://logs.example/ws?appId=1"

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_stop_retry(self, scheduler, credentials):
        def broken_sink(event):
            raise RuntimeError("sink down")

        conn = ReconnectingConnection(
            "wss://x", credentials, broken_sink,
            scheduler=scheduler, connector=FakeConnector(OSError("nope")),
        )
        await conn.connect_once()
        assert len(scheduler.pending) == 1


class TestBackoffScheduling:
    @pytest.mark.asyncio
    async def test_fail_fail_succeed_then_fail(self, scheduler, credentials):
        connector = FakeConnector(
            OSError("down"),
            OSError("still down"),
            FakeSocket(["up"]),
            OSError("down again"),
        )
        conn, events = _make(connector, scheduler, credentials, initial=1.0, maximum=30.0)

        await conn.connect_once()
        assert scheduler.delays == [1.0]
        await conn.connect_once()
        assert scheduler.delays == [1.0, 2.0]
        await conn.connect_once()  # opens, then the socket closes cleanly
        assert scheduler.delays == [1.0, 2.0, 1.0]
        await conn.connect_once()
        assert scheduler.delays == [1.0, 2.0, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_delay_capped_at_maximum(self, scheduler, credentials):
        connector = FakeConnector(*[OSError("down") for _ in range(6)])
        conn, _ = _make(connector, scheduler, credentials, initial=1.0, maximum=5.0)
        for _ in range(6):
            await conn.connect_once()
        assert scheduler.delays == [1.0, 2.0, 4.0, 5.0, 5.0, 5.0]
        assert conn.last_delay == 5.0

    @pytest.mark.asyncio
    async def test_exactly_one_retry_per_attempt(self, scheduler, credentials):
        conn, _ = _make(FakeConnector(FakeSocket(["x"])), scheduler, credentials)
        await conn.connect_once()
        assert len(scheduler.handles) == 1

    @pytest.mark.asyncio
    async def test_scheduled_retry_reconnects(self, scheduler, credentials):
        connector = FakeConnector(OSError("down"), FakeSocket(["line"]))
        conn, events = _make(connector, scheduler, credentials)

        conn.start()
        await conn._task
        assert conn.retry_pending

        scheduler.fire()
        await conn._task
        assert len(connector.calls) == 2
        assert Message("line") in events

    @pytest.mark.asyncio
    async def test_start_is_noop_while_retry_pending(self, scheduler, credentials):
        connector = FakeConnector(OSError("down"))
        conn, _ = _make(connector, scheduler, credentials)
        conn.start()
        await conn._task
        conn.start()
        await asyncio.sleep(0)
        assert len(connector.calls) == 1


class TestClose:
    @pytest.mark.asyncio
    async def test_close_cancels_pending_retry(self, scheduler, credentials):
        conn, _ = _make(FakeConnector(OSError("down")), scheduler, credentials)
        await conn.connect_once()
        handle = scheduler.handles[0]

        await conn.close()

        assert handle.cancelled
        assert not conn.retry_pending
        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_close_live_socket_emits_closed_without_retry(self, scheduler, credentials):
        gate = asyncio.Event()

        class BlockingSocket(FakeSocket):
            async def _iter(self):
                yield "first"
                await gate.wait()

            async def close(self):
                self.closed = True
                gate.set()

        socket = BlockingSocket(close_code=1000)
        conn, events = _make(FakeConnector(socket), scheduler, credentials)
        conn.start()
        await asyncio.sleep(0.01)
        assert conn.state is ConnectionState.CONNECTED

        await conn.close()

        assert socket.closed
        assert isinstance(events[-1], Closed)
        assert scheduler.handles == []
        assert conn.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_connect_once_after_close_does_nothing(self, scheduler, credentials):
        connector = FakeConnector(FakeSocket())
        conn, events = _make(connector, scheduler, credentials)
        await conn.close()
        await conn.connect_once()
        assert connector.calls == []
        assert events == []
