"""Tests for the WebSocket gateway: batching, fan-out, snapshots and client requests."""

import asyncio

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from conftest import EventRecorder, FakeConnection, make_tick
from tickstream.bus.events import ErrorEvent
from tickstream.constants import ConnectionStatus, EventKind
from tickstream.gateway.connection import ConnectionSendError, WebSocketConnection
from tickstream.gateway.ws_gateway import WSGateway
from tickstream.metrics.stats import calculate
from tickstream.protocol.codec import (
    ErrorMessage,
    MetricsMessage,
    SnapshotMessage,
    TickBatchMessage,
)


@pytest.fixture
def gateway(bus, scheduler):
    return WSGateway(bus, scheduler=scheduler)


def publish_ticks(bus, count, start=0):
    ticks = [make_tick(i) for i in range(start, start + count)]
    for tick in ticks:
        bus.publish(EventKind.TICK, tick)
    return ticks


class TestBatching:
    def test_full_batch_flushes_immediately(self, bus, gateway):
        conn = FakeConnection()
        gateway.register(conn)

        ticks = publish_ticks(bus, 10)

        messages = conn.messages
        assert len(messages) == 2
        assert messages[0] == TickBatchMessage(tuple(ticks))
        assert isinstance(messages[1], MetricsMessage)
        assert messages[1].metrics.total_ticks == 10
        assert gateway.pending_batch_size == 0

    def test_partial_batch_flushes_after_delay(self, bus, gateway, scheduler):
        conn = FakeConnection()
        gateway.register(conn)

        ticks = publish_ticks(bus, 3)
        assert conn.sent == []

        scheduler.advance(0.06)

        messages = conn.messages
        assert messages[0] == TickBatchMessage(tuple(ticks))
        assert messages[1].metrics.total_ticks == 3
        assert len(messages) == 2

    def test_delay_runs_from_first_tick_of_batch(self, bus, gateway, scheduler):
        conn = FakeConnection()
        gateway.register(conn)

        publish_ticks(bus, 1)
        scheduler.advance(0.03)
        publish_ticks(bus, 1, start=1)
        scheduler.advance(0.021)

        assert len(conn.messages[0].ticks) == 2

    def test_metrics_sent_immediately_without_pending_batch(self, bus, gateway):
        conn = FakeConnection()
        gateway.register(conn)
        metrics = calculate([make_tick()])

        bus.publish(EventKind.METRICS, metrics)

        assert conn.messages == [MetricsMessage(metrics)]

    def test_flush_without_ticks_sends_nothing(self, gateway):
        conn = FakeConnection()
        gateway.register(conn)
        assert gateway.flush() == 0
        assert conn.sent == []

    def test_invalid_batch_size(self, bus):
        with pytest.raises(ValueError):
            WSGateway(bus, batch_size=0)


class TestFanOut:
    def test_every_client_receives_the_same_frame(self, bus, gateway):
        a, b = FakeConnection(), FakeConnection()
        gateway.register(a)
        gateway.register(b)

        publish_ticks(bus, 10)

        assert a.sent == b.sent
        assert len(a.sent) == 2

    def test_failing_client_is_pruned_and_others_still_receive(self, bus, gateway):
        recorder = EventRecorder(bus, EventKind.CONNECTION_STATUS)
        good_1, bad, good_2 = FakeConnection(), FakeConnection(fail=True), FakeConnection()
        gateway.register(good_1)
        bad_id = gateway.register(bad)
        gateway.register(good_2)

        publish_ticks(bus, 10)

        assert len(good_1.messages) == 2
        assert len(good_2.messages) == 2
        assert bad_id not in gateway.client_ids
        assert gateway.connection_count == 2
        disconnected = [
            e.client_id
            for e in recorder[EventKind.CONNECTION_STATUS]
            if e.status is ConnectionStatus.DISCONNECTED
        ]
        assert disconnected == [bad_id]

        # Gone on the next broadcast too
        assert gateway.broadcast(ErrorMessage("next")) == 2

    def test_closed_client_is_pruned(self, bus, gateway):
        conn = FakeConnection()
        gateway.register(conn)
        conn.open = False

        assert gateway.broadcast(ErrorMessage("x")) == 0
        assert gateway.connection_count == 0

    def test_error_events_are_broadcast(self, bus, gateway):
        conn = FakeConnection()
        gateway.register(conn)

        bus.publish(EventKind.ERROR, ErrorEvent("No data loaded for replay"))

        assert conn.messages == [ErrorMessage("No data loaded for replay")]

    def test_failed_snapshot_reports_connect_before_disconnect(self, bus, gateway):
        publish_ticks(bus, 1)
        recorder = EventRecorder(bus, EventKind.CONNECTION_STATUS)

        client_id = gateway.register(FakeConnection(fail=True))

        events = recorder[EventKind.CONNECTION_STATUS]
        assert [(e.status, e.client_id) for e in events] == [
            (ConnectionStatus.CONNECTED, client_id),
            (ConnectionStatus.DISCONNECTED, client_id),
        ]
        assert gateway.connection_count == 0

    def test_connection_events(self, bus, gateway):
        recorder = EventRecorder(bus, EventKind.CONNECTION_STATUS)

        client_id = gateway.register(FakeConnection())
        gateway.unregister(client_id)
        gateway.unregister(client_id)

        events = recorder[EventKind.CONNECTION_STATUS]
        assert [(e.status, e.client_id) for e in events] == [
            (ConnectionStatus.CONNECTED, client_id),
            (ConnectionStatus.DISCONNECTED, client_id),
        ]


class TestSnapshots:
    def test_no_snapshot_when_buffer_empty(self, gateway):
        conn = FakeConnection()
        gateway.register(conn)
        assert conn.sent == []

    def test_snapshot_on_connect_is_newest_first(self, bus, gateway):
        ticks = publish_ticks(bus, 3)
        gateway.flush()

        conn = FakeConnection()
        gateway.register(conn)

        assert conn.messages == [SnapshotMessage(tuple(reversed(ticks)))]

    def test_snapshot_is_bounded(self, bus, scheduler):
        gateway = WSGateway(bus, scheduler=scheduler, max_recent_ticks=5, snapshot_size=3)
        ticks = publish_ticks(bus, 8)

        conn = FakeConnection()
        gateway.register(conn)

        assert len(gateway.recent_ticks) == 5
        assert conn.messages[0] == SnapshotMessage((ticks[7], ticks[6], ticks[5]))


class TestClientRequests:
    def test_request_snapshot(self, bus, gateway):
        ticks = publish_ticks(bus, 2)
        conn = FakeConnection()
        client_id = gateway.register(conn)
        conn.sent.clear()

        gateway.handle_client_message(client_id, '{"type": "request_snapshot"}')

        assert conn.messages == [SnapshotMessage((ticks[1], ticks[0]))]

    def test_request_metrics(self, bus, gateway):
        publish_ticks(bus, 10)
        conn = FakeConnection()
        client_id = gateway.register(conn)
        conn.sent.clear()

        gateway.handle_client_message(client_id, '{"type": "request_metrics"}')

        (message,) = conn.messages
        assert isinstance(message, MetricsMessage)
        assert message.metrics.total_ticks == 10

    def test_invalid_json_errors_only_that_client(self, gateway):
        sender, other = FakeConnection(), FakeConnection()
        sender_id = gateway.register(sender)
        gateway.register(other)

        gateway.handle_client_message(sender_id, "{not json")

        assert sender.messages == [ErrorMessage("Invalid message format")]
        assert other.sent == []
        assert gateway.connection_count == 2

    def test_unknown_request_is_ignored(self, gateway, caplog):
        conn = FakeConnection()
        client_id = gateway.register(conn)

        gateway.handle_client_message(client_id, '{"type": "subscribe"}')

        assert conn.sent == []
        assert "Unknown message type" in caplog.text

    def test_message_from_unknown_client_is_ignored(self, gateway):
        gateway.handle_client_message("client-99", '{"type": "request_snapshot"}')


@pytest.mark.asyncio
async def test_stop_flushes_and_closes_clients(bus, gateway):
    conn = FakeConnection()
    gateway.register(conn)
    publish_ticks(bus, 3)

    await gateway.stop()

    assert isinstance(conn.messages[0], TickBatchMessage)
    assert conn.close_calls == 1
    assert gateway.connection_count == 0
    assert bus.subscriber_count(EventKind.TICK) == 0


@pytest.mark.asyncio
async def test_pruned_client_is_closed_in_background(bus, gateway):
    bad = FakeConnection(fail=True)
    gateway.register(bad)

    gateway.broadcast(ErrorMessage("x"))
    await asyncio.sleep(0)

    assert bad.close_calls == 1


class StubWebSocket:
    """Minimal stand-in for a websockets server connection."""

    remote_address = ("127.0.0.1", 5555)

    def __init__(self):
        self.state = State.OPEN
        self.sent = []
        self.gate = asyncio.Event()
        self.closed_with_error = False

    async def send(self, data):
        await self.gate.wait()
        if self.closed_with_error:
            raise ConnectionClosed(None, None)
        self.sent.append(data)

    async def close(self):
        self.state = State.CLOSED


class TestWebSocketConnection:
    @pytest.mark.asyncio
    async def test_full_queue_is_a_send_failure(self):
        ws = StubWebSocket()
        conn = WebSocketConnection(ws, max_pending=2)

        conn.send("a")
        conn.send("b")
        with pytest.raises(ConnectionSendError, match="queue full"):
            conn.send("c")

        ws.gate.set()
        await conn.close()
        assert ws.sent == ["a", "b"]
        assert not conn.is_open

    @pytest.mark.asyncio
    async def test_send_after_close_fails(self):
        ws = StubWebSocket()
        conn = WebSocketConnection(ws)
        await conn.close()

        with pytest.raises(ConnectionSendError):
            conn.send("late")

    @pytest.mark.asyncio
    async def test_peer_disconnect_stops_writer(self):
        ws = StubWebSocket()
        ws.closed_with_error = True
        ws.gate.set()
        conn = WebSocketConnection(ws)

        conn.send("a")
        await asyncio.sleep(0.01)

        assert not conn.is_open
        await conn.close()
        assert conn.remote_address == "127.0.0.1:5555"
