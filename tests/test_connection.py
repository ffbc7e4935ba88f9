"""Tests for the connection lifecycle (fake transport, manual clock)."""

import asyncio

import pytest

from conftest import FakeTransport, FakeTransportFactory, settle
from framelink.connection import ConnectionManager
from framelink.constants import HEARTBEAT_TYPE
from framelink.errors import FormatError, HandlerError, RetryExhaustedError, TransportError
from framelink.protocol import FrameCodec
from framelink.types import ConnectionState, Frame, HeartbeatConfig, ReconnectConfig

_codec = FrameCodec()


def _payloads(transport: FakeTransport) -> list:
    return [_codec.decode(d).payload for d in transport.sent if d[0] != HEARTBEAT_TYPE]


def _make(factory, timer, **kwargs) -> ConnectionManager:
    kwargs.setdefault(
        "reconnect",
        ReconnectConfig(base_delay=1.0, max_delay=30.0, max_retries=5, jitter_ratio=0.3),
    )
    kwargs.setdefault("heartbeat", HeartbeatConfig(interval=10.0))
    return ConnectionManager(factory, timer=timer, **kwargs)


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_opens(self, factory, timer):
        states = []
        conn = _make(factory, timer, on_state_change=states.append)
        assert conn.state == ConnectionState.IDLE

        await conn.connect()
        assert conn.state == ConnectionState.OPEN
        assert conn.is_open
        assert conn.attempts == 0
        assert states == [ConnectionState.CONNECTING, ConnectionState.OPEN]
        assert timer.scheduled == [10.0]  # heartbeat only

    @pytest.mark.asyncio
    async def test_connect_when_open_is_noop(self, factory, timer):
        conn = _make(factory, timer)
        await conn.connect()
        await conn.connect()
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_open_failure_does_not_raise(self, timer):
        factory = FakeTransportFactory(failures=1)
        conn = _make(factory, timer)
        await conn.connect()
        assert conn.state == ConnectionState.CLOSED
        assert conn.attempts == 1
        assert isinstance(conn.last_error, TransportError)


class TestReconnect:
    @pytest.mark.asyncio
    async def test_fails_twice_then_opens_and_drains(self, timer):
        factory = FakeTransportFactory(failures=2)
        conn = _make(factory, timer)

        await conn.connect()
        assert conn.state == ConnectionState.CLOSED
        assert await conn.send(1, 7, {"n": 1}) is False

        timer.fire_next()
        await settle()
        assert conn.state == ConnectionState.CLOSED
        assert await conn.send(1, 7, {"n": 2}) is False

        timer.fire_next()
        await settle()
        assert conn.state == ConnectionState.OPEN
        assert conn.attempts == 0

        first, second = timer.scheduled[:2]
        assert 1.0 <= first <= 1.0 * 1.3
        assert 2.0 <= second <= 2.0 * 1.3
        assert conn.stats.reconnect_count == 2
        assert len(factory.created) == 3
        assert _payloads(factory.last) == [{"n": 1}, {"n": 2}]
        assert conn.queue.size == 0

    @pytest.mark.asyncio
    async def test_retry_exhaustion_is_terminal(self, timer):
        factory = FakeTransportFactory(failures=10)
        exhausted = []
        states = []
        conn = _make(
            factory,
            timer,
            reconnect=ReconnectConfig(base_delay=1.0, max_retries=2),
            on_disconnected=exhausted.append,
            on_state_change=states.append,
        )

        await conn.connect()
        timer.fire_next()
        await settle()
        timer.fire_next()
        await settle()

        assert conn.state == ConnectionState.DISCONNECTED
        assert len(exhausted) == 1
        assert isinstance(exhausted[0], RetryExhaustedError)
        assert exhausted[0].attempts == 3
        assert conn.last_error is exhausted[0]
        assert timer.pending == []
        assert len(factory.created) == 3
        assert states[-1] == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_connect_resumes_after_disconnected(self, timer):
        factory = FakeTransportFactory(failures=1)
        conn = _make(factory, timer, reconnect=ReconnectConfig(max_retries=0))
        await conn.connect()
        assert conn.state == ConnectionState.DISCONNECTED

        await conn.connect()
        assert conn.state == ConnectionState.OPEN
        assert conn.last_error is None

    @pytest.mark.asyncio
    async def test_drop_while_open_reconnects(self, factory, timer):
        conn = _make(factory, timer)
        await conn.connect()
        first = factory.last

        first.drop()
        assert conn.state == ConnectionState.CLOSED
        assert conn.attempts == 1
        assert len(timer.pending) == 1  # reconnect; heartbeat cancelled

        timer.fire_next()
        await settle()
        assert conn.state == ConnectionState.OPEN
        assert factory.last is not first

    @pytest.mark.asyncio
    async def test_clean_peer_close_also_reconnects(self, factory, timer):
        conn = _make(factory, timer)
        await conn.connect()
        await factory.last.close()
        assert conn.state == ConnectionState.CLOSED
        assert conn.stats.reconnect_count == 1

    @pytest.mark.asyncio
    async def test_stale_transport_is_ignored(self, factory, timer):
        received = []
        conn = _make(factory, timer)
        conn.on(1, received.append)
        await conn.connect()
        old = factory.last
        old.drop()
        timer.fire_next()
        await settle()

        old.receive(_codec.encode(1, 1, "stale"))
        old.drop()
        assert received == []
        assert conn.state == ConnectionState.OPEN

    @pytest.mark.asyncio
    async def test_send_failure_requeues_and_reconnects(self, factory, timer):
        conn = _make(factory, timer)
        await conn.connect()
        factory.last.fail_send = True

        assert await conn.send(2, 5, "keep me") is False
        assert conn.state == ConnectionState.CLOSED
        assert conn.queue.size == 1

        timer.fire_next()
        await settle()
        assert _payloads(factory.last) == ["keep me"]


class TestSend:
    @pytest.mark.asyncio
    async def test_send_when_open(self, factory, timer):
        conn = _make(factory, timer)
        await conn.connect()
        assert await conn.send(3, 42, {"text": "hi"}) is True
        assert _codec.decode(factory.last.sent[0]) == Frame(3, 42, {"text": "hi"})
        assert conn.stats.frames_sent == 1

    @pytest.mark.asyncio
    async def test_send_while_idle_is_queued_then_flushed_in_order(self, factory, timer):
        conn = _make(factory, timer)
        for n in range(3):
            assert await conn.send(1, 1, n) is False
        assert conn.queue.size == 3

        await conn.connect()
        assert _payloads(factory.last) == [0, 1, 2]
        assert conn.stats.messages_flushed == 3

    @pytest.mark.asyncio
    async def test_new_sends_wait_behind_drain(self, timer):
        class SlowTransport(FakeTransport):
            async def _send(self, data):
                await asyncio.sleep(0)
                await super()._send(data)

        transports = []

        def factory():
            transports.append(SlowTransport())
            return transports[-1]

        conn = _make(factory, timer)
        for n in range(3):
            await conn.send(1, 1, f"q{n}")

        connect_task = asyncio.create_task(conn.connect())
        await asyncio.sleep(0)
        assert conn.state == ConnectionState.OPEN
        assert await conn.send(1, 1, "late") is False
        await connect_task
        await settle()

        assert _payloads(transports[0]) == ["q0", "q1", "q2", "late"]

    @pytest.mark.asyncio
    async def test_encode_error_raises(self, factory, timer):
        conn = _make(factory, timer)
        await conn.connect()
        with pytest.raises(FormatError):
            await conn.send(999, 1, {})


class TestInbound:
    @pytest.mark.asyncio
    async def test_frames_reach_dispatcher(self, factory, timer):
        received = []
        conn = _make(factory, timer)
        conn.on(4, received.append)
        await conn.connect()

        factory.last.receive(_codec.encode(4, 11, {"x": 1}))
        assert received == [Frame(4, 11, {"x": 1})]
        assert conn.stats.frames_received == 1

    @pytest.mark.asyncio
    async def test_heartbeat_not_dispatched(self, factory, timer):
        received = []
        conn = _make(factory, timer)
        conn.on(HEARTBEAT_TYPE, received.append)
        conn.dispatcher.on_any(received.append)
        await conn.connect()

        factory.last.receive(bytes([HEARTBEAT_TYPE]))
        factory.last.receive(_codec.encode_heartbeat())
        assert received == []
        assert conn.stats.heartbeats_received == 2

    @pytest.mark.asyncio
    async def test_malformed_frame_is_dropped(self, factory, timer):
        errors = []
        conn = _make(factory, timer, on_error=errors.append)
        await conn.connect()

        factory.last.receive(b"\x01\x02")
        assert conn.state == ConnectionState.OPEN
        assert conn.stats.frames_dropped == 1
        assert len(errors) == 1
        assert isinstance(errors[0], FormatError)

    @pytest.mark.asyncio
    async def test_handler_error_propagates(self, factory, timer):
        conn = _make(factory, timer)

        def boom(frame):
            raise ValueError("handler bug")

        conn.on(1, boom)
        await conn.connect()
        with pytest.raises(HandlerError):
            factory.last.receive(_codec.encode(1, 1, None))

    @pytest.mark.asyncio
    async def test_off_unregisters(self, factory, timer):
        received = []
        conn = _make(factory, timer)
        conn.on(1, received.append)
        assert conn.off(1, received.append) is True
        await conn.connect()
        factory.last.receive(_codec.encode(1, 1, None))
        assert received == []


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_pings_while_open(self, factory, timer):
        conn = _make(factory, timer, heartbeat=HeartbeatConfig(interval=5.0))
        await conn.connect()

        timer.advance(10.0)
        await settle()
        pings = [d for d in factory.last.sent if d[0] == HEARTBEAT_TYPE]
        assert len(pings) == 2
        assert conn.stats.heartbeats_sent == 2

    @pytest.mark.asyncio
    async def test_idle_timeout_triggers_reconnect(self, factory, timer):
        conn = _make(
            factory,
            timer,
            heartbeat=HeartbeatConfig(interval=1.0, idle_timeout=2.5),
        )
        await conn.connect()
        first = factory.last

        timer.advance(3.0)
        await settle()
        assert conn.state == ConnectionState.CLOSED
        assert isinstance(conn.last_error, TransportError)
        assert first.closed

    @pytest.mark.asyncio
    async def test_inbound_traffic_resets_idle(self, factory, timer):
        conn = _make(
            factory,
            timer,
            heartbeat=HeartbeatConfig(interval=1.0, idle_timeout=2.5),
        )
        await conn.connect()
        for _ in range(5):
            timer.advance(1.0)
            factory.last.receive(_codec.encode_heartbeat())
        await settle()
        assert conn.state == ConnectionState.OPEN


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect(self, factory, timer):
        states = []
        conn = _make(factory, timer, on_state_change=states.append)
        await conn.connect()
        transport = factory.last

        await conn.disconnect()
        assert conn.state == ConnectionState.IDLE
        assert states[-2:] == [ConnectionState.CLOSING, ConnectionState.IDLE]
        assert transport.closed
        assert timer.pending == []
        assert conn.transport is None

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_retry(self, timer):
        factory = FakeTransportFactory(failures=1)
        conn = _make(factory, timer)
        await conn.connect()
        assert len(timer.pending) == 1

        await conn.disconnect()
        assert timer.pending == []
        assert conn.state == ConnectionState.IDLE
        assert conn.attempts == 0

    @pytest.mark.asyncio
    async def test_disconnect_after_retry_fired_stays_idle(self, timer):
        factory = FakeTransportFactory(failures=1)
        conn = _make(factory, timer)
        await conn.connect()

        # The retry has been scheduled as a task but has not started yet.
        timer.fire_next()
        await conn.disconnect()
        await settle()

        assert conn.state == ConnectionState.IDLE
        assert len(factory.created) == 1
        assert conn.transport is None

    @pytest.mark.asyncio
    async def test_disconnect_when_idle_is_noop(self, factory, timer):
        states = []
        conn = _make(factory, timer, on_state_change=states.append)
        await conn.disconnect()
        assert states == []

    @pytest.mark.asyncio
    async def test_queue_survives_disconnect(self, factory, timer):
        conn = _make(factory, timer)
        await conn.connect()
        await conn.disconnect()
        await conn.send(1, 1, "later")
        assert conn.queue.size == 1

        await conn.connect()
        assert _payloads(factory.last) == ["later"]
