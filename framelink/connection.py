# =============================================================================
# FrameLink -- Connection Manager
# =============================================================================
#
# Lifecycle state machine: connect, heartbeat, drain, reconnect.
# Owns the transport handle and the attempt counter; nothing else writes
# them.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any, Callable

from ._logging import logger
from .dispatcher import EventDispatcher, Handler
from .errors import FormatError, RetryExhaustedError, TransportError
from .heartbeat import HeartbeatMonitor
from .offline_queue import MessageQueue
from .protocol import FrameCodec
from .reconnect import ReconnectPolicy
from .timers import LoopTimer, Timer
from .transport import Transport
from .types import ConnectionState, ConnectionStats, HeartbeatConfig, ReconnectConfig

TransportFactory = Callable[[], Transport]


class ConnectionManager:
    """Keeps one logical link alive over a sequence of transports.

    All collaborators are injected so tests can substitute fakes.  State
    is only mutated from this object's own callbacks, on the event loop.

    Args:
        transport_factory: Zero-argument callable returning a fresh,
            unopened :class:`Transport` for each attempt.
        timer: Timer for heartbeats and reconnect delays.
        codec: Frame codec.  Defaults to JSON payloads.
        reconnect: A :class:`ReconnectConfig` or a ready
            :class:`ReconnectPolicy`.
        heartbeat: Heartbeat settings.
        dispatcher: Dispatcher that receives decoded frames.
        on_state_change: Called with the new state on every transition.
        on_disconnected: Called with :class:`RetryExhaustedError` when
            retries run out.
        on_error: Called with each :class:`FormatError` from inbound
            frames.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        *,
        timer: Timer | None = None,
        codec: FrameCodec | None = None,
        reconnect: ReconnectConfig | ReconnectPolicy | None = None,
        heartbeat: HeartbeatConfig | None = None,
        dispatcher: EventDispatcher | None = None,
        on_state_change: Callable[[ConnectionState], Any] | None = None,
        on_disconnected: Callable[[RetryExhaustedError], Any] | None = None,
        on_error: Callable[[Exception], Any] | None = None,
    ) -> None:
        self._transport_factory = transport_factory
        self._timer = timer or LoopTimer()
        self._codec = codec or FrameCodec()
        if isinstance(reconnect, ReconnectPolicy):
            self._policy = reconnect
        else:
            self._policy = ReconnectPolicy(reconnect)
        self._heartbeat_cfg = heartbeat or HeartbeatConfig()
        self._heartbeat = HeartbeatMonitor(self._timer)
        self._dispatcher = dispatcher or EventDispatcher()
        self._queue = MessageQueue()

        # Callbacks
        self._on_state_change = on_state_change
        self._on_disconnected = on_disconnected
        self._on_error = on_error

        # State
        self._state = ConnectionState.IDLE
        self._transport: Transport | None = None
        self._attempts = 0
        self._draining = False
        self._last_error: Exception | None = None
        self._reconnect_token: Any | None = None
        self._stats = ConnectionStats()

        self._background_tasks: set[asyncio.Task[Any]] = set()

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN and self._transport is not None

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def queue(self) -> MessageQueue:
        return self._queue

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def codec(self) -> FrameCodec:
        return self._codec

    @property
    def policy(self) -> ReconnectPolicy:
        return self._policy

    @property
    def stats(self) -> ConnectionStats:
        return self._stats

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    # -- Listener registration ------------------------------------------------

    def on(self, type: int, handler: Handler) -> Handler:
        return self._dispatcher.on(type, handler)

    def off(self, type: int, handler: Handler) -> bool:
        return self._dispatcher.off(type, handler)

    # -- Connect / Disconnect -------------------------------------------------

    async def connect(self) -> None:
        """Start (or resume) the link.

        Transport failures never escape: they move the connection to
        CLOSED and schedule a retry, or to DISCONNECTED once retries are
        exhausted.  Calling this from DISCONNECTED starts a fresh retry
        budget.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return
        if self._state == ConnectionState.CLOSING:
            logger.debug("connect() ignored while closing")
            return
        if self._state == ConnectionState.DISCONNECTED:
            self._attempts = 0
            self._last_error = None

        self._cancel_reconnect()
        await self._open_transport()

    async def disconnect(self) -> None:
        """Graceful shutdown.  Queued messages are kept for the next connect."""
        self._cancel_reconnect()
        self._heartbeat.stop()

        transport = self._transport
        self._transport = None
        if transport is None and self._state == ConnectionState.IDLE:
            return

        self._set_state(ConnectionState.CLOSING)
        if transport is not None:
            try:
                await transport.close()
            except Exception as exc:
                logger.debug("Transport close failed: %s", exc)
        self._attempts = 0
        self._set_state(ConnectionState.IDLE)

    # -- Send -----------------------------------------------------------------

    async def send(self, type: int, channel: int, payload: Any = None) -> bool:
        """Encode and send a frame, or queue it while the link is down.

        Returns:
            True if transmitted now, False if queued.

        Raises:
            FormatError: If the frame cannot be encoded.
        """
        data = self._codec.encode(type, channel, payload)
        transport = self._transport

        if (
            self._state != ConnectionState.OPEN
            or transport is None
            or self._draining
            or self._queue
        ):
            self._enqueue(data)
            if (
                self._state == ConnectionState.OPEN
                and transport is not None
                and not self._draining
            ):
                self._fire_task(self._flush_queue(transport))
            return False

        try:
            await transport.send(data)
        except TransportError as exc:
            logger.debug("Send failed, queueing frame: %s", exc)
            self._enqueue(data)
            self._handle_transport_lost(transport, exc)
            return False

        self._stats.frames_sent += 1
        self._stats.bytes_sent += len(data)
        return True

    def _enqueue(self, data: bytes) -> None:
        self._queue.enqueue(data)
        self._stats.messages_queued += 1

    # -- Internal: transport lifecycle ----------------------------------------

    async def _open_transport(self) -> None:
        self._retire_transport()

        transport = self._transport_factory()
        transport.on_open(lambda: self._handle_open(transport))
        transport.on_message(lambda data: self._handle_message(transport, data))
        transport.on_close(lambda error: self._handle_close(transport, error))
        self._transport = transport
        self._set_state(ConnectionState.CONNECTING)

        try:
            await transport.open()
        except Exception as exc:
            error = exc if isinstance(exc, TransportError) else TransportError(str(exc))
            if error is not exc:
                error.__cause__ = exc
            logger.debug("Open failed: %s", error)
            self._handle_transport_lost(transport, error)
            return

        if transport is not self._transport:
            # disconnect() ran while the handshake was in flight
            await self._close_quietly(transport)
            return

        if self._state == ConnectionState.OPEN:
            await self._flush_queue(transport)

    def _handle_open(self, transport: Transport) -> None:
        if transport is not self._transport:
            return
        self._attempts = 0
        self._last_error = None
        self._stats.opened_at = self._timer.now()
        self._set_state(ConnectionState.OPEN)
        logger.info("Connection open")

        cfg = self._heartbeat_cfg
        self._heartbeat.start(
            cfg.interval,
            self._send_heartbeat,
            idle_timeout=cfg.idle_timeout,
            on_idle=lambda: self._handle_idle(transport),
        )

    def _handle_message(self, transport: Transport, data: bytes) -> None:
        if transport is not self._transport:
            return
        self._stats.frames_received += 1
        self._stats.bytes_received += len(data)
        self._heartbeat.touch()

        try:
            frame = self._codec.decode(data)
        except FormatError as exc:
            self._stats.frames_dropped += 1
            logger.warning("Dropping malformed frame (%d bytes): %s", len(data), exc)
            if self._on_error:
                self._on_error(exc)
            return

        if frame.is_heartbeat:
            self._stats.heartbeats_received += 1
            return

        self._dispatcher.emit(frame.type, frame)

    def _handle_close(self, transport: Transport, error: Exception | None) -> None:
        if error is None:
            error = TransportError("Connection closed by peer")
        self._handle_transport_lost(transport, error)

    def _handle_idle(self, transport: Transport) -> None:
        self._handle_transport_lost(transport, TransportError("Idle timeout"))

    def _handle_transport_lost(self, transport: Transport, error: Exception) -> None:
        """Close/error while OPEN or CONNECTING: retry or give up."""
        if transport is not self._transport:
            return
        if self._state not in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            return

        self._heartbeat.stop()
        self._retire_transport()
        self._last_error = error
        self._set_state(ConnectionState.CLOSED)

        retry_index = self._attempts
        self._attempts += 1

        if self._policy.should_retry(retry_index):
            delay = self._policy.next_delay(retry_index)
            max_retries = self._policy.config.max_retries
            logger.info(
                "Reconnecting in %.2fs (attempt %d/%s): %s",
                delay,
                self._attempts,
                max_retries if max_retries >= 0 else "inf",
                error,
            )
            self._stats.reconnect_count += 1
            self._reconnect_token = self._timer.after(delay, self._on_reconnect_timer)
            return

        exhausted = RetryExhaustedError(self._attempts)
        exhausted.__cause__ = error
        self._last_error = exhausted
        logger.error("%s (last error: %s)", exhausted, error)
        self._set_state(ConnectionState.DISCONNECTED)
        if self._on_disconnected:
            self._on_disconnected(exhausted)

    def _on_reconnect_timer(self) -> None:
        self._reconnect_token = None
        if self._state != ConnectionState.CLOSED:
            return
        self._fire_task(self._reconnect())

    async def _reconnect(self) -> None:
        # disconnect() or connect() may have run since the timer fired
        if self._state != ConnectionState.CLOSED:
            return
        await self._open_transport()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_token is not None:
            self._timer.cancel(self._reconnect_token)
            self._reconnect_token = None

    def _retire_transport(self) -> None:
        """Drop the current handle so at most one transport is ever live."""
        transport = self._transport
        self._transport = None
        if transport is not None and transport.is_open:
            self._fire_task(self._close_quietly(transport))

    async def _close_quietly(self, transport: Transport) -> None:
        try:
            await transport.close()
        except Exception as exc:
            logger.debug("Transport close failed: %s", exc)

    # -- Internal: queue drain ------------------------------------------------

    async def _flush_queue(self, transport: Transport) -> None:
        """Drain the offline queue until empty or the link drops."""
        if self._draining:
            return
        self._draining = True
        try:
            while (
                self._queue
                and transport is self._transport
                and self._state == ConnectionState.OPEN
            ):
                sent = await self._queue.drain_to(lambda data: self._send_queued(transport, data))
                if not sent:
                    break
        except TransportError as exc:
            logger.debug("Queue drain interrupted: %s", exc)
            self._handle_transport_lost(transport, exc)
        finally:
            self._draining = False

    async def _send_queued(self, transport: Transport, data: bytes) -> None:
        await transport.send(data)
        self._stats.frames_sent += 1
        self._stats.bytes_sent += len(data)
        self._stats.messages_flushed += 1

    # -- Internal: heartbeat --------------------------------------------------

    async def _send_heartbeat(self) -> None:
        transport = self._transport
        if transport is None or self._state != ConnectionState.OPEN:
            return
        try:
            await transport.send(self._codec.encode_heartbeat())
        except TransportError as exc:
            logger.debug("Heartbeat send failed: %s", exc)
            self._handle_transport_lost(transport, exc)
            return
        self._stats.heartbeats_sent += 1

    # -- State management -----------------------------------------------------

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state == self._state:
            return
        old = self._state
        self._state = new_state
        logger.debug("State: %s -> %s", old.value, new_state.value)
        if self._on_state_change:
            self._on_state_change(new_state)
