# =============================================================================
# FrameLink -- Async Client
# =============================================================================
#
# Primary public API.  Async context manager, async iterator, callbacks.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from ._logging import logger
from .connection import ConnectionManager, TransportFactory
from .constants import FRAME_QUEUE_SIZE
from .dispatcher import EventDispatcher
from .errors import RetryExhaustedError, TransportError
from .protocol import FrameCodec
from .reconnect import ReconnectPolicy
from .serializers import Serializer
from .timers import Timer
from .transport import WebSocketTransport
from .types import ConnectionState, Frame, HeartbeatConfig, ReconnectConfig

FrameHandler = Callable[[Frame], Any]
AsyncFrameHandler = Callable[[Frame], Awaitable[Any]]


class AsyncFrameClient:
    """Async client with context manager and async iterator support.

    Args:
        url: WebSocket server URL, e.g. ``"ws://localhost:8765/link"``.
        reconnect: Backoff config or policy.  Defaults to
            :class:`ReconnectConfig`.
        heartbeat: Heartbeat settings.
        serializer: Payload serializer.  Defaults to JSON.
        extra_headers: Additional HTTP headers for the handshake.
        queue_size: Max frames buffered for the async iterator.  When
            full, the oldest frame is dropped.
        transport_factory: Overrides the WebSocket transport.
        timer: Overrides the event-loop timer.

    Example::

        async with AsyncFrameClient("ws://localhost:8765/link") as client:
            await client.send(1, 42, {"text": "hello"})
            async for frame in client:
                print(frame.type, frame.channel, frame.payload)
    """

    def __init__(
        self,
        url: str,
        *,
        reconnect: ReconnectConfig | ReconnectPolicy | None = None,
        heartbeat: HeartbeatConfig | None = None,
        serializer: Serializer | None = None,
        extra_headers: dict[str, str] | None = None,
        queue_size: int = FRAME_QUEUE_SIZE,
        transport_factory: TransportFactory | None = None,
        timer: Timer | None = None,
    ) -> None:
        self._url = url
        self._extra_headers = extra_headers

        self._dispatcher = EventDispatcher()
        self._dispatcher.on_any(self._enqueue_frame)

        # Frame queue for async iteration
        self._frame_queue: asyncio.Queue[Frame | None] = asyncio.Queue(
            maxsize=queue_size
        )
        self._disconnecting = False
        self._open_event = asyncio.Event()
        self._frames_dropped = 0

        self._connection = ConnectionManager(
            transport_factory or self._make_transport,
            timer=timer,
            codec=FrameCodec(serializer),
            reconnect=reconnect,
            heartbeat=heartbeat,
            dispatcher=self._dispatcher,
            on_state_change=self._on_state_change,
            on_disconnected=self._on_disconnected,
        )

    def _make_transport(self) -> WebSocketTransport:
        return WebSocketTransport(self._url, extra_headers=self._extra_headers)

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> AsyncFrameClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    # -- Async iterator -------------------------------------------------------

    def __aiter__(self) -> AsyncFrameClient:
        return self

    async def __anext__(self) -> Frame:
        frame = await self._frame_queue.get()
        if frame is None:
            self._push_sentinel()
            raise StopAsyncIteration
        return frame

    # -- Connect / Disconnect -------------------------------------------------

    async def connect(self) -> None:
        """Start the link.  Failed attempts are retried in the background.

        Also resumes after ``disconnect()`` or a permanent disconnect; the
        end-of-iteration marker left by either is discarded.
        """
        self._clear_sentinels()
        await self._connection.connect()

    async def disconnect(self) -> None:
        """Disconnect gracefully and end iteration."""
        self._disconnecting = True
        try:
            await self._connection.disconnect()
        finally:
            self._disconnecting = False
        self._push_sentinel()

    async def close(self) -> None:
        """Alias for disconnect."""
        await self.disconnect()

    async def wait_open(self, timeout: float | None = None) -> None:
        """Wait until the link is open.

        Raises:
            asyncio.TimeoutError: If *timeout* expires first.
        """
        await asyncio.wait_for(self._open_event.wait(), timeout=timeout)

    # -- Properties -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_open(self) -> bool:
        return self._connection.is_open

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def queue_size(self) -> int:
        """Number of frames waiting in the iterator queue."""
        return self._frame_queue.qsize()

    # -- Send / Receive -------------------------------------------------------

    async def send(self, type: int, channel: int, payload: Any = None) -> bool:
        """Send a frame, queueing it while disconnected.

        Returns:
            True if transmitted now, False if queued for the next open.
        """
        return await self._connection.send(type, channel, payload)

    async def recv(self, timeout: float | None = None) -> Frame:
        """Receive a single frame (alternative to async iteration).

        Raises:
            TransportError: If the client has stopped.
            asyncio.TimeoutError: If *timeout* expires.
        """
        if timeout is not None:
            frame = await asyncio.wait_for(self._frame_queue.get(), timeout=timeout)
        else:
            frame = await self._frame_queue.get()

        if frame is None:
            # Re-queue sentinel so other callers also see the close signal
            self._push_sentinel()
            raise TransportError("Connection closed")
        return frame

    # -- Handler registration -------------------------------------------------

    def on(
        self, type: int
    ) -> Callable[[FrameHandler | AsyncFrameHandler], FrameHandler | AsyncFrameHandler]:
        """Decorator to register a handler for one frame type.

        Example::

            @client.on(1)
            async def handle(frame: Frame):
                print(frame.payload)
        """

        def decorator(
            fn: FrameHandler | AsyncFrameHandler,
        ) -> FrameHandler | AsyncFrameHandler:
            self._dispatcher.on(type, fn)
            return fn

        return decorator

    def on_any(
        self, fn: FrameHandler | AsyncFrameHandler
    ) -> FrameHandler | AsyncFrameHandler:
        """Register a wildcard handler that receives all frames."""
        self._dispatcher.on_any(fn)
        return fn

    def off(self, type: int, fn: FrameHandler | AsyncFrameHandler) -> None:
        """Remove a specific handler."""
        self._dispatcher.off(type, fn)

    # -- Stats ----------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return client statistics."""
        stats = self._connection.stats
        last_error = self._connection.last_error
        return {
            "state": self._connection.state.value,
            "attempts": self._connection.attempts,
            "frames_sent": stats.frames_sent,
            "frames_received": stats.frames_received,
            "bytes_sent": stats.bytes_sent,
            "bytes_received": stats.bytes_received,
            "heartbeats_sent": stats.heartbeats_sent,
            "heartbeats_received": stats.heartbeats_received,
            "frames_dropped": stats.frames_dropped,
            "reconnect_count": stats.reconnect_count,
            "iterator_queue_size": self._frame_queue.qsize(),
            "iterator_frames_dropped": self._frames_dropped,
            "offline_queue": self._connection.queue.get_stats(),
            "last_error": str(last_error) if last_error else None,
        }

    # -- Internal -------------------------------------------------------------

    def _enqueue_frame(self, frame: Frame) -> None:
        try:
            self._frame_queue.put_nowait(frame)
        except asyncio.QueueFull:
            # Drop oldest to make room
            self._frames_dropped += 1
            try:
                self._frame_queue.get_nowait()
                self._frame_queue.put_nowait(frame)
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                pass

    def _clear_sentinels(self) -> None:
        frames = []
        while not self._frame_queue.empty():
            frame = self._frame_queue.get_nowait()
            if frame is not None:
                frames.append(frame)
        for frame in frames:
            self._frame_queue.put_nowait(frame)

    def _push_sentinel(self) -> None:
        try:
            self._frame_queue.put_nowait(None)
        except asyncio.QueueFull:
            try:
                self._frame_queue.get_nowait()
                self._frame_queue.put_nowait(None)
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                pass

    def _on_state_change(self, state: ConnectionState) -> None:
        if state == ConnectionState.OPEN:
            self._open_event.set()
        else:
            self._open_event.clear()

    def _on_disconnected(self, error: RetryExhaustedError) -> None:
        logger.debug("Client permanently disconnected: %s", error)
        if not self._disconnecting:
            self._push_sentinel()
