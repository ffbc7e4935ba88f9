# =============================================================================
# FrameLink -- Transports
# =============================================================================
#
# A transport moves opaque byte frames.  It knows nothing about framing,
# retries or heartbeats; the connection manager owns all of that.
# =============================================================================

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable

import websockets
import websockets.asyncio.client
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from ._logging import logger
from .constants import CONNECTION_TIMEOUT, MAX_MESSAGE_SIZE, WS_CLOSE_NORMAL
from .errors import TransportError

MessageCallback = Callable[[bytes], Any]
CloseCallback = Callable[[Exception | None], Any]
OpenCallback = Callable[[], Any]


class Transport(ABC):
    """Bidirectional byte-frame link with callback registration.

    Subclasses implement ``_open``, ``_send`` and ``_close``.  The base
    class tracks whether the link is open and fires the callbacks:

    - ``on_open`` once ``open()`` succeeds (before it returns),
    - ``on_message`` for every inbound frame,
    - ``on_close`` exactly once after a successful open, with ``None``
      for a clean close or the error that ended the link.

    A failed ``open()`` raises :class:`TransportError` and does not fire
    ``on_close``.
    """

    def __init__(self) -> None:
        self._open_callbacks: list[OpenCallback] = []
        self._message_callbacks: list[MessageCallback] = []
        self._close_callbacks: list[CloseCallback] = []
        self._is_open = False
        self._close_fired = False

    # -- Callback registration ------------------------------------------------

    def on_open(self, callback: OpenCallback) -> None:
        self._open_callbacks.append(callback)

    def on_message(self, callback: MessageCallback) -> None:
        self._message_callbacks.append(callback)

    def on_close(self, callback: CloseCallback) -> None:
        self._close_callbacks.append(callback)

    @property
    def is_open(self) -> bool:
        return self._is_open

    # -- Public API -----------------------------------------------------------

    async def open(self) -> None:
        if self._is_open:
            return
        try:
            await self._open()
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(f"Failed to open transport: {exc}") from exc
        self._is_open = True
        self._close_fired = False
        for callback in list(self._open_callbacks):
            callback()

    async def send(self, data: bytes) -> None:
        if not self._is_open:
            raise TransportError("Transport is not open")
        try:
            await self._send(data)
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(f"Send failed: {exc}") from exc

    async def close(self) -> None:
        if not self._is_open:
            return
        await self._close()
        self._emit_close(None)

    # -- Subclass hooks -------------------------------------------------------

    @abstractmethod
    async def _open(self) -> None: ...

    @abstractmethod
    async def _send(self, data: bytes) -> None: ...

    @abstractmethod
    async def _close(self) -> None: ...

    def _emit_message(self, data: bytes) -> None:
        for callback in list(self._message_callbacks):
            callback(data)

    def _emit_close(self, error: Exception | None) -> None:
        self._is_open = False
        if self._close_fired:
            return
        self._close_fired = True
        for callback in list(self._close_callbacks):
            callback(error)


class WebSocketTransport(Transport):
    """Transport over a single ``websockets`` client connection.

    Inbound text frames are passed on as UTF-8 bytes.

    Args:
        url: WebSocket server URL, e.g. ``"ws://localhost:8765/link"``.
        extra_headers: Additional HTTP headers for the handshake.
        open_timeout: Seconds to wait for the handshake.
        max_size: Largest inbound message accepted by ``websockets``.
    """

    def __init__(
        self,
        url: str,
        *,
        extra_headers: dict[str, str] | None = None,
        open_timeout: float = CONNECTION_TIMEOUT,
        max_size: int = MAX_MESSAGE_SIZE,
    ) -> None:
        super().__init__()
        self._url = url
        self._extra_headers = extra_headers or {}
        self._open_timeout = open_timeout
        self._max_size = max_size
        self._ws: websockets.asyncio.client.ClientConnection | None = None
        self._recv_task: asyncio.Task[None] | None = None

    @property
    def url(self) -> str:
        return self._url

    async def _open(self) -> None:
        try:
            self._ws = await asyncio.wait_for(self._dial(), timeout=self._open_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"Connection timed out after {self._open_timeout}s"
            ) from exc
        except (OSError, websockets.exceptions.WebSocketException) as exc:
            raise TransportError(f"Failed to connect to {self._url}: {exc}") from exc

        self._recv_task = asyncio.create_task(self._recv_loop(self._ws))

    async def _dial(self) -> websockets.asyncio.client.ClientConnection:
        return await websockets.asyncio.client.connect(
            self._url,
            additional_headers=self._extra_headers,
            max_size=self._max_size,
            open_timeout=None,  # asyncio.wait_for handles timeout
        )

    async def _send(self, data: bytes) -> None:
        if self._ws is None:
            raise TransportError("WebSocket is not connected")
        try:
            await self._ws.send(data)
        except ConnectionClosed as exc:
            raise TransportError(f"Connection closed: {exc}") from exc

    async def _close(self) -> None:
        ws = self._ws
        self._ws = None
        recv_task = self._recv_task
        self._recv_task = None
        if recv_task is not None:
            recv_task.cancel()
            await asyncio.gather(recv_task, return_exceptions=True)
        if ws is not None:
            try:
                await ws.close(WS_CLOSE_NORMAL, "Client disconnect")
            except Exception as exc:
                logger.debug("WebSocket close failed: %s", exc)

    async def _recv_loop(self, ws: websockets.asyncio.client.ClientConnection) -> None:
        """Read frames until the socket closes, then report why."""
        error: Exception | None = None
        try:
            async for message in ws:
                if isinstance(message, str):
                    message = message.encode("utf-8")
                self._emit_message(message)
        except ConnectionClosedOK:
            logger.debug("WebSocket closed normally")
        except ConnectionClosed as exc:
            logger.debug("WebSocket closed: %s", exc)
            error = TransportError(f"Connection lost: {exc}")
            error.__cause__ = exc
        except asyncio.CancelledError:
            return
        except Exception as exc:
            logger.warning("Receive loop error: %s", exc)
            error = TransportError(f"Receive loop error: {exc}")
            error.__cause__ = exc
            try:
                await ws.close(WS_CLOSE_NORMAL, "Receive loop error")
            except Exception as close_exc:
                logger.debug("WebSocket close failed: %s", close_exc)

        if self._ws is ws:
            self._ws = None
            self._recv_task = None
        self._emit_close(error)
