"""FrameLink: persistent framed connections with reconnect and heartbeat.

Usage::

    from framelink import connect

    async with connect("ws://localhost:8765/link") as client:
        await client.send(1, 42, {"text": "hello"})
        async for frame in client:
            print(frame.type, frame.channel, frame.payload)

Lower-level pieces (codec, queue, heartbeat, backoff policy, dispatcher,
connection manager) are importable on their own for custom transports.
"""

from ._version import __version__
from .client import AsyncFrameClient
from .connection import ConnectionManager
from .dispatcher import EventDispatcher
from .errors import (
    FormatError,
    FrameLinkError,
    HandlerError,
    RetryExhaustedError,
    TransportError,
)
from .heartbeat import HeartbeatMonitor
from .offline_queue import MessageQueue
from .protocol import FrameCodec
from .reconnect import ReconnectPolicy
from .serializers import JsonSerializer, MsgPackSerializer, Serializer
from .timers import LoopTimer, Timer
from .transport import Transport, WebSocketTransport
from .types import (
    ConnectionState,
    ConnectionStats,
    Frame,
    HeartbeatConfig,
    ReconnectConfig,
)


def connect(
    url: str,
    **kwargs,
) -> AsyncFrameClient:
    """Create a FrameLink client.

    Use as an async context manager.  Keyword arguments are forwarded
    to :class:`AsyncFrameClient` -- common ones: ``reconnect``,
    ``heartbeat``, ``serializer``, ``extra_headers``.

    Example::

        async with connect("ws://localhost:8765/link") as client:
            await client.wait_open(timeout=5)
            await client.send(1, 7, {"text": "hi"})
    """
    return AsyncFrameClient(url, **kwargs)


__all__ = [
    "__version__",
    "connect",
    "AsyncFrameClient",
    "ConnectionManager",
    "EventDispatcher",
    "FrameCodec",
    "HeartbeatMonitor",
    "MessageQueue",
    "ReconnectPolicy",
    "Serializer",
    "JsonSerializer",
    "MsgPackSerializer",
    "Timer",
    "LoopTimer",
    "Transport",
    "WebSocketTransport",
    "ConnectionState",
    "ConnectionStats",
    "Frame",
    "HeartbeatConfig",
    "ReconnectConfig",
    "FrameLinkError",
    "TransportError",
    "FormatError",
    "RetryExhaustedError",
    "HandlerError",
]
