# =============================================================================
# FrameLink -- Type Definitions
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .constants import (
    HEARTBEAT_INTERVAL,
    HEARTBEAT_TYPE,
    RECONNECT_BASE_DELAY,
    RECONNECT_JITTER_RATIO,
    RECONNECT_MAX_DELAY,
    RECONNECT_MAX_RETRIES,
)


class ConnectionState(str, Enum):
    """Connection lifecycle state.

    Clean flow: IDLE -> CONNECTING -> OPEN -> CLOSING -> IDLE.
    On failure the link passes through CLOSED before the next CONNECTING,
    and ends in DISCONNECTED once the retry budget is spent.
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True, slots=True)
class Frame:
    """One decoded unit of wire data.

    Attributes:
        type: Message type tag, 0--255.
        channel: Room/channel identifier, 0--2**32-1.
        payload: Deserialized payload, ``None`` when the frame had none.
    """

    type: int
    channel: int
    payload: Any = None

    @property
    def is_heartbeat(self) -> bool:
        return self.type == HEARTBEAT_TYPE


@dataclass
class ReconnectConfig:
    """Configuration for automatic reconnection.

    Attributes:
        base_delay: Delay in seconds before the first retry.
        max_delay: Cap applied to the exponential delay, before jitter.
        max_retries: Retries before giving up, ``-1`` for infinite.
        jitter_ratio: Upper bound of the random term as a fraction of
            the capped delay.
    """

    base_delay: float = RECONNECT_BASE_DELAY
    max_delay: float = RECONNECT_MAX_DELAY
    max_retries: int = RECONNECT_MAX_RETRIES
    jitter_ratio: float = RECONNECT_JITTER_RATIO


@dataclass
class HeartbeatConfig:
    """Configuration for the liveness ping.

    Attributes:
        interval: Seconds between pings while the link is open.
        idle_timeout: Seconds without inbound traffic before the link is
            considered dead. ``None`` disables the check.
    """

    interval: float = HEARTBEAT_INTERVAL
    idle_timeout: float | None = None


@dataclass
class ConnectionStats:
    """Counters for a single logical connection."""

    frames_sent: int = 0
    frames_received: int = 0
    bytes_sent: int = 0
    bytes_received: int = 0
    heartbeats_sent: int = 0
    heartbeats_received: int = 0
    frames_dropped: int = 0
    messages_queued: int = 0
    messages_flushed: int = 0
    reconnect_count: int = 0
    opened_at: float | None = None
