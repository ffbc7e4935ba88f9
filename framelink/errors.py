# =============================================================================
# FrameLink -- Error Types
# =============================================================================

from __future__ import annotations

from typing import Any


class FrameLinkError(Exception):
    """Base exception for all FrameLink errors."""


class TransportError(FrameLinkError):
    """Transport-level failure (refused, dropped, send on a closed link)."""


class FormatError(FrameLinkError):
    """Malformed frame or a payload the serializer cannot handle."""


class RetryExhaustedError(FrameLinkError):
    """Reconnection gave up after the configured number of retries."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Permanently disconnected after {attempts} failed attempts")


class HandlerError(FrameLinkError):
    """A registered listener raised while a frame was being dispatched."""

    def __init__(self, type: int, handler: Any) -> None:
        self.type = type
        self.handler = handler
        name = getattr(handler, "__qualname__", repr(handler))
        super().__init__(f"Handler {name} failed for frame type {type}")
