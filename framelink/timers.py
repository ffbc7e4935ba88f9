# =============================================================================
# FrameLink -- Timer Facility
# =============================================================================

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable


class Timer(ABC):
    """Cooperative timer used for heartbeats and reconnect delays."""

    @abstractmethod
    def after(self, delay: float, fn: Callable[[], Any]) -> Any:
        """Run *fn* once after *delay* seconds.  Returns a cancel token."""

    @abstractmethod
    def cancel(self, token: Any) -> None:
        """Cancel a pending call.  Unknown or fired tokens are ignored."""

    @abstractmethod
    def now(self) -> float:
        """Monotonic clock in seconds."""


class LoopTimer(Timer):
    """Timer backed by the running asyncio event loop.

    Args:
        loop: Loop to schedule on.  Defaults to the running loop at the
            time of each call.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def after(self, delay: float, fn: Callable[[], Any]) -> asyncio.TimerHandle:
        return self._get_loop().call_later(max(0.0, delay), fn)

    def cancel(self, token: asyncio.TimerHandle | None) -> None:
        if token is not None:
            token.cancel()

    def now(self) -> float:
        return self._get_loop().time()
