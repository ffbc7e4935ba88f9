# =============================================================================
# FrameLink -- Heartbeat Monitor
# =============================================================================

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable

from ._logging import logger
from .timers import Timer


class HeartbeatMonitor:
    """Periodic liveness ping driven by a :class:`Timer`.

    Each tick either calls *ping_fn* or, when an idle timeout is
    configured and nothing was received for too long, calls *on_idle*
    and stops.

    Args:
        timer: Timer facility used to schedule ticks.
    """

    def __init__(self, timer: Timer) -> None:
        self._timer = timer
        self._token: Any | None = None
        self._interval = 0.0
        self._ping_fn: Callable[[], Any] | None = None
        self._idle_timeout: float | None = None
        self._on_idle: Callable[[], Any] | None = None
        self._last_seen: float | None = None
        self._background_tasks: set[asyncio.Future[Any]] = set()

    @property
    def active(self) -> bool:
        return self._ping_fn is not None

    @property
    def last_seen(self) -> float | None:
        return self._last_seen

    def start(
        self,
        interval: float,
        ping_fn: Callable[[], Any],
        *,
        idle_timeout: float | None = None,
        on_idle: Callable[[], Any] | None = None,
    ) -> None:
        """Begin pinging every *interval* seconds.  Restarts if active."""
        if interval <= 0:
            raise ValueError(f"Heartbeat interval must be positive, got {interval}")
        self.stop()
        self._interval = interval
        self._ping_fn = ping_fn
        self._idle_timeout = idle_timeout
        self._on_idle = on_idle
        self._last_seen = self._timer.now()
        self._schedule()

    def stop(self) -> None:
        """Stop future pings.  Safe to call when already stopped."""
        if self._token is not None:
            self._timer.cancel(self._token)
            self._token = None
        self._ping_fn = None
        self._on_idle = None

    def touch(self) -> None:
        """Record inbound traffic."""
        self._last_seen = self._timer.now()

    def _schedule(self) -> None:
        self._token = self._timer.after(self._interval, self._tick)

    def _tick(self) -> None:
        self._token = None
        if self._ping_fn is None:
            return

        if self._idle_timeout is not None and self._last_seen is not None:
            idle = self._timer.now() - self._last_seen
            if idle > self._idle_timeout:
                logger.warning("Idle timeout (%.1fs without traffic)", idle)
                on_idle = self._on_idle
                self.stop()
                if on_idle is not None:
                    self._run(on_idle)
                return

        ping_fn = self._ping_fn
        self._schedule()
        self._run(ping_fn)

    def _run(self, fn: Callable[[], Any]) -> None:
        result = fn()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._background_tasks.add(task)
            task.add_done_callback(self._background_tasks.discard)
