# =============================================================================
# FrameLink -- Offline Message Queue
# =============================================================================
#
# Buffers encoded frames while the link is down and drains them, oldest
# first, once it comes back.  Unbounded: overflow policy belongs to the
# caller.
# =============================================================================

from __future__ import annotations

import inspect
from collections import deque
from typing import Any, Awaitable, Callable

from ._logging import logger

Sink = Callable[[bytes], "Awaitable[Any] | Any"]


class MessageQueue:
    """FIFO buffer of already-encoded frames."""

    def __init__(self) -> None:
        self._queue: deque[bytes] = deque()
        self._total_enqueued = 0
        self._total_drained = 0

    @property
    def size(self) -> int:
        return len(self._queue)

    def __len__(self) -> int:
        return len(self._queue)

    def __bool__(self) -> bool:
        return bool(self._queue)

    def enqueue(self, data: bytes) -> None:
        self._queue.append(data)
        self._total_enqueued += 1

    async def drain_to(self, sink: Sink) -> int:
        """Forward every item held at call time to *sink*, oldest first.

        Items enqueued while the drain is running are left for the next
        call.  If *sink* raises, the failing item goes back to the head
        of the queue and the exception propagates.

        Returns:
            Number of items delivered.
        """
        pending = len(self._queue)
        sent = 0
        while sent < pending and self._queue:
            item = self._queue.popleft()
            try:
                result = sink(item)
                if inspect.isawaitable(result):
                    await result
            except BaseException:
                self._queue.appendleft(item)
                raise
            sent += 1
            self._total_drained += 1

        if sent:
            logger.debug("Drained %d queued message(s), %d left", sent, len(self._queue))
        return sent

    def clear(self) -> None:
        """Discard all queued messages."""
        self._queue.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._queue),
            "total_enqueued": self._total_enqueued,
            "total_drained": self._total_drained,
        }
