# =============================================================================
# FrameLink -- Event Dispatcher
# =============================================================================

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Callable

from .errors import HandlerError

Handler = Callable[[Any], "Awaitable[Any] | Any"]


class EventDispatcher:
    """Routes messages to handlers registered per type tag.

    Delivery is synchronous and in registration order.  Handlers are not
    isolated from each other: the first one to raise stops delivery and
    the error reaches the caller of :meth:`emit` as :class:`HandlerError`.
    Coroutine results are scheduled on the running loop.
    """

    def __init__(self) -> None:
        self._handlers: dict[int, list[Handler]] = defaultdict(list)
        self._wildcard_handlers: list[Handler] = []
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def on(self, type: int, handler: Handler) -> Handler:
        self._handlers[type].append(handler)
        return handler

    def on_any(self, handler: Handler) -> Handler:
        """Register a handler that receives every type, after typed handlers."""
        self._wildcard_handlers.append(handler)
        return handler

    def off(self, type: int, handler: Handler) -> bool:
        """Remove the first registration of *handler* for *type*."""
        handlers = self._handlers.get(type)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[type]
            return True
        return False

    def off_any(self, handler: Handler) -> bool:
        if handler in self._wildcard_handlers:
            self._wildcard_handlers.remove(handler)
            return True
        return False

    def handlers(self, type: int) -> list[Handler]:
        return list(self._handlers.get(type, ()))

    def emit(self, type: int, message: Any) -> int:
        """Deliver *message* to every handler of *type*.

        Returns:
            Number of handlers invoked.

        Raises:
            HandlerError: A handler raised; the original is ``__cause__``.
        """
        handlers = self._handlers.get(type, []) + self._wildcard_handlers
        for handler in handlers:
            try:
                result = handler(message)
            except Exception as exc:
                raise HandlerError(type, handler) from exc
            if asyncio.iscoroutine(result):
                self._fire_task(result)
        return len(handlers)

    def clear(self, type: int | None = None) -> None:
        if type is None:
            self._handlers.clear()
            self._wildcard_handlers.clear()
        else:
            self._handlers.pop(type, None)

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
