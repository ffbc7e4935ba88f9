"""Shared fakes for FrameLink tests: a manual clock and an in-memory transport."""

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable

import pytest

from framelink.errors import TransportError
from framelink.timers import Timer
from framelink.transport import Transport


@dataclass
class _Call:
    due: float
    delay: float
    seq: int
    fn: Callable[[], Any] = field(repr=False)


class FakeTimer(Timer):
    """Timer driven by hand: nothing runs until ``advance``/``fire_next``."""

    def __init__(self) -> None:
        self.time = 0.0
        self.pending: list[_Call] = []
        self.scheduled: list[float] = []
        self._seq = itertools.count()

    def after(self, delay, fn):
        call = _Call(self.time + delay, delay, next(self._seq), fn)
        self.pending.append(call)
        self.scheduled.append(delay)
        return call

    def cancel(self, token):
        if token in self.pending:
            self.pending.remove(token)

    def now(self):
        return self.time

    def fire_next(self) -> _Call:
        call = min(self.pending, key=lambda c: (c.due, c.seq))
        self.pending.remove(call)
        self.time = call.due
        call.fn()
        return call

    def advance(self, seconds: float) -> None:
        target = self.time + seconds
        while True:
            due = [c for c in self.pending if c.due <= target]
            if not due:
                break
            call = min(due, key=lambda c: (c.due, c.seq))
            self.pending.remove(call)
            self.time = call.due
            call.fn()
        self.time = target


class FakeTransport(Transport):
    """In-memory transport; records sent bytes."""

    def __init__(self, *, fail_open: bool = False) -> None:
        super().__init__()
        self.fail_open = fail_open
        self.fail_send = False
        self.sent: list[bytes] = []
        self.open_calls = 0
        self.closed = False

    async def _open(self):
        self.open_calls += 1
        if self.fail_open:
            raise TransportError("connection refused")

    async def _send(self, data):
        if self.fail_send:
            raise TransportError("broken pipe")
        self.sent.append(data)

    async def _close(self):
        self.closed = True

    def receive(self, data: bytes) -> None:
        self._emit_message(data)

    def drop(self, error: Exception | None = None) -> None:
        self._emit_close(error or TransportError("connection reset"))


class FakeTransportFactory:
    """Builds FakeTransports; the first *failures* refuse to open."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.created: list[FakeTransport] = []

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(fail_open=len(self.created) < self.failures)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def factory():
    return FakeTransportFactory()
