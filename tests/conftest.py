"""Pytest configuration and fixtures."""

import asyncio
import json
import time

import pytest

from streamfeed.config.settings import Settings


class FakeTransport:
    """In-memory transport; tests drive its events explicitly."""

    def __init__(self, listener):
        self.listener = listener
        self.sent: list[str] = []
        self.closed = False

    def send(self, text: str) -> None:
        self.sent.append(text)

    def close(self) -> None:
        self.closed = True

    @property
    def messages(self) -> list[dict]:
        return [json.loads(text) for text in self.sent]

    def accept(self) -> None:
        self.listener.on_open()

    def receive(self, payload) -> None:
        raw = payload if isinstance(payload, str) else json.dumps(payload)
        self.listener.on_message(raw)

    def fail(self, code: int = 1006, reason: str = "connection refused") -> None:
        self.listener.on_error(ConnectionError(reason))
        self.listener.on_close(code, reason, False)


class FakeTransportFactory:
    """Records every transport the connection manager creates."""

    def __init__(self):
        self.transports: list[FakeTransport] = []

    def __call__(self, listener) -> FakeTransport:
        transport = FakeTransport(listener)
        self.transports.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_until(condition, timeout: float = 1.0) -> None:
    """Yield to the event loop until ``condition()`` holds."""
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def settings():
    """Settings with near-zero delays so timer-driven paths run quickly."""
    return Settings(
        _env_file=None,
        ws_url="wss://stream.example.test/stream",
        rest_base_url="https://api.example.test",
        reconnect_delay_seconds=0.01,
        max_reconnect_attempts=2,
        idle_check_interval_seconds=60.0,
        idle_threshold_seconds=600.0,
        poll_interval_seconds=0.01,
    )


@pytest.fixture
def transports():
    """Factory collecting fake transports."""
    return FakeTransportFactory()


@pytest.fixture
def clock():
    """Manually advanced clock."""
    return FakeClock()


@pytest.fixture
def wait_for():
    """Await a condition while letting timers and tasks run."""
    return wait_until
