"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from unistream.errors import NetworkError
from unistream.settings import StreamSettings


class FakeTransport:
    """In-memory stand-in for a WebSocket: frames are fed by the test."""

    def __init__(self, network: "FakeNetwork"):
        self.network = network
        self.url: str | None = None
        self.sent: list[str] = []
        self.closed = False
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    async def open(self, url: str) -> None:
        if self.network.fail_opens > 0:
            self.network.fail_opens -= 1
            raise NetworkError(f"refused {url}")
        self.url = url
        self.network.transports.append(self)

    async def send(self, data: str) -> None:
        if self.closed:
            raise NetworkError("fake transport closed")
        if self.network.fail_sends > 0:
            self.network.fail_sends -= 1
            raise NetworkError("fake send refused")
        self.sent.append(data)

    async def receive(self) -> str | None:
        item = await self._inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)

    def feed(self, message: Any) -> None:
        self._inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        """Simulate the peer closing the socket."""
        self._inbox.put_nowait(None)

    def frames(self) -> list[Any]:
        decoded = []
        for text in self.sent:
            try:
                decoded.append(json.loads(text))
            except ValueError:
                decoded.append(text)
        return decoded


class FakeNetwork:
    """Transport factory recording every transport it hands out."""

    def __init__(self) -> None:
        self.transports: list[FakeTransport] = []
        self.fail_opens = 0
        self.fail_sends = 0

    def __call__(self) -> FakeTransport:
        return FakeTransport(self)

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]


async def settle(rounds: int = 10) -> None:
    """Let background tasks (reader, replays) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def network():
    """Fake WebSocket network."""
    return FakeNetwork()


@pytest.fixture
def stream_settings():
    """Fast stream settings for tests: no pings, no reconnect delay."""
    return StreamSettings(
        ping_interval=0,
        reconnect_delay=0,
        max_reconnect_delay=0,
        max_reconnect_attempts=2,
        connect_timeout=1.0,
        request_timeout=2.0,
    )


@pytest.fixture
def api_key():
    """Test API key."""
    return "test_api_key_123456"


@pytest.fixture
def api_secret():
    """Test API secret."""
    return "test_api_secret_789012"


@pytest.fixture
def passphrase():
    """Test passphrase."""
    return "test_passphrase_345678"


async def eventually(predicate, timeout: float = 1.0) -> None:
    """Poll ``predicate`` until it holds, failing the test after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)
