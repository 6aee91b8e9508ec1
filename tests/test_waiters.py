"""Tests for the multi-waiter registry."""

import asyncio

import pytest

from unistream.errors import NetworkError, RequestTimeout, StreamClosed
from unistream.streaming import WaiterRegistry


class TestResolve:
    """Tests for fan-out delivery."""

    @pytest.mark.asyncio
    async def test_one_value_reaches_every_waiter(self):
        registry = WaiterRegistry()
        first = registry.register("ticker:BTC/USDT")
        second = registry.register("ticker:BTC/USDT")

        assert registry.resolve("ticker:BTC/USDT", "value") == 2

        assert await first.get(1) == "value"
        assert await second.get(1) == "value"
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_waiter_on_several_hashes(self):
        registry = WaiterRegistry()
        waiter = registry.register(["ticker:BTC/USDT", "ticker:ETH/USDT"])

        registry.resolve("ticker:ETH/USDT", "eth")

        assert await waiter.get(1) == "eth"
        assert "ticker:BTC/USDT" not in registry

    @pytest.mark.asyncio
    async def test_persistent_waiter_keeps_receiving(self):
        registry = WaiterRegistry()
        stream = registry.register("trades:BTC/USDT", persistent=True)

        registry.resolve("trades:BTC/USDT", 1)
        registry.resolve("trades:BTC/USDT", 2)

        assert await stream.get(1) == 1
        assert await stream.get(1) == 2
        assert registry.pending("trades:BTC/USDT") == 1

    @pytest.mark.asyncio
    async def test_slow_stream_keeps_newest(self):
        registry = WaiterRegistry(stream_queue_size=2)
        stream = registry.register("book", persistent=True)
        for i in range(5):
            registry.resolve("book", i)

        assert await stream.get(1) == 3
        assert await stream.get(1) == 4

    def test_resolve_without_waiters(self):
        registry = WaiterRegistry()
        assert registry.resolve("nobody", 1) == 0


class TestRejectAndTimeout:
    """Tests for failure delivery."""

    @pytest.mark.asyncio
    async def test_timeout_raises_request_timeout(self):
        registry = WaiterRegistry()
        waiter = registry.register("ticker:BTC/USDT")
        with pytest.raises(RequestTimeout):
            await waiter.get(0.01)

    @pytest.mark.asyncio
    async def test_discard_leaves_other_waiters(self):
        registry = WaiterRegistry()
        first = registry.register("h")
        second = registry.register("h")
        registry.discard(first)

        registry.resolve("h", "v")

        assert await second.get(1) == "v"

    @pytest.mark.asyncio
    async def test_reject_keeps_persistent_waiters(self):
        registry = WaiterRegistry()
        once = registry.register("h")
        stream = registry.register("h", persistent=True)

        registry.reject("h", NetworkError("down"))

        with pytest.raises(NetworkError):
            await once.get(1)
        with pytest.raises(NetworkError):
            await stream.get(1)
        assert registry.pending("h") == 1

    @pytest.mark.asyncio
    async def test_reject_all_with_close(self):
        registry = WaiterRegistry()
        waiters = [registry.register("a"), registry.register("a"), registry.register("b", persistent=True)]

        assert registry.reject_all(NetworkError("closed"), close=True) == 3

        for waiter in waiters:
            with pytest.raises(NetworkError):
                await asyncio.wait_for(waiter.get(), 1)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_close_defaults_to_stream_closed(self):
        registry = WaiterRegistry()
        stream = registry.register("h", persistent=True)
        stream.close()
        with pytest.raises(StreamClosed):
            await stream.get(1)
        assert stream.closed
