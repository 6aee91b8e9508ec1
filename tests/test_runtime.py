"""Tests for the streaming runner."""

import asyncio
import logging
from decimal import Decimal

import pytest

from tests.conftest import eventually
from unistream.di import build_container
from unistream.exchanges.paradex import ParadexExchange
from unistream.models import Balance, Balances, OrderBookSnapshot, Ticker
from unistream.runtime import describe, run
from unistream.settings import Settings


class TestDescribe:
    """Tests for log summaries of streamed values."""

    def test_order_book(self):
        snapshot = OrderBookSnapshot(
            symbol="BTC/USDT",
            bids=[(Decimal("100"), Decimal("1"))],
            asks=[(Decimal("101"), Decimal("2"))],
            sequence=7,
            timestamp=None,
        )
        line = describe(snapshot)
        assert line.startswith("BTC/USDT book seq=7")
        assert "spread=1" in line

    def test_ticker(self):
        assert describe(Ticker(symbol="ETH/USDT", timestamp=None, last=Decimal("3000"))) == (
            "ETH/USDT ticker last=3000 bid=None ask=None"
        )

    def test_balances(self):
        balances = Balances({"BTC": Balance("BTC", Decimal("1"), Decimal("0.5"))})
        assert describe(balances) == "balances BTC=1.5"

    def test_empty_list(self):
        assert describe([]) == "0 items"


class TestRun:
    """Tests for run()."""

    @pytest.mark.asyncio
    async def test_nothing_to_watch(self):
        container = build_container(Settings())
        await asyncio.wait_for(run(container), 1)

    @pytest.mark.asyncio
    async def test_streams_until_shutdown(self, network, stream_settings, caplog):
        caplog.set_level(logging.INFO, logger="unistream.runtime")
        settings = Settings.model_validate(
            {"watch": [{"exchange": "paradex", "channel": "trades", "symbol": "BTC/USD:USD"}]}
        )
        exchange = ParadexExchange(stream=stream_settings, transport_factory=network)
        container = build_container(settings, {"paradex": exchange})

        task = asyncio.create_task(run(container))
        await eventually(lambda: network.transports and network.current.sent)
        network.current.feed(
            {
                "jsonrpc": "2.0",
                "method": "subscription",
                "params": {
                    "channel": "trades.BTC-USD-PERP",
                    "data": {
                        "id": "t1",
                        "market": "BTC-USD-PERP",
                        "side": "BUY",
                        "price": "100",
                        "size": "1",
                        "created_at": 1,
                    },
                },
            }
        )
        await eventually(lambda: "1 items" in caplog.text)

        container.shutdown.set()
        await asyncio.wait_for(task, 1)

        assert "paradex trades BTC/USD:USD: 1 items, last Trade t1" in caplog.text
        assert network.current.closed

    @pytest.mark.asyncio
    async def test_unknown_exchange_is_logged(self, caplog):
        settings = Settings.model_validate(
            {"watch": [{"exchange": "okx", "channel": "balance"}]}
        )
        await asyncio.wait_for(run(build_container(settings)), 1)
        assert "exchange not initialized: okx" in caplog.text
