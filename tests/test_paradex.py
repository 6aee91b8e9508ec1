"""Tests for the Paradex adapter against a fake WebSocket."""

import asyncio
from decimal import Decimal

import pytest

from tests.conftest import eventually, settle
from unistream.errors import BadRequest, NotSupported
from unistream.exchanges.paradex import ParadexExchange

BOOK_CHANNEL = "order_book.BTC-USD-PERP.snapshot@15@100ms"


def push(channel, data):
    return {"jsonrpc": "2.0", "method": "subscription", "params": {"channel": channel, "data": data}}


def book_message(channel, seq, update_type="s", inserts=(), updates=(), deletes=()):
    return push(
        channel,
        {
            "seq_no": seq,
            "market": "BTC-USD-PERP",
            "last_updated_at": 1718267837265,
            "update_type": update_type,
            "inserts": list(inserts),
            "updates": list(updates),
            "deletes": list(deletes),
        },
    )


def level(side, price, size):
    return {"side": side, "price": price, "size": size}


@pytest.fixture
def exchange(network, stream_settings):
    return ParadexExchange(stream=stream_settings, transport_factory=network)


class TestParadexOrderBook:
    """Tests for order book channels."""

    @pytest.mark.asyncio
    async def test_subscribe_frame_and_snapshot(self, exchange, network):
        task = asyncio.create_task(exchange.watch_order_book("BTC/USD:USD"))
        await settle()

        frame = network.current.frames()[0]
        assert frame["method"] == "subscribe"
        assert frame["params"] == {"channel": BOOK_CHANNEL}
        assert network.current.url == "wss://ws.api.prod.paradex.trade/v1"

        network.current.feed({"jsonrpc": "2.0", "result": {"channel": BOOK_CHANNEL}, "id": frame["id"]})
        network.current.feed(
            book_message(
                BOOK_CHANNEL,
                14127815,
                inserts=[level("BUY", "67629.7", "0.992"), level("SELL", "69378.6", "3.137")],
            )
        )
        book = await asyncio.wait_for(task, 1)

        assert book.symbol == "BTC/USD:USD"
        assert book.bids == [(Decimal("67629.7"), Decimal("0.992"))]
        assert book.asks == [(Decimal("69378.6"), Decimal("3.137"))]
        assert book.nonce == 14127815
        assert exchange.connection(network.current.url).subscriptions.all()[0].active
        await exchange.close()

    @pytest.mark.asyncio
    async def test_limit_applied_to_result(self, exchange, network):
        task = asyncio.create_task(exchange.watch_order_book("BTC/USD:USD", limit=1))
        await settle()
        network.current.feed(
            book_message(
                BOOK_CHANNEL,
                1,
                inserts=[level("BUY", "100", "1"), level("BUY", "99", "1"), level("SELL", "101", "1")],
            )
        )
        book = await asyncio.wait_for(task, 1)

        assert book.bids == [(Decimal("100"), Decimal("1"))]
        assert len(exchange.orderbooks["BTC/USD:USD"].bids) == 2
        await exchange.close()

    @pytest.mark.asyncio
    async def test_delta_channel_and_resnapshot_on_stale_sequence(self, network, stream_settings):
        exchange = ParadexExchange(stream=stream_settings, transport_factory=network, order_book_deltas=True)
        channel = "order_book.BTC-USD-PERP.deltas"

        task = asyncio.create_task(exchange.watch_order_book("BTC/USD:USD"))
        await settle()
        network.current.feed(
            book_message(channel, 10, inserts=[level("BUY", "100", "1"), level("SELL", "102", "1")])
        )
        await asyncio.wait_for(task, 1)

        task = asyncio.create_task(exchange.watch_order_book("BTC/USD:USD"))
        await settle()
        network.current.feed(
            book_message(
                channel,
                12,
                update_type="d",
                inserts=[level("SELL", "101", "2")],
                deletes=[level("BUY", "100", "1")],
            )
        )
        book = await asyncio.wait_for(task, 1)
        assert book.bids == []
        assert book.asks[0] == (Decimal("101"), Decimal("2"))
        assert book.nonce == 12

        sent = len(network.current.sent)
        network.current.feed(book_message(channel, 11, update_type="d", inserts=[level("BUY", "99", "1")]))
        await eventually(lambda: len(network.current.sent) == sent + 2)

        unsubscribe, subscribe = network.current.frames()[-2:]
        assert unsubscribe["method"] == "unsubscribe"
        assert subscribe["method"] == "subscribe"
        assert subscribe["params"]["channel"] == channel
        assert not exchange.orderbooks["BTC/USD:USD"].initialized
        await exchange.close()


class TestParadexTradesAndTickers:
    """Tests for trades and market summaries."""

    @pytest.mark.asyncio
    async def test_watch_trades(self, exchange, network):
        task = asyncio.create_task(exchange.watch_trades("BTC/USD:USD"))
        await settle()
        assert network.current.frames()[0]["params"]["channel"] == "trades.BTC-USD-PERP"

        network.current.feed(
            push(
                "trades.BTC-USD-PERP",
                {
                    "id": "1718179273230201709233240002",
                    "market": "BTC-USD-PERP",
                    "side": "BUY",
                    "size": "0.5",
                    "price": "67000.1",
                    "created_at": 1718179273230,
                    "trade_type": "FILL",
                },
            )
        )
        trades = await asyncio.wait_for(task, 1)

        assert len(trades) == 1
        assert trades[0].side == "buy"
        assert trades[0].price == Decimal("67000.1")
        assert trades[0].cost == Decimal("33500.05")
        await exchange.close()

    @pytest.mark.asyncio
    async def test_watch_ticker_filters_by_symbol(self, exchange, network):
        task = asyncio.create_task(exchange.watch_ticker("ETH/USD:USD"))
        await settle()
        summary = {
            "oracle_price": "3500.1",
            "mark_price": "3500.2",
            "last_traded_price": "3501",
            "bid": "3500",
            "ask": "3502",
            "volume_24h": "1000",
            "created_at": 1718334307698,
            "underlying_price": "3499",
        }
        network.current.feed(push("markets_summary", dict(summary, symbol="BTC-USD-PERP")))
        network.current.feed(push("markets_summary", dict(summary, symbol="ETH-USD-PERP")))
        ticker = await asyncio.wait_for(task, 1)

        assert ticker.symbol == "ETH/USD:USD"
        assert ticker.last == Decimal("3501")
        assert ticker.mark_price == Decimal("3500.2")
        assert ticker.index_price == Decimal("3499")
        assert exchange.tickers["BTC/USD:USD"].bid == Decimal("3500")
        await exchange.close()

    @pytest.mark.asyncio
    async def test_watch_tickers_all(self, exchange, network):
        task = asyncio.create_task(exchange.watch_tickers())
        await settle()
        network.current.feed(push("markets_summary", {"symbol": "SOL-USD-PERP", "last_traded_price": "150"}))
        tickers = await asyncio.wait_for(task, 1)

        assert list(tickers) == ["SOL/USD:USD"]
        await exchange.close()


class TestParadexErrors:
    """Tests for error envelopes and unsupported channels."""

    @pytest.mark.asyncio
    async def test_subscribe_error_reaches_waiter(self, exchange, network):
        task = asyncio.create_task(exchange.watch_trades("BTC/USD:USD"))
        await settle()
        request_id = network.current.frames()[0]["id"]
        network.current.feed(
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "error": {"code": -32600, "message": "invalid subscribe request", "data": "invalid channel"},
            }
        )

        with pytest.raises(BadRequest):
            await asyncio.wait_for(task, 1)
        await exchange.close()

    @pytest.mark.asyncio
    async def test_private_channels_not_supported(self, exchange):
        with pytest.raises(NotSupported):
            await exchange.watch_balance()
        with pytest.raises(NotSupported):
            await exchange.watch_orders()

    def test_sandbox_url(self):
        assert ParadexExchange(sandbox=True).get_ws_url() == "wss://ws.api.testnet.paradex.trade/v1"


class TestParadexStreams:
    """Tests for the async-iterator forms and unwatching."""

    @pytest.mark.asyncio
    async def test_stream_order_book_until_unwatched(self, exchange, network):
        stream = exchange.stream_order_book("BTC/USD:USD", limit=1)

        first = asyncio.ensure_future(anext(stream))
        await settle()
        network.current.feed(
            book_message(
                BOOK_CHANNEL,
                1,
                inserts=[level("BUY", "100", "1"), level("BUY", "99", "2"), level("SELL", "101", "1")],
            )
        )
        book = await asyncio.wait_for(first, 1)
        assert book.bids == [(Decimal("100"), Decimal("1"))]

        second = asyncio.ensure_future(anext(stream))
        network.current.feed(
            book_message(BOOK_CHANNEL, 2, inserts=[level("BUY", "100.5", "1"), level("SELL", "101", "1")])
        )
        book = await asyncio.wait_for(second, 1)
        assert book.nonce == 2

        ending = asyncio.ensure_future(anext(stream))
        await settle()
        await exchange.unwatch_order_book("BTC/USD:USD")

        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(ending, 1)
        last = network.current.frames()[-1]
        assert last["method"] == "unsubscribe"
        assert last["params"] == {"channel": BOOK_CHANNEL}
        assert "BTC/USD:USD" not in exchange.orderbooks
        await exchange.close()

    @pytest.mark.asyncio
    async def test_unwatch_trades(self, exchange, network):
        task = asyncio.create_task(exchange.watch_trades("BTC/USD:USD"))
        await settle()
        network.current.feed(
            push(
                "trades.BTC-USD-PERP",
                {"id": "t1", "market": "BTC-USD-PERP", "side": "SELL", "size": "1", "price": "10", "created_at": 1},
            )
        )
        await asyncio.wait_for(task, 1)

        await exchange.unwatch_trades("BTC/USD:USD")

        assert network.current.frames()[-1]["method"] == "unsubscribe"
        assert "BTC/USD:USD" not in exchange.trades
        await exchange.close()
