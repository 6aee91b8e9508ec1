"""Paradex streaming adapter (JSON-RPC over WebSocket, public channels)."""

from __future__ import annotations

import json
import logging
from typing import Any

from ..errors import AuthenticationError, BadRequest, BadSymbol, raise_for_code
from ..markets import Market
from ..models import Ticker, Trade, to_decimal
from ..streaming import BookDelta, Connection, MessageRouter, SequencePolicy
from .base import BaseStreamingExchange, SubscriptionSpec

logger = logging.getLogger(__name__)

BOOK_DEPTH = 15
BOOK_REFRESH = "100ms"


class ParadexExchange(BaseStreamingExchange):
    """Paradex public streams: order book, trades and market summaries."""

    name = "paradex"
    capabilities = frozenset({"watch_order_book", "watch_ticker", "watch_tickers", "watch_trades"})
    sequence_policy = SequencePolicy.MONOTONIC
    market_delimiter = "-"
    swap_suffix = "PERP"

    exact_errors = {
        "-32600": BadRequest,
        "-32601": BadRequest,
        "-32602": BadRequest,
        "40110": AuthenticationError,
    }
    broad_errors = {
        "invalid channel": BadSymbol,
        "unauthorized": AuthenticationError,
        "invalid": BadRequest,
    }

    def get_ws_url(self, private: bool = False) -> str:
        if self.ws_url:
            return self.ws_url
        if self.sandbox:
            return "wss://ws.api.testnet.paradex.trade/v1"
        return "wss://ws.api.prod.paradex.trade/v1"

    def build_router(self) -> MessageRouter:
        return MessageRouter(
            _discriminator,
            separator=".",
            error_check=self.check_error,
        ).routes(
            {
                "ack": self.handle_ack,
                "trades": self.handle_trade,
                "order_book": self.handle_order_book,
                "markets_summary": self.handle_ticker,
            }
        )

    # Subscriptions

    def _spec(self, channel: str, symbol: str | None, hashes: tuple[str, ...]) -> SubscriptionSpec:
        connection = self.connection(self.get_ws_url())
        request_id = connection.next_request_id()
        return SubscriptionSpec(
            url=connection.url,
            channel=channel,
            symbol=symbol,
            message_hashes=hashes,
            request=_rpc("subscribe", channel, request_id),
            request_id=request_id,
            unsubscribe_request=_rpc("unsubscribe", channel, connection.next_request_id()),
        )

    def order_book_subscription(self, market: Market, limit: int | None = None) -> SubscriptionSpec:
        if self.options.get("order_book_deltas"):
            channel = f"order_book.{market.id}.deltas"
        else:
            channel = f"order_book.{market.id}.snapshot@{BOOK_DEPTH}@{BOOK_REFRESH}"
        return self._spec(channel, market.symbol, (channel,))

    def trades_subscription(self, market: Market) -> SubscriptionSpec:
        channel = f"trades.{market.id}"
        return self._spec(channel, market.symbol, (channel,))

    def ticker_subscription(self, market: Market) -> SubscriptionSpec:
        return self._spec("markets_summary", None, (f"markets_summary.{market.symbol}",))

    def tickers_subscription(self, markets: list[Market] | None) -> SubscriptionSpec:
        if markets:
            hashes = tuple(f"markets_summary.{m.symbol}" for m in markets)
        else:
            hashes = ("markets_summary",)
        return self._spec("markets_summary", None, hashes)

    # Handlers

    def check_error(self, connection: Connection, message: Any) -> None:
        """Raise for ``{"id": .., "error": {"code", "message", "data"}}`` envelopes."""
        if not isinstance(message, dict):
            return
        error = message.get("error")
        if not isinstance(error, dict):
            return
        code = error.get("code")
        text = " ".join(str(error[k]) for k in ("message", "data") if error.get(k))
        raise_for_code(
            str(code) if code is not None else None,
            text,
            exact=self.exact_errors,
            broad=self.broad_errors,
            feedback=f"{self.name} {json.dumps(error)}",
            request_id=message.get("id"),
        )

    def handle_ack(self, connection: Connection, message: dict) -> None:
        self.ack_request(connection, message.get("id"))

    def handle_trade(self, connection: Connection, message: dict) -> None:
        params = message["params"]
        trade = self.parse_trade(params.get("data") or {})
        self.store_trades(connection, trade.symbol, [trade], params["channel"])

    def handle_order_book(self, connection: Connection, message: dict) -> None:
        params = message["params"]
        data = params.get("data") or {}
        market = self.markets.safe_market(data.get("market"))
        channel = params["channel"]
        sequence = data.get("seq_no")
        timestamp = data.get("last_updated_at")
        if data.get("update_type") == "s":
            bids, asks = _split_levels(data.get("inserts") or [])
            self.handle_order_book_snapshot(
                connection,
                market.symbol,
                bids,
                asks,
                sequence=sequence,
                timestamp=timestamp,
                message_hash=channel,
            )
            return
        bids, asks = _split_levels((data.get("inserts") or []) + (data.get("updates") or []))
        deleted_bids, deleted_asks = _split_levels(data.get("deletes") or [], deleted=True)
        delta = BookDelta(
            bids=bids + deleted_bids,
            asks=asks + deleted_asks,
            sequence=sequence,
            timestamp=timestamp,
        )
        self.handle_order_book_delta(connection, market.symbol, delta, message_hash=channel)

    def handle_ticker(self, connection: Connection, message: dict) -> None:
        params = message["params"]
        channel = params["channel"]
        ticker = self.parse_ticker(params.get("data") or {})
        self.store_ticker(connection, ticker, channel, f"{channel}.{ticker.symbol}")

    # Parsing

    def parse_trade(self, data: dict) -> Trade:
        market = self.markets.safe_market(data.get("market"))
        side = data.get("side")
        return Trade(
            id=data.get("id"),
            symbol=market.symbol,
            side=side.lower() if side else None,
            price=to_decimal(data.get("price")),
            amount=to_decimal(data.get("size")),
            timestamp=data.get("created_at"),
            info=data,
        )

    def parse_ticker(self, data: dict) -> Ticker:
        market = self.markets.safe_market(data.get("symbol"))
        return Ticker(
            symbol=market.symbol,
            timestamp=data.get("created_at"),
            last=to_decimal(data.get("last_traded_price")),
            bid=to_decimal(data.get("bid")),
            ask=to_decimal(data.get("ask")),
            quote_volume=to_decimal(data.get("volume_24h")),
            mark_price=to_decimal(data.get("mark_price")),
            index_price=to_decimal(data.get("underlying_price")),
            info=data,
        )


def _discriminator(message: Any) -> str | None:
    if not isinstance(message, dict):
        return None
    if "result" in message:
        return "ack"
    params = message.get("params")
    if isinstance(params, dict):
        return params.get("channel")
    return None


def _rpc(method: str, channel: str, request_id: int) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "method": method, "params": {"channel": channel}, "id": request_id}


def _split_levels(entries: list[dict], *, deleted: bool = False) -> tuple[list, list]:
    bids: list[tuple[str, str]] = []
    asks: list[tuple[str, str]] = []
    for entry in entries:
        level = (entry["price"], "0" if deleted else entry["size"])
        if entry.get("side") == "BUY":
            bids.append(level)
        else:
            asks.append(level)
    return bids, asks
