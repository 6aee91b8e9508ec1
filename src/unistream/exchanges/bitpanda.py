"""Bitpanda Pro (One Trading) streaming adapter."""

from __future__ import annotations

import dataclasses
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from functools import partial
from typing import Any

from ..errors import AuthenticationError, BadRequest, BadSymbol, NetworkError, raise_for_code
from ..markets import Market
from ..models import Balance, Order, Ticker, to_decimal
from ..streaming import AUTH_CHANNEL, BookDelta, Connection, MessageRouter, SequencePolicy, materialize
from .base import BaseStreamingExchange, SubscriptionSpec

logger = logging.getLogger(__name__)


class BitpandaExchange(BaseStreamingExchange):
    """Bitpanda Pro streams.

    A SUBSCRIBE for a channel replaces that channel's configuration on the
    server, so every request carries the full set of instruments currently
    watched on it. Order book updates carry no sequence numbers.
    """

    name = "bitpanda"
    capabilities = frozenset(
        {"watch_order_book", "watch_ticker", "watch_tickers", "watch_balance", "watch_orders"}
    )
    sequence_policy = SequencePolicy.UNSEQUENCED
    market_delimiter = "_"
    swap_suffix = None

    exact_errors = {
        "INVALID_INSTRUMENT_CODE": BadSymbol,
        "INVALID_SUBSCRIPTION": BadRequest,
        "MALFORMED_JSON": BadRequest,
        "MISSING_CREDENTIALS": AuthenticationError,
        "INVALID_API_KEY": AuthenticationError,
        "INVALID_TOKEN": AuthenticationError,
        "UNAUTHORIZED": AuthenticationError,
    }
    broad_errors = {
        "INSTRUMENT": BadSymbol,
        "AUTHENTICATION": AuthenticationError,
        "API_KEY": AuthenticationError,
    }

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._instruments: dict[str, list[str]] = {"ORDER_BOOK": [], "MARKET_TICKER": []}
        self._book_depth = int(self.options.get("depth", 0))

    def get_ws_url(self, private: bool = False) -> str:
        return self.ws_url or "wss://streams.exchange.bitpanda.com"

    def build_router(self) -> MessageRouter:
        return MessageRouter(_discriminator, error_check=self.check_error).routes(
            {
                "SUBSCRIPTIONS": self.handle_subscriptions,
                "UNSUBSCRIBED": _ignore,
                "HEARTBEAT": _ignore,
                "CONNECTION_CLOSING": self.handle_closing,
                "AUTHENTICATED": self.handle_authenticated,
                "ORDER_BOOK_SNAPSHOT": self.handle_order_book,
                "ORDER_BOOK_UPDATE": self.handle_order_book,
                "MARKET_TICKER_UPDATES": self.handle_ticker,
                "BALANCES_SNAPSHOT": self.handle_balance_snapshot,
                "ACTIVE_ORDERS_SNAPSHOT": self.handle_orders_snapshot,
                "ACCOUNT_UPDATE": self.handle_account_update,
            }
        )

    # Subscriptions

    def subscribe_request(self, name: str) -> dict[str, Any]:
        channel: dict[str, Any] = {"name": name}
        if name in self._instruments:
            channel["instrument_codes"] = list(self._instruments[name])
        if name == "ORDER_BOOK":
            channel["depth"] = self._book_depth
        elif name == "MARKET_TICKER":
            channel["price_points_mode"] = "INLINE"
        return {"type": "SUBSCRIBE", "channels": [channel]}

    def unsubscribe_request(self, name: str, instrument: str) -> dict[str, Any]:
        """Drop one instrument; the rest of the channel stays subscribed."""
        instruments = self._instruments[name]
        if instrument in instruments:
            instruments.remove(instrument)
        if instruments:
            return self.subscribe_request(name)
        return {"type": "UNSUBSCRIBE", "channels": [name]}

    def _track(self, name: str, markets: list[Market]) -> None:
        instruments = self._instruments[name]
        for market in markets:
            if market.id not in instruments:
                instruments.append(market.id)

    def order_book_subscription(self, market: Market, limit: int | None = None) -> SubscriptionSpec:
        self._track("ORDER_BOOK", [market])
        if limit is not None and "depth" not in self.options:
            self._book_depth = max(self._book_depth, limit)
        return SubscriptionSpec(
            url=self.get_ws_url(),
            channel="ORDER_BOOK",
            symbol=market.symbol,
            message_hashes=(f"book:{market.symbol}",),
            request=partial(self.subscribe_request, "ORDER_BOOK"),
            unsubscribe_request=partial(self.unsubscribe_request, "ORDER_BOOK", market.id),
        )

    def ticker_subscription(self, market: Market) -> SubscriptionSpec:
        return self.tickers_subscription([market])

    def tickers_subscription(self, markets: list[Market] | None) -> SubscriptionSpec:
        if not markets:
            markets = [self.markets.market(symbol) for symbol in self.markets.symbols]
            hashes: tuple[str, ...] = ("ticker",)
        else:
            hashes = tuple(f"ticker:{m.symbol}" for m in markets)
        if not markets:
            raise BadRequest(f"{self.name} watch_tickers requires symbols or configured markets")
        self._track("MARKET_TICKER", markets)
        return SubscriptionSpec(
            url=self.get_ws_url(),
            channel="MARKET_TICKER",
            symbol=",".join(m.symbol for m in markets),
            message_hashes=hashes,
            request=partial(self.subscribe_request, "MARKET_TICKER"),
            unsubscribe_request={"type": "UNSUBSCRIBE", "channels": ["MARKET_TICKER"]},
        )

    def _account_history(self, message_hash: str) -> SubscriptionSpec:
        return SubscriptionSpec(
            url=self.get_ws_url(True),
            channel="ACCOUNT_HISTORY",
            symbol=None,
            message_hashes=(message_hash,),
            request=self.subscribe_request("ACCOUNT_HISTORY"),
            private=True,
        )

    def balance_subscription(self) -> SubscriptionSpec:
        return self._account_history("balance")

    def orders_subscription(self, market: Market | None) -> SubscriptionSpec:
        return self._account_history(f"orders:{market.symbol}" if market else "orders")

    def auth_subscription(self, connection: Connection) -> SubscriptionSpec:
        self.check_required_credentials()
        return SubscriptionSpec(
            url=connection.url,
            channel=AUTH_CHANNEL,
            symbol=None,
            message_hashes=("authenticated",),
            request={"type": "AUTHENTICATE", "api_token": self.api_key},
            private=True,
        )

    async def request_snapshot(self, symbol: str) -> None:
        """Re-send the book subscription; the server answers with fresh snapshots."""
        spec = self._book_specs.get(symbol)
        if spec is None:
            return
        connection = self.connection(spec.url)
        logger.info("%s requesting fresh %s snapshot", self.name, symbol)
        try:
            await connection.send(materialize(spec.request))
        except NetworkError as exc:
            for message_hash in spec.message_hashes:
                connection.reject(exc, message_hash)

    # Handlers

    def check_error(self, connection: Connection, message: Any) -> None:
        if not isinstance(message, dict) or message.get("type") != "ERROR":
            return
        code = message.get("error")
        raise_for_code(
            code,
            code,
            exact=self.exact_errors,
            broad=self.broad_errors,
            feedback=f"{self.name} {json.dumps(message)}",
        )

    def handle_subscriptions(self, connection: Connection, message: dict) -> None:
        for channel in message.get("channels") or []:
            name = channel.get("name")
            codes = channel.get("instrument_codes")
            if codes is None:
                self.ack_subscription(connection, name)
                continue
            for code in codes:
                market = self.markets.safe_market(code)
                for subscription in connection.subscriptions.pending():
                    if subscription.channel == name and market.symbol in (subscription.symbol or "").split(","):
                        connection.subscriptions.mark_active(subscription)

    def handle_authenticated(self, connection: Connection, message: dict) -> None:
        self.ack_subscription(connection, AUTH_CHANNEL)

    def handle_closing(self, connection: Connection, message: dict) -> None:
        logger.warning("%s server is closing the connection: %s", self.name, message)

    def handle_order_book(self, connection: Connection, message: dict) -> None:
        market = self.markets.safe_market(message.get("instrument_code"))
        message_hash = f"book:{market.symbol}"
        timestamp = parse_iso8601(message.get("time"))
        if message["type"] == "ORDER_BOOK_SNAPSHOT":
            self.handle_order_book_snapshot(
                connection,
                market.symbol,
                message.get("bids") or [],
                message.get("asks") or [],
                sequence=None,
                timestamp=timestamp,
                message_hash=message_hash,
            )
            return
        bids = []
        asks = []
        for side, price, amount in message.get("changes") or []:
            (bids if side == "BUY" else asks).append((price, amount))
        delta = BookDelta(bids=bids, asks=asks, timestamp=timestamp)
        self.handle_order_book_delta(connection, market.symbol, delta, message_hash=message_hash)

    def handle_ticker(self, connection: Connection, message: dict) -> None:
        timestamp = parse_iso8601(message.get("time"))
        for data in message.get("ticker_updates") or []:
            ticker = self.parse_ticker(data, timestamp)
            self.store_ticker(connection, ticker, "ticker", f"ticker:{ticker.symbol}")

    def handle_balance_snapshot(self, connection: Connection, message: dict) -> None:
        self._store_balances(connection, message.get("balances") or [], message.get("time"))

    def handle_orders_snapshot(self, connection: Connection, message: dict) -> None:
        orders = [self.parse_order(entry.get("order", entry)) for entry in message.get("orders") or []]
        if orders:
            self.store_orders(connection, orders, "orders")

    def handle_account_update(self, connection: Connection, message: dict) -> None:
        update = message.get("update") or {}
        order = self._order_from_update(update)
        if order is not None:
            self.store_orders(connection, [order], "orders")
        balances = message.get("balances")
        if balances:
            self._store_balances(connection, balances, message.get("time"))

    def _store_balances(self, connection: Connection, balances: list[dict], time: str | None) -> None:
        updates = {}
        for entry in balances:
            asset = entry.get("currency_code")
            updates[asset] = Balance(
                asset=asset,
                free=to_decimal(entry.get("available")) or Decimal("0"),
                used=to_decimal(entry.get("locked")) or Decimal("0"),
            )
        self.store_balances(connection, updates, parse_iso8601(time), "balance")

    def _order_from_update(self, update: dict) -> Order | None:
        kind = update.get("type")
        if kind == "ORDER_CREATED":
            return self.parse_order(update.get("order") or {}, status="open")
        known = self.orders.get(update.get("order_id"))
        if known is None:
            return None
        if kind == "TRADE_SETTLED":
            filled = to_decimal((update.get("order") or {}).get("filled_amount"))
            filled = filled if filled is not None else known.filled
            status = "closed" if filled is not None and filled == known.amount else known.status
            return dataclasses.replace(known, filled=filled, status=status)
        if kind == "ORDER_CLOSED":
            status = "closed" if known.filled == known.amount else "canceled"
            return dataclasses.replace(known, status=status)
        if kind == "ORDER_REJECTED":
            return dataclasses.replace(known, status="rejected")
        return None

    # Parsing

    def parse_ticker(self, data: dict, timestamp: int | None) -> Ticker:
        market = self.markets.safe_market(data.get("instrument"))
        last = to_decimal(data.get("last_price"))
        change = to_decimal(data.get("price_change"))
        return Ticker(
            symbol=market.symbol,
            timestamp=timestamp,
            last=last,
            high=to_decimal(data.get("high")),
            low=to_decimal(data.get("low")),
            open=last - change if last is not None and change is not None else None,
            quote_volume=to_decimal(data.get("volume")),
            info=data,
        )

    def parse_order(self, data: dict, status: str | None = None) -> Order:
        market = self.markets.safe_market(data.get("instrument_code"))
        side = data.get("side")
        order_type = data.get("type")
        return Order(
            id=data.get("order_id"),
            symbol=market.symbol,
            side=side.lower() if side else None,
            type=order_type.lower() if order_type else None,
            status=status or _ORDER_STATUS.get(data.get("status"), "open"),
            price=to_decimal(data.get("price")),
            amount=to_decimal(data.get("amount")),
            filled=to_decimal(data.get("filled_amount")) or Decimal("0"),
            timestamp=parse_iso8601(data.get("time")),
            client_order_id=data.get("client_id"),
            info=data,
        )


_ORDER_STATUS = {
    "OPEN": "open",
    "FILLED": "closed",
    "FILLED_FULLY": "closed",
    "FILLED_CLOSED": "canceled",
    "CLOSED": "canceled",
    "REJECTED": "rejected",
}


def parse_iso8601(value: str | None) -> int | None:
    """Milliseconds since epoch for ``2022-04-21T06:58:11.052123456Z`` style times."""
    if not value:
        return None
    text = value.rstrip("Z")
    if "." in text:
        head, fraction = text.split(".", 1)
        text = f"{head}.{fraction[:6]}"
    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp()) * 1000 + moment.microsecond // 1000


def _discriminator(message: Any) -> str | None:
    if isinstance(message, dict):
        return message.get("type")
    return None


def _ignore(connection: Connection, message: Any) -> None:
    return None
