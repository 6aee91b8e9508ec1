"""OKX v5 streaming adapter."""

from __future__ import annotations

import json
import logging
import time
import zlib
from decimal import Decimal
from functools import partial
from typing import Any

from ..errors import AuthenticationError, BadRequest, BadSymbol, raise_for_code
from ..markets import Market
from ..models import Balance, Order, Ticker, Trade, to_decimal
from ..streaming import AUTH_CHANNEL, BookDelta, Connection, MessageRouter, OrderBook, SequencePolicy
from .base import BaseStreamingExchange, SubscriptionSpec

logger = logging.getLogger(__name__)

CHECKSUM_DEPTH = 25


class OKXExchange(BaseStreamingExchange):
    """OKX public and private streams.

    Order books use the ``books`` channel (snapshot then incremental
    updates chained by ``prevSeqId``) or ``books5`` for small depths,
    where every push is a full snapshot.
    """

    name = "okx"
    capabilities = frozenset(
        {
            "watch_order_book",
            "watch_ticker",
            "watch_tickers",
            "watch_trades",
            "watch_balance",
            "watch_orders",
        }
    )
    sequence_policy = SequencePolicy.MONOTONIC
    market_delimiter = "-"
    swap_suffix = "SWAP"

    exact_errors = {
        "60004": AuthenticationError,
        "60005": AuthenticationError,
        "60006": AuthenticationError,
        "60007": AuthenticationError,
        "60009": AuthenticationError,
        "60011": AuthenticationError,
        "60024": AuthenticationError,
        "60012": BadRequest,
        "60018": BadRequest,
        "51001": BadSymbol,
    }
    broad_errors = {
        "doesn't exist": BadSymbol,
        "Invalid request": BadRequest,
        "Login": AuthenticationError,
    }

    def get_ws_url(self, private: bool = False) -> str:
        path = "private" if private else "public"
        if self.ws_url and not private:
            return self.ws_url
        host = "wss://wspap.okx.com:8443" if self.sandbox else "wss://ws.okx.com:8443"
        return f"{host}/ws/v5/{path}"

    def build_router(self) -> MessageRouter:
        return MessageRouter(_discriminator, error_check=self.check_error).routes(
            {
                "pong": _ignore,
                "subscribe": self.handle_subscribed,
                "unsubscribe": _ignore,
                "login": self.handle_login,
                "channel-conn-count": _ignore,
                "books": self.handle_order_book,
                "books5": self.handle_order_book,
                "tickers": self.handle_ticker,
                "trades": self.handle_trades,
                "account": self.handle_balance,
                "orders": self.handle_orders,
            }
        )

    def ping(self, connection: Connection) -> str:
        return "ping"

    # Subscriptions

    def _spec(
        self,
        channel: str,
        symbol: str | None,
        hashes: tuple[str, ...],
        args: list[dict[str, str]],
        *,
        private: bool = False,
    ) -> SubscriptionSpec:
        return SubscriptionSpec(
            url=self.get_ws_url(private),
            channel=channel,
            symbol=symbol,
            message_hashes=hashes,
            request={"op": "subscribe", "args": args},
            private=private,
            unsubscribe_request={"op": "unsubscribe", "args": args},
        )

    def order_book_subscription(self, market: Market, limit: int | None = None) -> SubscriptionSpec:
        channel = "books5" if limit is not None and limit <= 5 else "books"
        return self._spec(
            channel,
            market.symbol,
            (f"{channel}:{market.id}",),
            [{"channel": channel, "instId": market.id}],
        )

    def ticker_subscription(self, market: Market) -> SubscriptionSpec:
        return self.tickers_subscription([market])

    def tickers_subscription(self, markets: list[Market] | None) -> SubscriptionSpec:
        if not markets:
            raise BadRequest(f"{self.name} watch_tickers requires a list of symbols")
        return self._spec(
            "tickers",
            ",".join(m.symbol for m in markets),
            tuple(f"tickers:{m.id}" for m in markets),
            [{"channel": "tickers", "instId": m.id} for m in markets],
        )

    def trades_subscription(self, market: Market) -> SubscriptionSpec:
        return self._spec(
            "trades",
            market.symbol,
            (f"trades:{market.id}",),
            [{"channel": "trades", "instId": market.id}],
        )

    def balance_subscription(self) -> SubscriptionSpec:
        return self._spec("account", None, ("account",), [{"channel": "account"}], private=True)

    def orders_subscription(self, market: Market | None) -> SubscriptionSpec:
        message_hash = f"orders:{market.symbol}" if market else "orders"
        return self._spec(
            "orders",
            None,
            (message_hash,),
            [{"channel": "orders", "instType": "ANY"}],
            private=True,
        )

    def auth_subscription(self, connection: Connection) -> SubscriptionSpec:
        self.check_required_credentials()
        if not self.api_secret or not self.passphrase:
            raise AuthenticationError(f"{self.name} requires api_secret and passphrase")
        return SubscriptionSpec(
            url=connection.url,
            channel=AUTH_CHANNEL,
            symbol=None,
            message_hashes=("login",),
            request=self.login_request,
            private=True,
        )

    def login_request(self) -> dict[str, Any]:
        """Build a freshly signed login frame; called again on every replay."""
        timestamp = str(int(time.time()))
        signature = self.generate_signature(
            self.api_secret, timestamp + "GET" + "/users/self/verify", encoding="base64"
        )
        return {
            "op": "login",
            "args": [
                {
                    "apiKey": self.api_key,
                    "passphrase": self.passphrase,
                    "timestamp": timestamp,
                    "sign": signature,
                }
            ],
        }

    # Handlers

    def check_error(self, connection: Connection, message: Any) -> None:
        if not isinstance(message, dict):
            return
        event = message.get("event")
        code = message.get("code")
        failed_login = event == "login" and code not in (None, "0", 0)
        if event != "error" and not failed_login:
            return
        raise_for_code(
            str(code) if code is not None else None,
            message.get("msg"),
            exact=self.exact_errors,
            broad=self.broad_errors,
            feedback=f"{self.name} {json.dumps(message)}",
            request_id=message.get("id"),
        )

    def handle_subscribed(self, connection: Connection, message: dict) -> None:
        arg = message.get("arg") or {}
        channel = arg.get("channel")
        inst_id = arg.get("instId")
        if inst_id is None:
            self.ack_subscription(connection, channel)
            return
        for subscription in connection.subscriptions.find_by_hash(f"{channel}:{inst_id}"):
            connection.subscriptions.mark_active(subscription)

    def handle_login(self, connection: Connection, message: dict) -> None:
        self.ack_subscription(connection, AUTH_CHANNEL)

    def handle_order_book(self, connection: Connection, message: dict) -> None:
        arg = message["arg"]
        channel = arg["channel"]
        market = self.markets.safe_market(arg.get("instId"))
        message_hash = f"{channel}:{arg.get('instId')}"
        for data in message.get("data") or []:
            bids = [level[:2] for level in data.get("bids") or []]
            asks = [level[:2] for level in data.get("asks") or []]
            sequence = _int_or_none(data.get("seqId"))
            timestamp = _int_or_none(data.get("ts"))
            verify = None
            if channel == "books" and self.options.get("checksum", True):
                verify = partial(self.verify_checksum, data.get("checksum"))
            if channel == "books5" or message.get("action") == "snapshot":
                self.handle_order_book_snapshot(
                    connection,
                    market.symbol,
                    bids,
                    asks,
                    sequence=sequence,
                    timestamp=timestamp,
                    message_hash=message_hash,
                    verify=verify,
                )
            else:
                prev = _int_or_none(data.get("prevSeqId"))
                delta = BookDelta(
                    bids=bids,
                    asks=asks,
                    sequence=sequence,
                    prev_sequence=prev if prev is not None and prev >= 0 else None,
                    timestamp=timestamp,
                )
                self.handle_order_book_delta(
                    connection, market.symbol, delta, message_hash=message_hash, verify=verify
                )

    def verify_checksum(self, expected: Any, book: OrderBook) -> None:
        """Raise InvalidNonce when the top levels do not match ``expected``."""
        if expected is None or not book.initialized:
            return
        actual = book_checksum(book.bids.levels(CHECKSUM_DEPTH), book.asks.levels(CHECKSUM_DEPTH))
        if actual != int(expected):
            book.invalidate(f"checksum {actual} != {expected}")

    def handle_ticker(self, connection: Connection, message: dict) -> None:
        for data in message.get("data") or []:
            ticker = self.parse_ticker(data)
            self.store_ticker(connection, ticker, f"tickers:{data.get('instId')}")

    def handle_trades(self, connection: Connection, message: dict) -> None:
        arg = message["arg"]
        trades = [self.parse_trade(data) for data in message.get("data") or []]
        if trades:
            self.store_trades(connection, trades[0].symbol, trades, f"trades:{arg.get('instId')}")

    def handle_balance(self, connection: Connection, message: dict) -> None:
        for data in message.get("data") or []:
            updates = {}
            for detail in data.get("details") or []:
                asset = detail.get("ccy")
                updates[asset] = Balance(
                    asset=asset,
                    free=to_decimal(detail.get("availBal")) or Decimal("0"),
                    used=to_decimal(detail.get("frozenBal")) or Decimal("0"),
                )
            self.store_balances(connection, updates, _int_or_none(data.get("uTime")), "account")

    def handle_orders(self, connection: Connection, message: dict) -> None:
        orders = [self.parse_order(data) for data in message.get("data") or []]
        if orders:
            self.store_orders(connection, orders, "orders")

    # Parsing

    def parse_ticker(self, data: dict) -> Ticker:
        market = self.markets.safe_market(data.get("instId"))
        return Ticker(
            symbol=market.symbol,
            timestamp=_int_or_none(data.get("ts")),
            last=to_decimal(data.get("last")),
            bid=to_decimal(data.get("bidPx")),
            ask=to_decimal(data.get("askPx")),
            high=to_decimal(data.get("high24h")),
            low=to_decimal(data.get("low24h")),
            open=to_decimal(data.get("open24h")),
            base_volume=to_decimal(data.get("vol24h")),
            quote_volume=to_decimal(data.get("volCcy24h")),
            info=data,
        )

    def parse_trade(self, data: dict) -> Trade:
        market = self.markets.safe_market(data.get("instId"))
        return Trade(
            id=data.get("tradeId"),
            symbol=market.symbol,
            side=data.get("side"),
            price=to_decimal(data.get("px")),
            amount=to_decimal(data.get("sz")),
            timestamp=_int_or_none(data.get("ts")),
            info=data,
        )

    def parse_order(self, data: dict) -> Order:
        market = self.markets.safe_market(data.get("instId"))
        return Order(
            id=data.get("ordId"),
            symbol=market.symbol,
            side=data.get("side"),
            type=data.get("ordType"),
            status=_ORDER_STATUS.get(data.get("state"), data.get("state")),
            price=to_decimal(data.get("px")),
            amount=to_decimal(data.get("sz")),
            filled=to_decimal(data.get("accFillSz")),
            timestamp=_int_or_none(data.get("uTime") or data.get("cTime")),
            client_order_id=data.get("clOrdId") or None,
            info=data,
        )


_ORDER_STATUS = {
    "live": "open",
    "partially_filled": "open",
    "filled": "closed",
    "canceled": "canceled",
    "mmp_canceled": "canceled",
}


def book_checksum(bids: list, asks: list) -> int:
    """CRC32 over interleaved top levels, as a signed 32-bit integer."""
    parts: list[str] = []
    for i in range(CHECKSUM_DEPTH):
        if i < len(bids):
            parts.extend(format(value, "f") for value in bids[i])
        if i < len(asks):
            parts.extend(format(value, "f") for value in asks[i])
    value = zlib.crc32(":".join(parts).encode())
    return value - (1 << 32) if value >= 1 << 31 else value


def _discriminator(message: Any) -> str | None:
    if message == "pong":
        return "pong"
    if not isinstance(message, dict):
        return None
    if "event" in message:
        return message["event"]
    arg = message.get("arg")
    if isinstance(arg, dict):
        return arg.get("channel")
    return None


def _ignore(connection: Connection, message: Any) -> None:
    return None


def _int_or_none(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)
