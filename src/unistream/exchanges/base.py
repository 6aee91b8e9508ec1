"""Base class for streaming exchange adapters."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import partial
from typing import Any, AsyncIterator, Callable

from ..errors import (
    AuthenticationError,
    BadRequest,
    ExchangeError,
    InvalidNonce,
    NetworkError,
    NotSupported,
    StreamClosed,
)
from ..markets import Market, MarketRegistry
from ..models import Balance, Balances, Order, OrderBookSnapshot, Ticker, Trade
from ..settings import StreamSettings
from ..streaming import (
    AUTH_CHANNEL,
    AiohttpTransport,
    ArrayCache,
    ArrayCacheById,
    BookDelta,
    Connection,
    MessageRouter,
    OrderBook,
    SequencePolicy,
    Transport,
    materialize,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SubscriptionSpec:
    """Everything needed to open one logical subscription on a connection."""

    url: str
    channel: str
    symbol: str | None
    message_hashes: tuple[str, ...]
    request: Any
    request_id: Any = None
    private: bool = False
    unsubscribe_request: Any = None


class BaseStreamingExchange(ABC):
    """Base class for all streaming adapters.

    Subclasses describe their wire protocol: which URL and request open a
    channel (``*_subscription`` methods), how inbound messages are routed
    (``build_router``) and how payloads map onto unified models. The base
    class owns connections, order books, caches and the consumer API.
    """

    name = "base"
    capabilities: frozenset[str] = frozenset()
    sequence_policy = SequencePolicy.CONTIGUOUS
    market_delimiter = "-"
    swap_suffix: str | None = "SWAP"

    def __init__(
        self,
        api_key: str | None = None,
        api_secret: str | None = None,
        *,
        passphrase: str | None = None,
        sandbox: bool = False,
        proxy: str | None = None,
        ws_url: str | None = None,
        stream: StreamSettings | None = None,
        markets: MarketRegistry | None = None,
        transport_factory: Callable[[], Transport] | None = None,
        **options: Any,
    ):
        """Initialize a streaming adapter.

        Args:
            api_key: API key for private channels (optional)
            api_secret: API secret for private channels (optional)
            passphrase: API passphrase (OKX)
            sandbox: Use the exchange's test environment
            proxy: Proxy URL for the WebSocket transport
            ws_url: Override for the public WebSocket URL
            stream: Cache sizes, timeouts and reconnect policy
            markets: Market registry; ids are derived on the fly when omitted
            transport_factory: Builds the socket transport (tests inject fakes)
            **options: Additional exchange-specific options
        """
        self.api_key = api_key
        self.api_secret = api_secret
        self.passphrase = passphrase
        self.sandbox = sandbox
        self.proxy = proxy
        self.ws_url = ws_url
        self.options = options
        self.stream_settings = stream or StreamSettings()
        self.markets = markets or MarketRegistry(
            delimiter=self.market_delimiter, swap_suffix=self.swap_suffix
        )
        if self.stream_settings.sequence_policy is not None:
            self.sequence_policy = SequencePolicy(self.stream_settings.sequence_policy)
        self.transport_factory = transport_factory

        self.orderbooks: dict[str, OrderBook] = {}
        self.tickers: dict[str, Ticker] = {}
        self.trades: dict[str, ArrayCache[Trade]] = {}
        self.orders: ArrayCacheById[Order] = ArrayCacheById(self.stream_settings.orders_limit)
        self.balances = Balances({})

        self._connections: dict[str, Connection] = {}
        self._book_specs: dict[str, SubscriptionSpec] = {}
        self.router = self.build_router()

    @staticmethod
    def generate_signature(secret: str, message: str, encoding: str = "hex") -> str:
        """Generate an HMAC-SHA256 signature.

        Args:
            secret: Secret key
            message: Message to sign
            encoding: 'hex' or 'base64'

        Returns:
            Encoded signature
        """
        digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256)
        if encoding == "hex":
            return digest.hexdigest()
        if encoding == "base64":
            return base64.b64encode(digest.digest()).decode()
        raise ValueError(f"Unsupported signature encoding: {encoding}")

    @staticmethod
    def milliseconds() -> int:
        return int(time.time() * 1000)

    @abstractmethod
    def get_ws_url(self, private: bool = False) -> str:
        """WebSocket endpoint for public or private channels."""
        ...

    @abstractmethod
    def build_router(self) -> MessageRouter:
        """Build the dispatch table for this exchange's inbound messages."""
        ...

    def ping(self, connection: Connection) -> Any:
        """Application-level ping payload, or None when the protocol has none."""
        return None

    def connection(self, url: str) -> Connection:
        connection = self._connections.get(url)
        if connection is None or connection.terminal_error is not None:
            factory = self.transport_factory
            if factory is None and self.proxy:
                factory = partial(
                    AiohttpTransport,
                    proxy=self.proxy,
                    connect_timeout=self.stream_settings.connect_timeout,
                )
            connection = Connection(
                url,
                self.router,
                self.stream_settings,
                transport_factory=factory,
                ping=self.ping,
                on_disconnect=self._on_disconnect,
                name=f"{self.name} {url}",
            )
            self._connections[url] = connection
        return connection

    def order_book(self, symbol: str) -> OrderBook:
        book = self.orderbooks.get(symbol)
        if book is None:
            book = OrderBook(
                symbol,
                policy=self.sequence_policy,
                buffer_limit=self.stream_settings.snapshot_buffer_limit,
            )
            self.orderbooks[symbol] = book
        return book

    def _book_spec(self, market: Market, limit: int | None) -> SubscriptionSpec:
        """The order book subscription for a symbol; one channel per symbol at a time."""
        spec = self.order_book_subscription(market, limit)
        current = self._book_specs.get(market.symbol)
        if current is None:
            self._book_specs[market.symbol] = spec
            return spec
        if current.channel != spec.channel:
            raise BadRequest(
                f"{self.name} {market.symbol} order book is already watched on {current.channel}"
            )
        return current

    def check_required_credentials(self) -> None:
        if not self.api_key:
            raise AuthenticationError(f"{self.name} requires api_key for private channels")

    # Subscription descriptions; adapters override what they support.

    def order_book_subscription(self, market: Market, limit: int | None = None) -> SubscriptionSpec:
        raise NotSupported(f"{self.name} does not support watch_order_book")

    def ticker_subscription(self, market: Market) -> SubscriptionSpec:
        raise NotSupported(f"{self.name} does not support watch_ticker")

    def tickers_subscription(self, markets: list[Market] | None) -> SubscriptionSpec:
        raise NotSupported(f"{self.name} does not support watch_tickers")

    def trades_subscription(self, market: Market) -> SubscriptionSpec:
        raise NotSupported(f"{self.name} does not support watch_trades")

    def balance_subscription(self) -> SubscriptionSpec:
        raise NotSupported(f"{self.name} does not support watch_balance")

    def orders_subscription(self, market: Market | None) -> SubscriptionSpec:
        raise NotSupported(f"{self.name} does not support watch_orders")

    def auth_subscription(self, connection: Connection) -> SubscriptionSpec | None:
        return None

    # Consumer API

    async def watch_order_book(
        self, symbol: str, limit: int | None = None, *, timeout: float | None = None
    ) -> OrderBookSnapshot:
        spec = self._book_spec(self.markets.market(symbol), limit)
        snapshot = await self._watch(spec, timeout)
        return limit_book(snapshot, limit)

    async def watch_ticker(self, symbol: str, *, timeout: float | None = None) -> Ticker:
        spec = self.ticker_subscription(self.markets.market(symbol))
        return await self._watch(spec, timeout)

    async def watch_tickers(
        self, symbols: list[str] | None = None, *, timeout: float | None = None
    ) -> dict[str, Ticker]:
        markets = [self.markets.market(s) for s in symbols] if symbols else None
        spec = self.tickers_subscription(markets)
        ticker = await self._watch(spec, timeout)
        return {ticker.symbol: ticker}

    async def watch_trades(
        self, symbol: str, limit: int | None = None, *, timeout: float | None = None
    ) -> list[Trade]:
        spec = self.trades_subscription(self.markets.market(symbol))
        trades = await self._watch(spec, timeout)
        return trades[-limit:] if limit else trades

    async def watch_balance(self, *, timeout: float | None = None) -> Balances:
        spec = self.balance_subscription()
        self.check_required_credentials()
        return await self._watch(spec, timeout)

    async def watch_orders(
        self, symbol: str | None = None, limit: int | None = None, *, timeout: float | None = None
    ) -> list[Order]:
        market = self.markets.market(symbol) if symbol else None
        spec = self.orders_subscription(market)
        self.check_required_credentials()
        orders = await self._watch(spec, timeout)
        if market is not None:
            orders = [o for o in orders if o.symbol == market.symbol]
        return orders[-limit:] if limit else orders

    async def stream_order_book(
        self, symbol: str, limit: int | None = None
    ) -> AsyncIterator[OrderBookSnapshot]:
        spec = self._book_spec(self.markets.market(symbol), limit)
        async for snapshot in self._iterate(spec):
            yield limit_book(snapshot, limit)

    async def stream_ticker(self, symbol: str) -> AsyncIterator[Ticker]:
        spec = self.ticker_subscription(self.markets.market(symbol))
        async for ticker in self._iterate(spec):
            yield ticker

    async def stream_trades(self, symbol: str) -> AsyncIterator[list[Trade]]:
        spec = self.trades_subscription(self.markets.market(symbol))
        async for trades in self._iterate(spec):
            yield trades

    async def unwatch_order_book(self, symbol: str) -> None:
        market = self.markets.market(symbol)
        spec = self._book_specs.pop(market.symbol, None) or self.order_book_subscription(market)
        await self.connection(spec.url).unsubscribe(spec.channel, spec.symbol, spec.unsubscribe_request)
        book = self.orderbooks.pop(market.symbol, None)
        if book is not None:
            book.clear()

    async def unwatch_trades(self, symbol: str) -> None:
        market = self.markets.market(symbol)
        spec = self.trades_subscription(market)
        await self.connection(spec.url).unsubscribe(spec.channel, spec.symbol, spec.unsubscribe_request)
        self.trades.pop(market.symbol, None)

    async def authenticate(self, connection: Connection, *, timeout: float | None = None) -> None:
        """Run the private-channel handshake once per connection.

        Raises:
            AuthenticationError: If the exchange rejects the credentials
        """
        subscription = connection.subscriptions.get(AUTH_CHANNEL)
        if subscription is not None and subscription.active:
            return
        spec = self.auth_subscription(connection)
        if spec is None:
            return
        await connection.watch(
            spec.message_hashes,
            spec.request,
            channel=AUTH_CHANNEL,
            request_id=spec.request_id,
            private=True,
            timeout=timeout or self.stream_settings.connect_timeout,
        )

    async def request_snapshot(self, symbol: str) -> None:
        """Ask for a fresh order book snapshot by re-subscribing the channel.

        Only when the request itself cannot be sent are the book's waiters
        told about it.
        """
        spec = self._book_specs.get(symbol)
        if spec is None:
            return
        connection = self.connection(spec.url)
        logger.info("%s requesting fresh %s snapshot", self.name, symbol)
        try:
            if spec.unsubscribe_request is not None:
                await connection.send(materialize(spec.unsubscribe_request))
            await connection.send(materialize(spec.request))
        except NetworkError as exc:
            for message_hash in spec.message_hashes:
                connection.reject(exc, message_hash)

    async def close(self) -> None:
        """Close connections."""
        connections, self._connections = list(self._connections.values()), {}
        self._book_specs.clear()
        for connection in connections:
            await connection.close()
        for book in self.orderbooks.values():
            book.clear()

    # Helpers for message handlers, always called on the reader task.

    def handle_order_book_snapshot(
        self,
        connection: Connection,
        symbol: str,
        bids: list,
        asks: list,
        *,
        sequence: int | None,
        timestamp: int | None,
        message_hash: str,
        verify: Callable[[OrderBook], None] | None = None,
    ) -> None:
        book = self.order_book(symbol)
        try:
            book.reset(bids, asks, sequence=sequence, timestamp=timestamp)
            if verify is not None:
                verify(book)
        except InvalidNonce as exc:
            self._recover(connection, symbol, exc)
            return
        connection.resolve(book.snapshot(), message_hash)

    def handle_order_book_delta(
        self,
        connection: Connection,
        symbol: str,
        delta: BookDelta,
        *,
        message_hash: str,
        verify: Callable[[OrderBook], None] | None = None,
    ) -> None:
        """Apply a delta; ``verify`` may raise InvalidNonce before anyone sees the book."""
        book = self.order_book(symbol)
        try:
            applied = book.update(delta)
            if applied and verify is not None:
                verify(book)
        except InvalidNonce as exc:
            self._recover(connection, symbol, exc)
            return
        if applied:
            connection.resolve(book.snapshot(), message_hash)

    def store_ticker(self, connection: Connection, ticker: Ticker, *message_hashes: str) -> None:
        self.tickers[ticker.symbol] = ticker
        for message_hash in message_hashes:
            connection.resolve(ticker, message_hash)

    def store_trades(self, connection: Connection, symbol: str, trades: list[Trade], *message_hashes: str) -> None:
        stored = self.trades.get(symbol)
        if stored is None:
            stored = ArrayCache(self.stream_settings.trades_limit)
            self.trades[symbol] = stored
        stored.extend(trades)
        snapshot = stored.get_all()
        for message_hash in message_hashes:
            connection.resolve(snapshot, message_hash)

    def store_orders(self, connection: Connection, orders: list[Order], message_hash: str) -> None:
        self.orders.extend(orders)
        everything = self.orders.get_all()
        connection.resolve(everything, message_hash)
        for symbol in {o.symbol for o in orders}:
            connection.resolve([o for o in everything if o.symbol == symbol], f"{message_hash}:{symbol}")

    def store_balances(
        self, connection: Connection, updates: dict[str, Balance], timestamp: int | None, message_hash: str
    ) -> None:
        self.balances = self.balances.merge(updates, timestamp)
        connection.resolve(self.balances, message_hash)

    def ack_subscription(self, connection: Connection, channel: str, symbol: str | None = None) -> None:
        subscription = connection.subscriptions.get(channel, symbol)
        if subscription is None:
            logger.debug("%s ack for unknown subscription %s %s", self.name, channel, symbol)
            return
        connection.subscriptions.mark_active(subscription)
        if channel == AUTH_CHANNEL:
            for message_hash in subscription.message_hashes:
                connection.resolve(True, message_hash)

    def ack_request(self, connection: Connection, request_id: Any) -> None:
        subscription = connection.subscriptions.find_by_request_id(request_id)
        if subscription is None:
            logger.debug("%s ack for unknown request id %s", self.name, request_id)
            return
        self.ack_subscription(connection, subscription.channel, subscription.symbol)

    async def _watch(self, spec: SubscriptionSpec, timeout: float | None) -> Any:
        connection = self.connection(spec.url)
        if spec.private:
            await self.authenticate(connection)
        return await connection.watch(
            spec.message_hashes,
            spec.request,
            channel=spec.channel,
            symbol=spec.symbol,
            request_id=spec.request_id,
            private=spec.private,
            timeout=timeout,
        )

    async def _iterate(self, spec: SubscriptionSpec) -> AsyncIterator[Any]:
        connection = self.connection(spec.url)
        if spec.private:
            await self.authenticate(connection)
        waiter = await connection.stream(
            spec.message_hashes,
            spec.request,
            channel=spec.channel,
            symbol=spec.symbol,
            request_id=spec.request_id,
            private=spec.private,
        )
        try:
            while True:
                try:
                    value = await waiter.get()
                except StreamClosed:
                    return
                except (NetworkError, ExchangeError) as exc:
                    if waiter.closed:
                        raise
                    logger.warning("%s stream %s interrupted: %s", self.name, spec.channel, exc)
                    continue
                yield value
        finally:
            connection.waiters.discard(waiter)

    def _recover(self, connection: Connection, symbol: str, exc: InvalidNonce) -> None:
        logger.info("%s %s out of sync (%s), re-snapshotting", self.name, symbol, exc)
        connection.spawn(self.request_snapshot(symbol))

    def _on_disconnect(self, connection: Connection) -> None:
        for symbol, spec in self._book_specs.items():
            if spec.url == connection.url and symbol in self.orderbooks:
                self.orderbooks[symbol].clear()


def limit_book(snapshot: OrderBookSnapshot, limit: int | None) -> OrderBookSnapshot:
    if limit is None:
        return snapshot
    return OrderBookSnapshot(
        symbol=snapshot.symbol,
        bids=snapshot.bids[:limit],
        asks=snapshot.asks[:limit],
        sequence=snapshot.sequence,
        timestamp=snapshot.timestamp,
    )
