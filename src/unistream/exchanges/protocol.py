"""Protocol definition for streaming exchange adapters."""

from __future__ import annotations

from typing import AsyncIterator, Protocol

from ..models import Balances, Order, OrderBookSnapshot, Ticker, Trade


class StreamingExchange(Protocol):
    """Consumer-facing watch API shared by every adapter.

    Each ``watch_*`` call returns the next update as it arrives; the
    underlying subscription stays open between calls.
    """

    name: str

    async def watch_order_book(
        self, symbol: str, limit: int | None = None, *, timeout: float | None = None
    ) -> OrderBookSnapshot:
        """Wait for the next reconciled order book.

        Args:
            symbol: Unified symbol (e.g., 'BTC/USDT')
            limit: Number of price levels per side to return (optional)
            timeout: Maximum seconds to wait (optional)

        Returns:
            Depth-limited, price-sorted snapshot
        """
        ...

    async def watch_ticker(self, symbol: str, *, timeout: float | None = None) -> Ticker:
        """Wait for the next ticker update for a symbol."""
        ...

    async def watch_tickers(
        self, symbols: list[str] | None = None, *, timeout: float | None = None
    ) -> dict[str, Ticker]:
        """Wait for the next ticker update among ``symbols`` (all when None)."""
        ...

    async def watch_trades(
        self, symbol: str, limit: int | None = None, *, timeout: float | None = None
    ) -> list[Trade]:
        """Wait for new trades and return the bounded recent history."""
        ...

    async def watch_balance(self, *, timeout: float | None = None) -> Balances:
        """Wait for the next account balance update (private)."""
        ...

    async def watch_orders(
        self, symbol: str | None = None, limit: int | None = None, *, timeout: float | None = None
    ) -> list[Order]:
        """Wait for own-order updates and return the bounded recent history (private)."""
        ...

    def stream_order_book(self, symbol: str, limit: int | None = None) -> AsyncIterator[OrderBookSnapshot]:
        """Yield every order book update until unsubscribed or closed."""
        ...

    def stream_ticker(self, symbol: str) -> AsyncIterator[Ticker]:
        ...

    def stream_trades(self, symbol: str) -> AsyncIterator[list[Trade]]:
        ...

    async def unwatch_order_book(self, symbol: str) -> None:
        ...

    async def close(self) -> None:
        """Close every connection; pending waits fail with NetworkError."""
        ...
