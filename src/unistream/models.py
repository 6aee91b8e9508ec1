"""Unified value objects produced by exchange adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any


def to_decimal(value: Any) -> Decimal | None:
    """Normalize a wire number (string, int or float) to Decimal.

    Floats go through their shortest repr so 0.1 stays 0.1.
    Empty strings and None map to None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


@dataclass(frozen=True, slots=True)
class Ticker:
    """Latest 24h statistics for a market."""

    symbol: str
    timestamp: int | None
    last: Decimal | None = None
    bid: Decimal | None = None
    ask: Decimal | None = None
    high: Decimal | None = None
    low: Decimal | None = None
    open: Decimal | None = None
    base_volume: Decimal | None = None
    quote_volume: Decimal | None = None
    mark_price: Decimal | None = None
    index_price: Decimal | None = None
    info: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class Trade:
    """A public trade print."""

    id: str | None
    symbol: str
    side: str | None
    price: Decimal | None
    amount: Decimal | None
    timestamp: int | None
    info: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def cost(self) -> Decimal | None:
        if self.price is None or self.amount is None:
            return None
        return self.price * self.amount


@dataclass(frozen=True, slots=True)
class Order:
    """An own-order update."""

    id: str
    symbol: str
    side: str | None
    type: str | None
    status: str | None
    price: Decimal | None
    amount: Decimal | None
    filled: Decimal | None
    timestamp: int | None
    client_order_id: str | None = None
    info: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def remaining(self) -> Decimal | None:
        if self.amount is None or self.filled is None:
            return None
        return self.amount - self.filled


@dataclass(frozen=True, slots=True)
class Balance:
    """Account balance for a single asset."""

    asset: str
    free: Decimal
    used: Decimal

    @property
    def total(self) -> Decimal:
        return self.free + self.used


@dataclass(frozen=True, slots=True)
class Balances:
    """Snapshot of all asset balances on an account."""

    assets: dict[str, Balance]
    timestamp: int | None = None

    def __getitem__(self, asset: str) -> Balance:
        return self.assets[asset]

    def __contains__(self, asset: object) -> bool:
        return asset in self.assets

    def get(self, asset: str) -> Balance | None:
        return self.assets.get(asset)

    def merge(self, updates: dict[str, Balance], timestamp: int | None = None) -> "Balances":
        assets = dict(self.assets)
        assets.update(updates)
        return Balances(assets, timestamp if timestamp is not None else self.timestamp)


@dataclass(frozen=True, slots=True)
class OrderBookSnapshot:
    """Immutable, depth-limited view of a live order book."""

    symbol: str
    bids: list[tuple[Decimal, Decimal]]
    asks: list[tuple[Decimal, Decimal]]
    sequence: int | None
    timestamp: int | None

    @property
    def nonce(self) -> int | None:
        return self.sequence

    @property
    def best_bid(self) -> tuple[Decimal, Decimal] | None:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> tuple[Decimal, Decimal] | None:
        return self.asks[0] if self.asks else None

    @property
    def spread(self) -> Decimal | None:
        if not self.bids or not self.asks:
            return None
        return self.asks[0][0] - self.bids[0][0]
