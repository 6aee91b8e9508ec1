"""Order book reconciliation engine.

Maintains one live bid/ask ladder per symbol from a snapshot followed by
sequenced deltas. Any sequence gap, stale delta or crossed ladder discards
the state and raises ``InvalidNonce`` so the owner can request a fresh
snapshot; an inconsistent book is never served.
"""

from __future__ import annotations

import bisect
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable

from ..errors import InvalidNonce
from ..models import OrderBookSnapshot, to_decimal

logger = logging.getLogger(__name__)

Level = tuple[Decimal, Decimal]


class BookState(Enum):
    """Lifecycle of a reconciled order book."""

    UNINITIALIZED = "uninitialized"
    SNAPSHOT_APPLIED = "snapshot_applied"
    DELTA_STREAM = "delta_stream"


class SequencePolicy(Enum):
    """How delta sequence numbers relate to each other on the wire."""

    CONTIGUOUS = "contiguous"
    MONOTONIC = "monotonic"
    UNSEQUENCED = "unsequenced"


@dataclass(slots=True)
class BookDelta:
    """Incremental change set; a size of zero removes the price level."""

    bids: list[tuple[Any, Any]] = field(default_factory=list)
    asks: list[tuple[Any, Any]] = field(default_factory=list)
    sequence: int | None = None
    prev_sequence: int | None = None
    timestamp: int | None = None

    @property
    def empty(self) -> bool:
        return not self.bids and not self.asks


class OrderBookSide:
    """One side of the book: unique price levels kept in sorted order."""

    def __init__(self, *, descending: bool):
        self.descending = descending
        self._prices: list[Decimal] = []
        self._sizes: dict[Decimal, Decimal] = {}

    def store(self, price: Decimal, size: Decimal) -> None:
        if size == 0:
            if price in self._sizes:
                del self._sizes[price]
                index = bisect.bisect_left(self._prices, price)
                del self._prices[index]
            return
        if price not in self._sizes:
            bisect.insort(self._prices, price)
        self._sizes[price] = size

    def replace(self, levels: Iterable[tuple[Any, Any]]) -> None:
        self.clear()
        for price, size in levels:
            self.store(_number(price), _number(size))

    def clear(self) -> None:
        self._prices.clear()
        self._sizes.clear()

    def best(self) -> Level | None:
        if not self._prices:
            return None
        price = self._prices[-1] if self.descending else self._prices[0]
        return price, self._sizes[price]

    def levels(self, limit: int | None = None) -> list[Level]:
        prices = reversed(self._prices) if self.descending else iter(self._prices)
        result = []
        for price in prices:
            if limit is not None and len(result) >= limit:
                break
            result.append((price, self._sizes[price]))
        return result

    def __len__(self) -> int:
        return len(self._prices)

    def __contains__(self, price: object) -> bool:
        return price in self._sizes


class OrderBook:
    """Live order book for one symbol."""

    def __init__(
        self,
        symbol: str,
        *,
        policy: SequencePolicy = SequencePolicy.CONTIGUOUS,
        buffer_limit: int = 100,
    ):
        self.symbol = symbol
        self.policy = policy
        self.buffer_limit = buffer_limit
        self.bids = OrderBookSide(descending=True)
        self.asks = OrderBookSide(descending=False)
        self.sequence: int | None = None
        self.timestamp: int | None = None
        self.state = BookState.UNINITIALIZED
        self._buffer: deque[BookDelta] = deque()

    @property
    def initialized(self) -> bool:
        return self.state is not BookState.UNINITIALIZED

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def reset(
        self,
        bids: Iterable[tuple[Any, Any]],
        asks: Iterable[tuple[Any, Any]],
        *,
        sequence: int | None = None,
        timestamp: int | None = None,
    ) -> None:
        """Apply a full snapshot, then replay deltas buffered while waiting for it."""
        self.bids.replace(bids)
        self.asks.replace(asks)
        self.sequence = sequence
        self.timestamp = timestamp if timestamp is not None else _now_ms()
        self.state = BookState.SNAPSHOT_APPLIED
        self._check_crossed()

        pending = list(self._buffer)
        self._buffer.clear()
        replayed = 0
        for delta in pending:
            if sequence is not None and delta.sequence is not None and delta.sequence <= sequence:
                continue
            self._apply(delta)
            replayed += 1
        if pending:
            logger.debug(
                "%s snapshot at %s replayed %d of %d buffered deltas",
                self.symbol,
                sequence,
                replayed,
                len(pending),
            )

    def update(self, delta: BookDelta) -> bool:
        """Apply a delta, or buffer it when no snapshot has landed yet.

        Returns:
            True if the delta was applied, False if it was buffered

        Raises:
            InvalidNonce: On a sequence gap, stale delta or crossed book;
                the book is reset to UNINITIALIZED before raising
        """
        if self.state is BookState.UNINITIALIZED:
            self._buffer.append(delta)
            if len(self._buffer) > self.buffer_limit:
                logger.warning(
                    "%s dropped %d buffered deltas while waiting for snapshot",
                    self.symbol,
                    len(self._buffer),
                )
                self._buffer.clear()
            return False
        self._apply(delta)
        return True

    def clear(self) -> None:
        self.bids.clear()
        self.asks.clear()
        self.sequence = None
        self.timestamp = None
        self.state = BookState.UNINITIALIZED
        self._buffer.clear()

    def invalidate(self, reason: str) -> None:
        """Discard all state and raise InvalidNonce."""
        last = self.sequence
        self.clear()
        logger.warning("%s order book invalidated at sequence %s: %s", self.symbol, last, reason)
        raise InvalidNonce(f"{self.symbol}: {reason}", symbol=self.symbol)

    def snapshot(self, limit: int | None = None) -> OrderBookSnapshot:
        """Top ``limit`` levels per side; the stored ladder is left intact."""
        return OrderBookSnapshot(
            symbol=self.symbol,
            bids=self.bids.levels(limit),
            asks=self.asks.levels(limit),
            sequence=self.sequence,
            timestamp=self.timestamp,
        )

    def _apply(self, delta: BookDelta) -> None:
        self._check_sequence(delta)
        for price, size in delta.bids:
            self.bids.store(_number(price), _number(size))
        for price, size in delta.asks:
            self.asks.store(_number(price), _number(size))
        if delta.sequence is not None:
            self.sequence = delta.sequence
        self.timestamp = delta.timestamp if delta.timestamp is not None else _now_ms()
        self.state = BookState.DELTA_STREAM
        self._check_crossed()

    def _check_sequence(self, delta: BookDelta) -> None:
        if self.policy is SequencePolicy.UNSEQUENCED or self.sequence is None:
            return
        last = self.sequence
        if delta.prev_sequence is not None:
            if delta.prev_sequence != last:
                self.invalidate(f"expected prev sequence {last}, got {delta.prev_sequence}")
            if delta.sequence is not None and delta.sequence <= last and not (
                delta.sequence == last and delta.empty
            ):
                self.invalidate(f"stale sequence {delta.sequence} after {last}")
            return
        if delta.sequence is None:
            return
        if self.policy is SequencePolicy.CONTIGUOUS:
            if delta.sequence != last + 1:
                self.invalidate(f"expected sequence {last + 1}, got {delta.sequence}")
        elif delta.sequence <= last:
            self.invalidate(f"non-increasing sequence {delta.sequence} after {last}")

    def _check_crossed(self) -> None:
        best_bid = self.bids.best()
        best_ask = self.asks.best()
        if best_bid is not None and best_ask is not None and best_bid[0] >= best_ask[0]:
            self.invalidate(f"crossed book, bid {best_bid[0]} >= ask {best_ask[0]}")


def _number(value: Any) -> Decimal:
    number = to_decimal(value)
    if number is None:
        raise ValueError(f"invalid price or size: {value!r}")
    return number


def _now_ms() -> int:
    return int(time.time() * 1000)
