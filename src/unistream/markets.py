"""Market registry: unified symbol <-> exchange-native id mapping."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from .errors import BadSymbol

logger = logging.getLogger(__name__)

QUOTE_ASSETS = ("USDT", "USDC", "BUSD", "TUSD", "USDD", "DAI", "EUR", "USD", "BTC", "ETH")


@dataclass(frozen=True, slots=True)
class Market:
    """A tradable market as seen by the streaming core."""

    symbol: str
    id: str
    base: str
    quote: str
    settle: str | None = None
    type: str = "spot"
    price_precision: Decimal | None = None
    amount_precision: Decimal | None = None


def extract_base_symbol(symbol: str) -> tuple[str, str]:
    """Extract base and quote currency from a symbol.

    Handles various formats:
    - BTC/USDT -> (BTC, USDT)
    - BTC/USD:USD -> (BTC, USD)
    - BTC-USDT, BTC_EUR -> (BTC, USDT), (BTC, EUR)
    - BTCUSDT -> (BTC, USDT)
    - BTC -> (BTC, '')
    """
    if not symbol:
        return "", ""

    symbol = symbol.strip().upper().split(":")[0]

    for separator in ("/", "-", "_"):
        if separator in symbol:
            parts = symbol.split(separator)
            if len(parts) >= 2:
                return parts[0].strip(), parts[1].strip()

    for quote in sorted(QUOTE_ASSETS, key=len, reverse=True):
        if symbol.endswith(quote):
            base = symbol[: -len(quote)]
            if base:
                return base, quote

    return symbol, ""


def normalize_symbol(symbol: str) -> str:
    """Normalize any symbol spelling to the unified BASE/QUOTE form.

    A settle suffix (``BTC/USD:USD``) is preserved.
    """
    if not symbol:
        return symbol

    symbol = symbol.strip().upper()
    settle = None
    if ":" in symbol:
        symbol, settle = symbol.split(":", 1)

    base, quote = extract_base_symbol(symbol)
    if not quote:
        return base
    unified = f"{base}/{quote}"
    return f"{unified}:{settle}" if settle else unified


class MarketRegistry:
    """Read-only lookup of markets by unified symbol and by exchange id.

    Unknown exchange ids can still be resolved through ``safe_market``,
    which derives a market from the id using the adapter's delimiter.
    """

    def __init__(
        self,
        markets: Iterable[Market] = (),
        *,
        delimiter: str = "-",
        swap_suffix: str | None = "SWAP",
    ):
        self.delimiter = delimiter
        self.swap_suffix = swap_suffix
        self._by_symbol: dict[str, Market] = {}
        self._by_id: dict[str, Market] = {}
        for market in markets:
            self._by_symbol[market.symbol] = market
            self._by_id[market.id] = market

    @classmethod
    def from_config(
        cls,
        entries: Iterable[dict[str, Any]],
        *,
        delimiter: str = "-",
        swap_suffix: str | None = "SWAP",
    ) -> "MarketRegistry":
        markets = []
        for entry in entries:
            base, quote = extract_base_symbol(entry["symbol"])
            markets.append(
                Market(
                    symbol=normalize_symbol(entry["symbol"]),
                    id=entry["id"],
                    base=entry.get("base") or base,
                    quote=entry.get("quote") or quote,
                    settle=entry.get("settle"),
                    type=entry.get("type", "spot"),
                    price_precision=_decimal_or_none(entry.get("price_precision")),
                    amount_precision=_decimal_or_none(entry.get("amount_precision")),
                )
            )
        return cls(markets, delimiter=delimiter, swap_suffix=swap_suffix)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._by_symbol

    def __len__(self) -> int:
        return len(self._by_symbol)

    @property
    def symbols(self) -> list[str]:
        return list(self._by_symbol)

    def market(self, symbol: str) -> Market:
        """Return the market for a unified symbol.

        Raises:
            BadSymbol: If the symbol is not known and cannot be derived
        """
        market = self._by_symbol.get(symbol) or self._by_symbol.get(normalize_symbol(symbol))
        if market is not None:
            return market
        if not self._by_symbol:
            return self._derive_from_symbol(symbol)
        raise BadSymbol(f"unknown market symbol {symbol}")

    def market_by_id(self, market_id: str) -> Market | None:
        return self._by_id.get(market_id)

    def safe_market(self, market_id: str | None) -> Market:
        """Resolve an exchange id, deriving a market when it is not registered."""
        if market_id is None:
            return Market(symbol="", id="", base="", quote="")
        market = self._by_id.get(market_id)
        if market is not None:
            return market
        return self._derive_from_id(market_id)

    def _derive_from_id(self, market_id: str) -> Market:
        parts = market_id.upper().split(self.delimiter)
        if len(parts) >= 2:
            base, quote = parts[0], parts[1]
            suffix = parts[2] if len(parts) > 2 else None
            if suffix in {"PERP", "SWAP"}:
                return Market(
                    symbol=f"{base}/{quote}:{quote}",
                    id=market_id,
                    base=base,
                    quote=quote,
                    settle=quote,
                    type="swap",
                )
            return Market(symbol=f"{base}/{quote}", id=market_id, base=base, quote=quote)
        logger.debug("Cannot derive market from id %s", market_id)
        return Market(symbol=market_id, id=market_id, base=market_id, quote="")

    def _derive_from_symbol(self, symbol: str) -> Market:
        unified = normalize_symbol(symbol)
        base, quote = extract_base_symbol(unified)
        if not quote:
            raise BadSymbol(f"cannot derive market from symbol {symbol}")
        settle = unified.split(":", 1)[1] if ":" in unified else None
        market_id = self.delimiter.join([base, quote])
        if settle:
            if self.swap_suffix is None:
                raise BadSymbol(f"{symbol} is not a spot market")
            market_id = self.delimiter.join([market_id, self.swap_suffix])
        return Market(
            symbol=unified,
            id=market_id,
            base=base,
            quote=quote,
            settle=settle,
            type="swap" if settle else "spot",
        )


def _decimal_or_none(value: Any) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))
