"""Tests for symbol normalization and market lookup."""

import pytest

from unistream.errors import BadSymbol
from unistream.markets import MarketRegistry, extract_base_symbol, normalize_symbol


class TestSymbolNormalization:
    """Tests for symbol spelling normalization."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("BTC/USDT", ("BTC", "USDT")),
            ("btc-usdt", ("BTC", "USDT")),
            ("BTC_EUR", ("BTC", "EUR")),
            ("BTCUSDT", ("BTC", "USDT")),
            ("BTC/USD:USD", ("BTC", "USD")),
            ("BTC", ("BTC", "")),
        ],
    )
    def test_extract_base_symbol(self, raw, expected):
        assert extract_base_symbol(raw) == expected

    def test_normalize_keeps_settle(self):
        assert normalize_symbol("btc-usd:usd") == "BTC/USD:USD"
        assert normalize_symbol("ETHUSDT") == "ETH/USDT"


class TestMarketRegistry:
    """Tests for symbol <-> id mapping."""

    def test_derive_spot_and_swap(self):
        registry = MarketRegistry(delimiter="-", swap_suffix="SWAP")
        assert registry.market("BTC/USDT").id == "BTC-USDT"
        swap = registry.market("BTC/USDT:USDT")
        assert swap.id == "BTC-USDT-SWAP"
        assert swap.type == "swap"

    def test_safe_market_from_perp_id(self):
        registry = MarketRegistry(delimiter="-", swap_suffix="PERP")
        market = registry.safe_market("ETH-USD-PERP")
        assert market.symbol == "ETH/USD:USD"
        assert market.settle == "USD"

    def test_underscore_delimiter(self):
        registry = MarketRegistry(delimiter="_", swap_suffix=None)
        assert registry.market("BTC/EUR").id == "BTC_EUR"
        assert registry.safe_market("BTC_EUR").symbol == "BTC/EUR"
        with pytest.raises(BadSymbol):
            registry.market("BTC/EUR:EUR")

    def test_configured_markets_are_authoritative(self):
        registry = MarketRegistry.from_config([{"symbol": "btc/usdt", "id": "BTC-USDT"}])
        assert "BTC/USDT" in registry
        assert registry.market_by_id("BTC-USDT").symbol == "BTC/USDT"
        with pytest.raises(BadSymbol):
            registry.market("DOGE/USDT")

    def test_precision_is_decimal(self):
        registry = MarketRegistry.from_config(
            [{"symbol": "BTC/USDT", "id": "BTC-USDT", "price_precision": "0.1"}]
        )
        assert str(registry.market("BTC/USDT").price_precision) == "0.1"
