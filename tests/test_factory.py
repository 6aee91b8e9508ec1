"""Tests for the streaming adapter factory and settings-driven initialization."""

import pytest

from unistream.exchanges.bitpanda import BitpandaExchange
from unistream.exchanges.factory import EXCHANGES, create_exchange
from unistream.exchanges.init import create_exchanges_from_settings
from unistream.exchanges.okx import OKXExchange
from unistream.exchanges.paradex import ParadexExchange
from unistream.settings import Settings, StreamSettings


class TestExchangeFactory:
    """Tests for create_exchange."""

    def test_create_paradex(self):
        """Paradex needs no credentials for its public channels."""
        exchange = create_exchange("paradex")
        assert isinstance(exchange, ParadexExchange)
        assert exchange.api_key is None

    def test_create_okx_with_passphrase(self):
        exchange = create_exchange("okx", "test_key", "test_secret", passphrase="test_passphrase")
        assert isinstance(exchange, OKXExchange)
        assert exchange.passphrase == "test_passphrase"

    def test_name_is_case_insensitive(self):
        assert isinstance(create_exchange("Bitpanda"), BitpandaExchange)

    def test_sandbox_mode(self):
        exchange = create_exchange("okx", sandbox=True)
        assert exchange.sandbox is True
        assert "wspap" in exchange.get_ws_url()

    def test_ws_url_override(self):
        exchange = create_exchange("paradex", ws_url="ws://localhost:9000")
        assert exchange.get_ws_url() == "ws://localhost:9000"

    def test_stream_settings_and_options(self):
        stream = StreamSettings(trades_limit=10)
        exchange = create_exchange("okx", stream=stream, checksum=False)
        assert exchange.stream_settings.trades_limit == 10
        assert exchange.options == {"checksum": False}

    def test_sequence_policy_override(self):
        exchange = create_exchange("okx", stream=StreamSettings(sequence_policy="contiguous"))
        assert exchange.sequence_policy.value == "contiguous"

    def test_markets_registry(self):
        exchange = create_exchange(
            "okx",
            markets=[{"symbol": "BTC/USDT:USDT", "id": "BTC-USDT-SWAP", "type": "swap", "settle": "USDT"}],
        )
        market = exchange.markets.market("BTC/USDT:USDT")
        assert market.id == "BTC-USDT-SWAP"
        assert exchange.markets.delimiter == "-"

    def test_unsupported_exchange(self):
        with pytest.raises(ValueError, match="Unsupported exchange"):
            create_exchange("unsupported")

    def test_registry_lists_all(self):
        assert set(EXCHANGES) == {"paradex", "okx", "bitpanda"}


class TestExchangesFromSettings:
    """Tests for create_exchanges_from_settings."""

    def test_disabled_skipped_and_public_kept(self):
        settings = Settings.model_validate(
            {
                "exchanges": {
                    "paradex": {"enabled": True},
                    "okx": {"enabled": False},
                    "bitpanda": {
                        "credentials": {"api_key": "token"},
                        "markets": [{"symbol": "BTC/EUR", "id": "BTC_EUR"}],
                        "options": {"depth": 10},
                    },
                }
            }
        )

        exchanges = create_exchanges_from_settings(settings)

        assert set(exchanges) == {"paradex", "bitpanda"}
        assert exchanges["paradex"].api_key is None
        assert exchanges["bitpanda"].api_key == "token"
        assert exchanges["bitpanda"].markets.market("BTC/EUR").id == "BTC_EUR"
        assert exchanges["bitpanda"].options == {"depth": 10}

    def test_unknown_exchange_is_logged_and_skipped(self, caplog):
        settings = Settings.model_validate({"exchanges": {"nowhere": {}}})
        assert create_exchanges_from_settings(settings) == {}
        assert "Failed to initialize exchange nowhere" in caplog.text

    def test_proxy_passed_through(self):
        settings = Settings.model_validate(
            {
                "proxy": {"enabled": True, "url": "http://127.0.0.1:8080", "username": "u", "password": "p"},
                "exchanges": {"paradex": {}},
            }
        )
        exchanges = create_exchanges_from_settings(settings)
        assert exchanges["paradex"].proxy == "http://u:p@127.0.0.1:8080"
