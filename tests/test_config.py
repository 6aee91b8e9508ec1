"""Tests for YAML configuration loading and settings validation."""

import pytest
from pydantic import ValidationError

from unistream.config import apply_env_overrides, load_settings
from unistream.settings import ProxySettings, Settings, WatchSettings

CONFIG = """
env: test
exchanges:
  okx:
    credentials:
      api_key: key
      api_secret: secret
      passphrase: phrase
    stream:
      trades_limit: 200
    markets:
      - symbol: BTC/USDT
        id: BTC-USDT
watch:
  - exchange: okx
    channel: order_book
    symbol: BTC/USDT
    limit: 10
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "unistream.yml"
    path.write_text(CONFIG, encoding="utf-8")
    return path


class TestLoadSettings:
    """Tests for load_settings."""

    def test_load_yaml(self, config_file):
        settings = load_settings(config_file, environ={})

        okx = settings.exchanges["okx"]
        assert settings.env == "test"
        assert okx.credentials.api_key.get_secret_value() == "key"
        assert okx.stream.trades_limit == 200
        assert okx.markets[0].id == "BTC-USDT"
        assert settings.watch[0].limit == 10

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "absent.yml", environ={})
        assert settings.exchanges == {}
        assert settings.env == "dev"

    def test_config_path_from_environment(self, config_file):
        settings = load_settings(environ={"UNISTREAM_CONFIG": str(config_file)})
        assert "okx" in settings.exchanges

    def test_env_overrides_nested_values(self, config_file):
        environ = {
            "UNISTREAM_EXCHANGES__OKX__STREAM__TRADES_LIMIT": "50",
            "UNISTREAM_EXCHANGES__OKX__SANDBOX": "true",
            "UNISTREAM_LOG_LEVEL": "DEBUG",
        }
        settings = load_settings(config_file, environ=environ)

        assert settings.exchanges["okx"].stream.trades_limit == 50
        assert settings.exchanges["okx"].sandbox is True

    def test_invalid_config_raises_value_error(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("exchanges:\n  okx:\n    stream:\n      trades_limit: 0\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Invalid configuration"):
            load_settings(path, environ={})

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.yml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            load_settings(path, environ={})

    def test_unknown_keys_rejected(self, tmp_path):
        path = tmp_path / "extra.yml"
        path.write_text("exchanges:\n  okx:\n    colour: blue\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_settings(path, environ={})


class TestEnvOverrides:
    """Tests for apply_env_overrides."""

    def test_reserved_and_foreign_keys_ignored(self):
        merged = apply_env_overrides(
            {"env": "dev"},
            {"UNISTREAM_CONFIG": "x.yml", "UNISTREAM_WIRE_LOG_LEVEL": "DEBUG", "HOME": "/root"},
        )
        assert merged == {"env": "dev"}

    def test_values_parsed_as_yaml_scalars(self):
        merged = apply_env_overrides({}, {"UNISTREAM_PROXY__ENABLED": "false", "UNISTREAM_ENV": "prod"})
        assert merged == {"proxy": {"enabled": False}, "env": "prod"}


class TestSettingsModels:
    """Tests for settings validation and helpers."""

    def test_redacted_hides_secrets(self):
        settings = Settings.model_validate(
            {
                "proxy": {"enabled": True, "url": "http://proxy:3128", "username": "u", "password": "p"},
                "exchanges": {"okx": {"credentials": {"api_key": "key", "api_secret": "secret"}}},
            }
        )
        data = settings.redacted()

        assert data["exchanges"]["okx"]["credentials"]["api_key"] == "***"
        assert data["exchanges"]["okx"]["credentials"]["api_secret"] == "***"
        assert data["exchanges"]["okx"]["credentials"]["passphrase"] is None
        assert data["proxy"]["password"] == "***"

    def test_watch_requires_symbol_for_market_channels(self):
        with pytest.raises(ValidationError):
            WatchSettings(exchange="okx", channel="trades")
        assert WatchSettings(exchange="okx", channel="balance").symbol is None

    def test_proxy_url(self):
        assert ProxySettings(url="http://proxy:3128").proxy_url is None
        assert ProxySettings(enabled=True, url="http://proxy:3128").proxy_url == "http://proxy:3128"
        assert (
            ProxySettings(enabled=True, url="proxy:3128", username="u", password="p").proxy_url
            == "http://u:p@proxy:3128"
        )
