"""Factory for creating streaming exchange adapters."""

from __future__ import annotations

from typing import Any, Type

from ..markets import MarketRegistry
from ..settings import StreamSettings
from .base import BaseStreamingExchange
from .bitpanda import BitpandaExchange
from .okx import OKXExchange
from .paradex import ParadexExchange


EXCHANGES: dict[str, Type[BaseStreamingExchange]] = {
    "paradex": ParadexExchange,
    "okx": OKXExchange,
    "bitpanda": BitpandaExchange,
}


def create_exchange(
    exchange: str,
    api_key: str | None = None,
    api_secret: str | None = None,
    *,
    passphrase: str | None = None,
    sandbox: bool = False,
    proxy: str | None = None,
    ws_url: str | None = None,
    stream: StreamSettings | None = None,
    markets: list[dict[str, Any]] | None = None,
    **options: Any,
) -> BaseStreamingExchange:
    """Create a streaming adapter instance.

    Args:
        exchange: Exchange name (paradex, okx, bitpanda)
        api_key: API key for private channels (optional)
        api_secret: API secret for private channels (optional)
        passphrase: API passphrase (OKX private channels)
        sandbox: Use sandbox/testnet environment
        proxy: Proxy URL for the WebSocket transport
        ws_url: Override for the public WebSocket URL
        stream: Cache sizes, timeouts and reconnect policy
        markets: Market entries (symbol, id, type, ...) to register
        **options: Additional exchange-specific options

    Returns:
        Configured streaming adapter

    Raises:
        ValueError: If exchange is not supported
    """
    exchange_lower = exchange.lower()

    if exchange_lower not in EXCHANGES:
        supported = ", ".join(EXCHANGES.keys())
        raise ValueError(
            f"Unsupported exchange: {exchange}. Supported exchanges: {supported}"
        )

    exchange_class = EXCHANGES[exchange_lower]

    registry = None
    if markets:
        registry = MarketRegistry.from_config(
            markets,
            delimiter=exchange_class.market_delimiter,
            swap_suffix=exchange_class.swap_suffix,
        )

    return exchange_class(
        api_key,
        api_secret,
        passphrase=passphrase,
        sandbox=sandbox,
        proxy=proxy,
        ws_url=ws_url,
        stream=stream,
        markets=registry,
        **options,
    )
