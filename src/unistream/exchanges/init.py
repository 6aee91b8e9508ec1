"""Exchange adapter initialization from settings."""

from __future__ import annotations

import logging
from typing import Dict

from ..settings import Settings
from .base import BaseStreamingExchange
from .factory import create_exchange

logger = logging.getLogger(__name__)


def create_exchanges_from_settings(settings: Settings) -> Dict[str, BaseStreamingExchange]:
    """Create streaming adapters for every enabled exchange in settings.

    Public channels need no credentials, so an exchange without them is
    still initialized; private watches will fail with AuthenticationError.
    """
    exchanges: Dict[str, BaseStreamingExchange] = {}

    for exchange_name, exchange_config in settings.exchanges.items():
        if not exchange_config.enabled:
            logger.debug("Exchange %s is disabled, skipping", exchange_name)
            continue

        credentials = exchange_config.credentials
        if credentials is None:
            logger.info("Exchange %s has no credentials, public channels only", exchange_name)

        try:
            exchange = create_exchange(
                exchange=exchange_name,
                api_key=credentials.api_key.get_secret_value() if credentials else None,
                api_secret=(
                    credentials.api_secret.get_secret_value()
                    if credentials and credentials.api_secret
                    else None
                ),
                passphrase=(
                    credentials.passphrase.get_secret_value()
                    if credentials and credentials.passphrase
                    else None
                ),
                sandbox=exchange_config.sandbox,
                proxy=settings.proxy.proxy_url,
                ws_url=exchange_config.ws_url,
                stream=exchange_config.stream,
                markets=[m.model_dump() for m in exchange_config.markets],
                **exchange_config.options,
            )
            exchanges[exchange_name] = exchange
            logger.info("Initialized streaming adapter for %s", exchange_name)

        except ValueError as e:
            logger.error("Failed to initialize exchange %s: %s", exchange_name, e)
            continue

    return exchanges
