from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

from .di import AppContainer
from .errors import UnistreamError
from .exchanges.base import BaseStreamingExchange
from .models import Balances, OrderBookSnapshot, Ticker
from .settings import WatchSettings

logger = logging.getLogger(__name__)


def describe(update: Any) -> str:
    """One-line summary of a streamed value for the log."""
    if isinstance(update, OrderBookSnapshot):
        return (
            f"{update.symbol} book seq={update.sequence} "
            f"bid={update.best_bid} ask={update.best_ask} spread={update.spread}"
        )
    if isinstance(update, Ticker):
        return f"{update.symbol} ticker last={update.last} bid={update.bid} ask={update.ask}"
    if isinstance(update, Balances):
        return "balances " + ", ".join(f"{a}={b.total}" for a, b in update.assets.items())
    if isinstance(update, list):
        if not update:
            return "0 items"
        last = update[-1]
        return f"{len(update)} items, last {type(last).__name__} {getattr(last, 'id', '')}"
    return repr(update)


def updates(exchange: BaseStreamingExchange, watch: WatchSettings) -> AsyncIterator[Any]:
    """Async iterator of updates for one configured watch entry."""
    if watch.channel == "order_book":
        return exchange.stream_order_book(watch.symbol, watch.limit)
    if watch.channel == "ticker":
        return exchange.stream_ticker(watch.symbol)
    if watch.channel == "trades":
        return exchange.stream_trades(watch.symbol)
    if watch.channel == "balance":
        return _repeat(exchange.watch_balance)
    return _repeat(exchange.watch_orders, watch.symbol, watch.limit)


async def _repeat(watch, *args: Any) -> AsyncIterator[Any]:
    while True:
        yield await watch(*args)


async def run(container: AppContainer) -> None:
    logger.info("runtime starting")
    logger.debug("settings=%s", container.settings.redacted())

    watches = container.settings.watch
    if not watches:
        await asyncio.sleep(0)
        logger.info("nothing to watch, runtime stopped")
        return

    async def _consume(exchange: BaseStreamingExchange, watch: WatchSettings) -> None:
        label = f"{exchange.name} {watch.channel} {watch.symbol or '*'}"
        try:
            async for update in updates(exchange, watch):
                logger.info("%s: %s", label, describe(update))
                if container.shutdown.is_set():
                    return
        except UnistreamError as e:
            logger.error("%s stopped: %s", label, e)

    async def _wait_shutdown() -> None:
        await container.shutdown.wait()
        await container.close()

    try:
        async with asyncio.TaskGroup() as tg:
            consumers = []
            for watch in watches:
                exchange = container.exchanges.get(watch.exchange)
                if exchange is None:
                    logger.error("exchange not initialized: %s", watch.exchange)
                    continue
                consumers.append(tg.create_task(_consume(exchange, watch)))
            if consumers:
                stopper = tg.create_task(_wait_shutdown())
                await asyncio.gather(*consumers)
                stopper.cancel()
    finally:
        await container.close()

    logger.info("runtime stopped")
