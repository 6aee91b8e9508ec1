"""Typer-based CLI for one-off market data queries."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import typer
from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from .exchanges.base import BaseStreamingExchange


# Import with local function to avoid circular imports
def _load_settings(config_path: Optional[Path] = None):
    from .config import load_settings
    return load_settings(config_path)


def _create_exchange(name: str, settings) -> "BaseStreamingExchange":
    from .exchanges.factory import create_exchange
    from .exchanges.init import create_exchanges_from_settings

    configured = create_exchanges_from_settings(settings)
    if name in configured:
        return configured[name]
    return create_exchange(name, proxy=settings.proxy.proxy_url)


app = typer.Typer(help="Real-time exchange market data CLI")
console = Console()
logger = logging.getLogger(__name__)


def run_cli(argv: list[str] | None = None) -> None:
    """Run CLI with optional argv parameter."""
    app(argv)


def open_exchange(name: str, config_path: Optional[Path] = None) -> "BaseStreamingExchange":
    """Build one adapter, using its configured settings when present."""
    settings = _load_settings(config_path)
    return _create_exchange(name.lower(), settings)


def _query(name: str, config: Optional[Path], call: Callable[[Any], Awaitable[Any]]) -> Any:
    async def _run() -> Any:
        exchange = open_exchange(name, config)
        try:
            return await call(exchange)
        finally:
            await exchange.close()

    try:
        return asyncio.run(_run())
    except Exception as e:
        logger.error("CLI query failed: %s", e, exc_info=True)
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _fmt(value: Any) -> str:
    if value is None:
        return "-"
    return format(value, "f") if hasattr(value, "as_tuple") else str(value)


@app.command()
def book(
    exchange: str = typer.Argument(..., help="Exchange name"),
    symbol: str = typer.Argument(..., help="Unified symbol, e.g. BTC/USDT"),
    limit: int = typer.Option(10, help="Price levels per side"),
    timeout: float = typer.Option(15.0, help="Seconds to wait for the book"),
    config: Optional[Path] = typer.Option(None, help="Path to config file"),
) -> None:
    """Show the current order book for a symbol."""
    snapshot = _query(exchange, config, lambda ex: ex.watch_order_book(symbol, limit, timeout=timeout))

    table = Table(title=f"{exchange} {snapshot.symbol} (seq {_fmt(snapshot.sequence)})")
    table.add_column("Bid Size", style="green", justify="right")
    table.add_column("Bid", style="green", justify="right")
    table.add_column("Ask", style="red", justify="right")
    table.add_column("Ask Size", style="red", justify="right")

    for i in range(max(len(snapshot.bids), len(snapshot.asks))):
        bid = snapshot.bids[i] if i < len(snapshot.bids) else (None, None)
        ask = snapshot.asks[i] if i < len(snapshot.asks) else (None, None)
        table.add_row(_fmt(bid[1]), _fmt(bid[0]), _fmt(ask[0]), _fmt(ask[1]))

    console.print(table)
    console.print(f"\n[bold]Spread:[/bold] {_fmt(snapshot.spread)}")


@app.command()
def ticker(
    exchange: str = typer.Argument(..., help="Exchange name"),
    symbol: str = typer.Argument(..., help="Unified symbol"),
    timeout: float = typer.Option(15.0, help="Seconds to wait for a ticker"),
    config: Optional[Path] = typer.Option(None, help="Path to config file"),
) -> None:
    """Show the next ticker update for a symbol."""
    result = _query(exchange, config, lambda ex: ex.watch_ticker(symbol, timeout=timeout))

    table = Table(title=f"{exchange} {result.symbol} ticker")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="yellow", justify="right")
    for field in ("last", "bid", "ask", "high", "low", "open", "base_volume", "quote_volume", "mark_price", "index_price"):
        value = getattr(result, field)
        if value is not None:
            table.add_row(field, _fmt(value))
    table.add_row("timestamp", _fmt(result.timestamp))

    console.print(table)


@app.command()
def trades(
    exchange: str = typer.Argument(..., help="Exchange name"),
    symbol: str = typer.Argument(..., help="Unified symbol"),
    limit: int = typer.Option(20, help="Number of recent trades to show"),
    timeout: float = typer.Option(30.0, help="Seconds to wait for a trade"),
    config: Optional[Path] = typer.Option(None, help="Path to config file"),
) -> None:
    """Show recent public trades for a symbol."""
    result = _query(exchange, config, lambda ex: ex.watch_trades(symbol, limit, timeout=timeout))

    table = Table(title=f"{exchange} {symbol} trades")
    table.add_column("Timestamp", style="dim")
    table.add_column("ID", style="cyan")
    table.add_column("Side", style="magenta")
    table.add_column("Price", style="yellow", justify="right")
    table.add_column("Amount", style="green", justify="right")

    for trade in result:
        table.add_row(_fmt(trade.timestamp), _fmt(trade.id), _fmt(trade.side), _fmt(trade.price), _fmt(trade.amount))

    console.print(table)
    console.print(f"\n[bold]Total records:[/bold] {len(result)}")


@app.command()
def exchanges(
    config: Optional[Path] = typer.Option(None, help="Path to config file"),
) -> None:
    """List supported exchanges and their channels."""
    from .exchanges.factory import EXCHANGES

    try:
        settings = _load_settings(config)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title="Exchanges")
    table.add_column("Exchange", style="cyan")
    table.add_column("Channels", style="green")
    table.add_column("Configured", style="yellow")

    for name, exchange_class in EXCHANGES.items():
        configured = settings.exchanges.get(name)
        if configured is None:
            status = "no"
        elif not configured.enabled:
            status = "disabled"
        else:
            status = "private" if configured.credentials else "public"
        channels = ", ".join(sorted(c.removeprefix("watch_") for c in exchange_class.capabilities))
        table.add_row(name, channels, status)

    console.print(table)


@app.command()
def config_show(
    config: Optional[Path] = typer.Option(None, help="Path to config file"),
) -> None:
    """Print the effective configuration with secrets redacted."""
    try:
        settings = _load_settings(config)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print_json(json.dumps(settings.redacted(), indent=2))


def main():
    """CLI main entry point."""
    app()


if __name__ == "__main__":
    main()
