from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .config import load_settings
from .di import build_container
from .logging import configure_logging
from .runtime import run

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main entry point supporting both CLI commands and the streaming runner.

    - `unistream` or `unistream run`: stream the configured watch list
    - `unistream <typer-subcommand>`: run CLI mode (e.g. `unistream book okx BTC/USDT`)
    """
    if argv is None:
        argv = sys.argv[1:]

    if not argv:
        return _run_stream_mode([])

    if argv[0] == "run":
        return _run_stream_mode(argv[1:])

    return _run_cli_mode(argv)


def _run_stream_mode(argv: list[str]) -> int:
    """Stream every configured watch entry until interrupted."""
    parser = argparse.ArgumentParser(
        prog="unistream run", description="Stream configured market data channels"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config file (default: UNISTREAM_CONFIG or ./unistream.yml)",
    )
    parser.add_argument("--log-dir", default="logs", help="Directory for rotating log files")

    args = parser.parse_args(argv)
    configure_logging(Path(args.log_dir))

    try:
        settings = load_settings(args.config)
    except ValueError as e:
        logger.error("%s", e)
        return 1

    from .exchanges.init import create_exchanges_from_settings

    exchanges = create_exchanges_from_settings(settings)
    container = build_container(settings, exchanges)

    logger.info("unistream booting")
    try:
        asyncio.run(run(container))
    except KeyboardInterrupt:
        logger.info("interrupted")
    logger.info("unistream exit")

    return 0


def _run_cli_mode(argv: list[str]) -> int:
    """Run in CLI mode using Typer."""
    try:
        configure_logging(level="WARNING")

        # Import CLI app here to avoid circular import
        from .cli import run_cli
        run_cli(argv)
        return 0
    except SystemExit as e:
        return e.code if e.code else 0
    except Exception as e:
        logger.error("CLI error: %s", e, exc_info=True)
        return 1
