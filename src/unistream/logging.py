from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(log_dir: Path | None = None, *, level: str | None = None) -> None:
    """Configure console logging plus an optional rotating file handler.

    The level comes from ``level`` or ``UNISTREAM_LOG_LEVEL`` (default INFO).
    Frame-level traffic is logged at DEBUG by ``unistream.streaming.connection``
    and can be silenced on its own via ``UNISTREAM_WIRE_LOG_LEVEL``.
    """
    level_name = (level or os.environ.get("UNISTREAM_LOG_LEVEL", "INFO")).upper()
    resolved = getattr(logging, level_name, logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(resolved)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(resolved)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    wire_level = os.environ.get("UNISTREAM_WIRE_LOG_LEVEL")
    if wire_level:
        logging.getLogger("unistream.streaming.connection").setLevel(
            getattr(logging, wire_level.upper(), logging.INFO)
        )

    # 10MB per file, 5 backups
    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / "unistream.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
        )
        file_handler.setLevel(resolved)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
