"""
Logging configuration using loguru.

Library modules log through ``loguru.logger`` directly and bind ``user_id``
on ledger events. Applications embedding childfolio call setup_logging() once
at startup; level and log file come from ``Settings`` unless given explicitly.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from .config import Settings

CONSOLE_FORMAT = "<level>[{level.name}]</level> {name} <cyan>{extra[user_id]}</cyan>: {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name} | user={extra[user_id]} | {message}"


def setup_logging(
    settings: Optional[Settings] = None,
    *,
    level: Optional[str] = None,
    log_file: Union[str, Path, None] = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """
    Configure loguru with console and optional file output.

    Args:
        settings: Source of the default level and log file.
        level: Minimum log level, overriding ``settings.log_level``.
        log_file: Log file path, overriding ``settings.log_path``.
        rotation: Log file rotation size.
        retention: How long to keep rotated logs.
    """
    settings = settings or Settings()
    level = (level or settings.log_level).upper()
    log_file = log_file or settings.log_path

    logger.remove()
    # Records logged without a bound user still render.
    logger.configure(extra={"user_id": "-"})
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            level=level,
            format=FILE_FORMAT,
            rotation=rotation,
            retention=retention,
        )
    logger.debug("Logging configured at {} (file: {})", level, log_file or "none")
