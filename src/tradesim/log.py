"""
Loguru setup: console plus an optional rotating file.
Components log through ``logger.bind(component=...)``.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> - "
    "<level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[component]} | {name}:{function}:{line} - {message}"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Replace loguru's default sink. Never log API keys."""
    logger.remove()
    logger.configure(extra={"component": "tradesim"})
    logger.add(sys.stdout, format=_CONSOLE_FORMAT, level=level.upper())

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            rotation="5 MB",
            retention="7 days",
            compression="zip",
            level=level.upper(),
            format=_FILE_FORMAT,
        )
