"""Logger configuration. Runs once when the API module is imported."""

import sys

from loguru import logger

_configured = False


def configure_logger(level: str = "INFO") -> None:
    """Replace loguru's default sink with a single stderr sink at ``level``."""
    global _configured
    if _configured:
        return
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
        backtrace=False,
        diagnose=False,
    )
    _configured = True
