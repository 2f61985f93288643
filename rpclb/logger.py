"""
Logging setup, based on loguru.

Usage:
    from rpclb.logger import logger, setup_logging

    setup_logging("INFO")
    logger.info("message")
"""

from __future__ import annotations

import logging
import os
import sys

from loguru import logger

IS_PRODUCTION = os.getenv("ENV", "").lower() == "production"

CONSOLE_FORMAT_DEV = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{message}</cyan>"
)

CONSOLE_FORMAT_PROD = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"


def setup_logging(level: str = "INFO") -> None:
    logger.remove()

    if IS_PRODUCTION:
        logger.add(
            sys.stdout,
            format=CONSOLE_FORMAT_PROD,
            level=level.upper(),
            colorize=False,
            backtrace=False,
            diagnose=False,
        )
    else:
        logger.add(
            sys.stdout,
            format=CONSOLE_FORMAT_DEV,
            level=level.upper(),
            colorize=True,
        )

    # third-party noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


__all__ = ["logger", "setup_logging"]
