"""Shared application logger"""

import logging
import sys

from config import settings


def setup_logger(name: str = "entitlements", level: str = None) -> logging.Logger:
    """Configure the shared logger with a single console handler."""
    log = logging.getLogger(name)
    log.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    if not log.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
        ))
        log.addHandler(console_handler)

    return log


logger = setup_logger()
