"""Shared application logger"""

import logging
import sys

from config import settings


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(module)s:%(lineno)d | %(message)s"


def setup_logger(name: str = "unbind", level: str = settings.LOG_LEVEL) -> logging.Logger:
    """Create the named logger once, with a single stderr handler"""
    log = logging.getLogger(name)

    if not log.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log.addHandler(handler)

    log.setLevel(getattr(logging, level.upper(), logging.INFO))
    return log


logger = setup_logger()
