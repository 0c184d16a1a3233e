"""
Shared helpers.
"""
import logging
import sys

from app.core import config


_configured = False


def get_logger(name: str) -> logging.Logger:
    """
    Return a named logger, configuring the root handler on first use.

    Usage:
        from app.utils import get_logger

        log = get_logger(__name__)
        log.info("Running server")
    """
    global _configured
    if not _configured:
        root = logging.getLogger()
        if not root.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
            root.addHandler(handler)
        root.setLevel(config.LOG_LEVEL)
        _configured = True

    return logging.getLogger(name)
