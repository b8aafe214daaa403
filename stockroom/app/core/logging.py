"""
Logging setup.

Un seul handler stdout sur la hiérarchie "stockroom".
"""
import logging
import sys

from stockroom.app.core.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def setup_logger(name: str = "stockroom", level: str | int = LOG_LEVEL) -> logging.Logger:
    """
    Configure et retourne le logger `name`.

    Idempotent : si un handler est déjà installé, on ne le duplique pas.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)

    return logger
