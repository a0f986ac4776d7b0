import logging
import os
from typing import Optional

LOG_LEVEL_ENV = "TOKENSTAMP_LOG_LEVEL"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
PACKAGE_LOGGER = "tokenstamp"


def verbosity_to_level(verbose: int) -> int:
    """Map a ``-v`` count to a logging level (0 warning, 1 info, 2+ debug)."""
    if verbose <= 0:
        return logging.WARNING
    if verbose == 1:
        return logging.INFO
    return logging.DEBUG


def configure_logging(default_level: int = logging.INFO, *, env: Optional[str] = None) -> int:
    """Configure the root handler and the ``tokenstamp`` logger level.

    TOKENSTAMP_LOG_LEVEL wins over ``default_level`` when it names a known
    level. Returns the level applied to the package logger.
    """
    level_name = env if env is not None else os.getenv(LOG_LEVEL_ENV)
    level = default_level
    if level_name:
        candidate = logging.getLevelName(level_name.strip().upper())
        if isinstance(candidate, int):
            level = candidate
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
    return level
