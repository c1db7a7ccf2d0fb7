import logging

from common.config import LOG_LEVEL

logger = logging.getLogger("twin-staging")
logger.setLevel(LOG_LEVEL.upper())
logger.propagate = False

_console = logging.StreamHandler()
_console.setFormatter(logging.Formatter(
    fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S%z",
))
logger.addHandler(_console)
