"""Logging setup for the floor service."""
import logging
import sys
from typing import Optional

from cardroom.config import config

ROOT_LOGGER = "cardroom"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def _root_logger() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
        root.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger under the ``cardroom`` hierarchy.

    Module loggers propagate to a single stdout handler on the package
    root, so uvicorn's own loggers keep their format.

    Args:
        name: Logger name, typically __name__ of the calling module.
    """
    root = _root_logger()
    if not name or name == ROOT_LOGGER:
        return root
    if not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def format_deltas(**deltas: int) -> str:
    """Render the non-zero balance deltas, e.g. ``bank=+500 in_play=-500``."""
    parts = [f"{key}={value:+d}" for key, value in deltas.items() if value]
    return " ".join(parts) or "no balance change"
