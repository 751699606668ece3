"""Logging setup shared by the cwdeploy CLI and library modules."""

from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"
LOG_LEVEL_ENV = "CWDEPLOY_LOG_LEVEL"

_ROOT_LOGGER = "cwdeploy"


def get_logger(name: str) -> logging.Logger:
    """Return a logger for a cwdeploy module.

    Args:
        name: Usually ``__name__`` of the calling module

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def _resolve_level(verbose: bool, quiet: bool) -> int:
    if verbose:
        return logging.DEBUG
    if quiet:
        return logging.ERROR

    env_level = os.environ.get(LOG_LEVEL_ENV)
    if env_level:
        level = logging.getLevelName(env_level.upper())
        if isinstance(level, int):
            return level
    return logging.WARNING


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure the cwdeploy logger hierarchy.

    Verbose mode logs everything at DEBUG, quiet mode only errors. Otherwise
    the level comes from ``CWDEPLOY_LOG_LEVEL`` and defaults to WARNING, since
    per-step progress is printed by the CLI itself.

    Args:
        verbose: Enable debug logging
        quiet: Only log errors
    """
    level = _resolve_level(verbose, quiet)
    root = logging.getLogger(_ROOT_LOGGER)
    root.setLevel(level)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root.addHandler(handler)
    root.propagate = False
