"""Logging configuration with project verbosity levels.

Four verbosity levels map onto Python log levels:

    ========  ==============  =====
    Project   Python level    Value
    ========  ==============  =====
    QUIET     WARNING          30
    NORMAL    INFO             20
    VERBOSE   VERBOSE (custom) 15
    DEBUG     DEBUG            10
    ========  ==============  =====

Configure once at startup, then obtain named loggers anywhere::

    >>> from log import configure_logging, get_logger
    >>> configure_logging("VERBOSE")
    >>> get_logger("settlement").info("commit accepted")

The ``ARENA_LOG_LEVEL`` environment variable is used when no explicit
level is given; ``NORMAL`` is the default.
"""

from __future__ import annotations

import logging
import os
import sys

VERBOSE: int = 15
logging.addLevelName(VERBOSE, "VERBOSE")

QUIET: int = logging.WARNING
NORMAL: int = logging.INFO
DEBUG: int = logging.DEBUG

_LEVEL_MAP: dict[str, int] = {
    "QUIET": QUIET,
    "NORMAL": NORMAL,
    "VERBOSE": VERBOSE,
    "DEBUG": DEBUG,
}

ROOT_LOGGER_NAME: str = "arena"
_LOG_FORMAT: str = "%(asctime)s | %(name)s | %(levelname)-8s | %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Install a single stderr handler on the ``arena`` logger.

    Parameters
    ----------
    level : str or None
        ``QUIET``, ``NORMAL``, ``VERBOSE`` or ``DEBUG`` (case-insensitive).
        None falls through to ``ARENA_LOG_LEVEL``, then ``NORMAL``.

    Raises
    ------
    ValueError
        If the resolved level name is unknown.
    """
    resolved = level if level is not None else os.environ.get("ARENA_LOG_LEVEL", "NORMAL")
    key = resolved.upper()
    if key not in _LEVEL_MAP:
        raise ValueError(
            f"Unknown log level {resolved!r}. Valid levels: {', '.join(sorted(_LEVEL_MAP))}"
        )
    numeric = _LEVEL_MAP[key]

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(numeric)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(handler)
    root.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Return ``arena.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
