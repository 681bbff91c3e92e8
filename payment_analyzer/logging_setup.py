"""Logging for the ``payment_analyzer`` package.

Modules log through ``get_logger(__name__)``. Only entrypoints (the CLI and the
Streamlit app) call ``configure_logging``; until one does, the package logger
stays silent. Background submissions run on worker threads, so the default
format carries the thread name.
"""
from __future__ import annotations

import logging
import sys
from typing import IO

from payment_analyzer.config import SETTINGS

PACKAGE_LOGGER = "payment_analyzer"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"
_HANDLER_NAME = "payment_analyzer.console"

logging.getLogger(PACKAGE_LOGGER).addHandler(logging.NullHandler())


def resolve_level(level: int | str | None) -> int:
    """Numeric level from a number, a numeric string or a level name.

    ``None`` and blank strings fall back to ``SETTINGS.log_level``.
    """
    if isinstance(level, int):
        return level
    text = (level or "").strip().upper() or SETTINGS.log_level.strip().upper()
    if text.isdigit():
        return int(text)
    numeric = logging.getLevelName(text)
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level {level!r}")
    return numeric


def _console_handler(logger: logging.Logger) -> logging.Handler | None:
    for handler in logger.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return handler
    return None


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
) -> logging.Handler:
    """Route package records to one console handler and return it.

    Calling again (Streamlit reruns the script on every interaction) keeps a
    single console handler: it is reused, or swapped out when a new ``stream``
    is given.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    numeric = resolve_level(level)
    handler = _console_handler(logger)
    if handler is not None and stream is not None:
        # The old stream may already be closed; never flush it.
        logger.removeHandler(handler)
        handler = None
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.set_name(_HANDLER_NAME)
        logger.addHandler(handler)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    handler.setLevel(numeric)
    logger.setLevel(numeric)
    logger.propagate = False
    return handler


def get_logger(name: str) -> logging.Logger:
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
