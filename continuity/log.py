"""
Logging setup for the continuity package.

Configures the ``continuity`` parent logger so every module logger
(continuity.tracker, continuity.session_store, ...) inherits its handler
and level.
"""

from __future__ import annotations

import logging
import traceback

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_logging_configured = False


def setup_logging(level: str = "INFO", debug: bool = False) -> logging.Logger:
    """
    Configure continuity logging on stderr.

    Only the first call has an effect.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        debug: Force DEBUG regardless of level

    Returns:
        The ``continuity`` parent logger
    """
    global _logging_configured
    parent_logger = logging.getLogger("continuity")
    if _logging_configured:
        return parent_logger
    _logging_configured = True

    numeric_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)
    parent_logger.setLevel(numeric_level)
    parent_logger.propagate = False

    handler = logging.StreamHandler()
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    parent_logger.addHandler(handler)
    return parent_logger


def format_error(exc: BaseException, debug: bool = False) -> str:
    """One-line error for interactive output; full traceback when debug is on."""
    message = f"Error: {exc}"
    if debug:
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return f"{message}\n{trace.rstrip()}"
    return message


__all__ = ["LOG_FORMAT", "setup_logging", "format_error"]
