"""Logging setup.

Modules log through ``logging.getLogger(__name__)``; this module only
decides where records go and at which level.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER_NAME = "ollamachat"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def parse_level(name: str | None) -> int:
    """Map a level name to a logging level; unknown names mean INFO."""
    return _LEVELS.get((name or "").strip().lower(), logging.INFO)


def configure_logging(level: str | None = "info", console: Console | None = None) -> logging.Logger:
    """Route package logs to a Rich handler on stderr.

    Calling it again replaces the handler instead of adding another one.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(parse_level(level))
    return logger
