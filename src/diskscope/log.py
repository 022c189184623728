"""Diagnostic logging for diskscope."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "diskscope"


def setup_logging(debug: bool = False, console: Optional[Console] = None) -> logging.Logger:
    """
    Attach a rich handler to the package logger.

    Scan errors are only logged at DEBUG, so they appear with debug enabled.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if debug else logging.WARNING)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=debug,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def teardown_logging(logger: logging.Logger) -> None:
    """Detach and close every handler added by setup_logging."""
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
            handler.close()
    logger.propagate = True
