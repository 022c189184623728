"""Per-run context shared by diskscope components.

A RunContext replaces process-wide globals: it is created once per dashboard
run (or CLI command), passed to each component at construction, and closed
when the run ends.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from rich.console import Console

from diskscope.cache import SubtreeCache
from diskscope.config import Settings
from diskscope.log import LOGGER_NAME, setup_logging, teardown_logging


@dataclass
class RunContext:
    """Settings, output and shared caches for one run."""

    settings: Settings = field(default_factory=Settings)
    console: Console = field(default_factory=Console)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(LOGGER_NAME))
    cache: Optional[SubtreeCache] = None
    closed: bool = False

    def __post_init__(self):
        if self.cache is None:
            self.cache = SubtreeCache(self.settings.cache_max_entries)

    def close(self) -> None:
        """Release log handlers and drop cached totals."""
        if self.closed:
            return
        teardown_logging(self.logger)
        if self.cache is not None:
            self.cache.clear()
        self.closed = True

    def __enter__(self) -> "RunContext":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def open_context(settings: Optional[Settings] = None, console: Optional[Console] = None) -> RunContext:
    """Create a RunContext and configure logging for it."""
    settings = settings or Settings.from_env()
    console = console or Console()
    logger = setup_logging(settings.debug, console=Console(stderr=True))
    return RunContext(settings=settings, console=console, logger=logger)
