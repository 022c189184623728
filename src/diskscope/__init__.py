"""diskscope - live disk usage explorer and system monitor."""

__version__ = "0.1.0"
