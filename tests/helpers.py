"""Filesystem helpers for diskscope tests."""

from pathlib import Path

MB = 1000**2


def make_file(path: Path, size: int) -> Path:
    """Create a (sparse) file with an exact apparent size."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.truncate(size)
    return path
