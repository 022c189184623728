"""Filesystem probing for diskscope.

All platform syscalls used by the scanner live here. Nothing in this module
follows symlinks and nothing writes to disk.
"""

import os
import stat
from pathlib import Path
from typing import NamedTuple

from diskscope.errors import from_os_error
from diskscope.models import Identity, NodeKind


class ProbeResult(NamedTuple):
    """What a single lstat tells us about an entry."""

    kind: NodeKind
    self_size: int
    identity: Identity
    mtime: float
    nlink: int = 1


class DirEntry(NamedTuple):
    """A directory listing entry, classified without following symlinks."""

    name: str
    path: str
    is_dir: bool


def expand_path(path: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expanduser(os.path.expandvars(path)))


def kind_from_mode(mode: int) -> NodeKind:
    """Classify an st_mode value."""
    if stat.S_ISLNK(mode):
        return NodeKind.SYMLINK
    if stat.S_ISDIR(mode):
        return NodeKind.DIRECTORY
    if stat.S_ISREG(mode):
        return NodeKind.FILE
    return NodeKind.SPECIAL


def probe_path(path: str) -> ProbeResult:
    """
    Stat a single path without following symlinks.

    Args:
        path: Absolute path to probe

    Returns:
        ProbeResult with kind, size, identity and mtime

    Raises:
        AccessDenied, NotFound or Transient
    """
    try:
        st = os.lstat(path)
    except OSError as e:
        raise from_os_error(path, e) from e

    kind = kind_from_mode(st.st_mode)

    # Directories own nothing directly; symlink targets are counted where they live
    if kind in (NodeKind.FILE, NodeKind.SPECIAL):
        size = st.st_size
    else:
        size = 0

    return ProbeResult(
        kind=kind,
        self_size=size,
        identity=Identity(device=st.st_dev, inode=st.st_ino),
        mtime=st.st_mtime,
        nlink=st.st_nlink,
    )


def list_directory(path: str) -> list[DirEntry]:
    """
    List a directory's entries sorted by name.

    The directory handle is closed before returning, so a caller holds at most
    one open descriptor per call.

    Raises:
        AccessDenied, NotFound or Transient
    """
    entries: list[DirEntry] = []
    try:
        with os.scandir(path) as it:
            for entry in it:
                try:
                    is_dir = entry.is_dir(follow_symlinks=False)
                except OSError:
                    # Classified properly when the entry itself is probed
                    is_dir = False
                entries.append(DirEntry(entry.name, entry.path, is_dir))
    except OSError as e:
        raise from_os_error(path, e) from e

    entries.sort(key=lambda e: e.name)
    return entries
