"""Subtree size cache for diskscope.

Entries are only ever served when the live directory still has the identity
and mtime they were captured with. Wall-clock age is never consulted.
"""

import os
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Optional

from diskscope.models import CacheEntry, Identity

DEFAULT_MAX_ENTRIES = 50_000


def _is_within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


class SubtreeCache:
    """Bounded LRU of directory totals, safe to share between worker threads."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._entries

    def get(self, path: str, identity: Identity, mtime: float) -> Optional[CacheEntry]:
        """
        Look up a directory total.

        Args:
            path: Directory path
            identity: Live identity of the directory
            mtime: Live mtime of the directory

        Returns:
            The cached entry, or None if missing or captured from different content
        """
        with self._lock:
            entry = self._entries.get(path)
            if entry is None:
                self.misses += 1
                return None

            if entry.identity != identity or entry.mtime != mtime:
                # Stale for good: the directory changed since capture
                del self._entries[path]
                self.misses += 1
                return None

            self._entries.move_to_end(path)
            self.hits += 1
            return entry

    def put(
        self,
        path: str,
        identity: Identity,
        mtime: float,
        cumulative_size: int,
        child_count: int,
    ) -> CacheEntry:
        """Record a completed directory total, evicting the least recently used."""
        entry = CacheEntry(
            path=path,
            identity=identity,
            mtime=mtime,
            cumulative_size=cumulative_size,
            child_count=child_count,
            captured_at=datetime.now(),
        )
        with self._lock:
            self._entries[path] = entry
            self._entries.move_to_end(path)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return entry

    def invalidate(self, path: str, descendants: bool = True) -> int:
        """
        Drop the entry for path, and optionally every entry beneath it.

        Returns:
            Number of entries removed
        """
        with self._lock:
            if descendants:
                doomed = [p for p in self._entries if _is_within(p, path)]
            else:
                doomed = [path] if path in self._entries else []
            for p in doomed:
                del self._entries[p]
            return len(doomed)

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0
