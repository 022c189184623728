"""Tests for the concurrent scan worker pool."""

import os
import queue
import threading

import pytest

from diskscope.cache import SubtreeCache
from diskscope.errors import RootUnavailable
from diskscope.models import ErrorKind, Identity, NodeKind, UpdateKind
from diskscope.probe import ProbeResult, probe_path
from diskscope.scanner import (
    MAX_WORKERS,
    ScanWorkerPool,
    VisitedSet,
    default_concurrency,
    scan,
)

from helpers import MB, make_file


def run_pool(root, **kwargs):
    """Run one pass to completion and return its updates."""
    updates = queue.Queue()
    pool = ScanWorkerPool(emit=updates.put, visited=kwargs.pop("visited", VisitedSet()), **kwargs)
    pool.start(str(root))
    assert pool.wait(timeout=10)
    out = []
    while not updates.empty():
        out.append(updates.get())
    return out


class TestVisitedSet:
    def test_first_claim_wins(self):
        visited = VisitedSet()
        ident = Identity(device=1, inode=7)
        assert visited.claim(ident, "/a") is None
        assert visited.claim(ident, "/b") == "/a"
        assert ident in visited

    def test_reclaim_by_owner_is_not_an_alias(self):
        visited = VisitedSet()
        ident = Identity(device=1, inode=7)
        visited.claim(ident, "/a")
        assert visited.claim(ident, "/a") is None

    def test_release_under(self):
        visited = VisitedSet()
        visited.claim(Identity(device=1, inode=1), "/r/sub/x")
        visited.claim(Identity(device=1, inode=2), "/r/subway")
        assert visited.release_under("/r/sub") == 1
        assert Identity(device=1, inode=1) not in visited
        assert Identity(device=1, inode=2) in visited


class TestPoolSizing:
    def test_default_concurrency_bounded(self):
        assert 1 <= default_concurrency() <= MAX_WORKERS

    def test_pool_size_capped(self):
        pool = ScanWorkerPool(emit=lambda u: None, visited=VisitedSet(), max_workers=10_000)
        assert pool.max_workers == MAX_WORKERS


class TestScanStream:
    def test_stream_describes_tree(self, sample_tree):
        updates = run_pool(sample_tree)
        leaves = {u.path: u.self_size for u in updates if u.kind == UpdateKind.LEAF}
        assert leaves == {
            str(sample_tree / "a.bin"): 10 * MB,
            str(sample_tree / "b.bin"): 5 * MB,
            str(sample_tree / "sub" / "c.bin"): 2 * MB,
        }
        assert updates[-1].kind == UpdateKind.FINISHED
        assert not updates[-1].cancelled

    def test_directory_placeholder_precedes_its_contents(self, sample_tree):
        updates = run_pool(sample_tree)
        paths = [u.path for u in updates]
        root_listed = next(u for u in updates if u.kind == UpdateKind.LISTED and u.path == str(sample_tree))
        assert "sub" in root_listed.subdirs
        assert paths.index(str(sample_tree)) < paths.index(str(sample_tree / "sub" / "c.bin"))

    def test_every_directory_reports_done(self, sample_tree):
        updates = run_pool(sample_tree)
        done = {u.path for u in updates if u.kind == UpdateKind.DIR_DONE}
        assert done == {str(sample_tree), str(sample_tree / "sub")}

    def test_scan_generator(self, sample_tree):
        updates = list(scan(str(sample_tree), concurrency_limit=2))
        assert updates[-1].kind == UpdateKind.FINISHED
        assert sum(u.self_size for u in updates if u.kind == UpdateKind.LEAF) == 17 * MB

    def test_scan_generator_missing_root(self, tmp_path):
        with pytest.raises(RootUnavailable):
            next(scan(str(tmp_path / "missing")))

    def test_closing_generator_cancels(self, tmp_path):
        for i in range(50):
            make_file(tmp_path / f"d{i}" / "f", 1)
        cancel = threading.Event()
        stream = scan(str(tmp_path), concurrency_limit=1, cancel_event=cancel)
        next(stream)
        stream.close()
        assert cancel.is_set()


class TestCacheShortCircuit:
    def test_cached_directory_is_not_walked(self, sample_tree):
        sub = sample_tree / "sub"
        st = os.lstat(sub)
        cache = SubtreeCache()
        cache.put(str(sub), Identity(device=st.st_dev, inode=st.st_ino), st.st_mtime, 999, 1)

        listed = []

        def lister(path):
            listed.append(path)
            from diskscope.probe import list_directory

            return list_directory(path)

        updates = run_pool(sample_tree, cache=cache, lister=lister)
        assert str(sub) not in listed
        cached = [u for u in updates if u.kind == UpdateKind.CACHED]
        assert len(cached) == 1
        assert cached[0].cumulative_size == 999

    def test_stale_cache_entry_is_ignored(self, sample_tree):
        sub = sample_tree / "sub"
        st = os.lstat(sub)
        cache = SubtreeCache()
        cache.put(str(sub), Identity(device=st.st_dev, inode=st.st_ino), st.st_mtime - 10, 999, 1)

        updates = run_pool(sample_tree, cache=cache)
        assert not [u for u in updates if u.kind == UpdateKind.CACHED]
        assert any(u.kind == UpdateKind.LISTED and u.path == str(sub) for u in updates)


class TestDirectoryAlias:
    def test_same_identity_directory_is_not_expanded(self, tmp_path):
        make_file(tmp_path / "original" / "f", 100)
        make_file(tmp_path / "shadow" / "f", 100)
        original_st = os.lstat(tmp_path / "original")

        def stat_with_shared_identity(path):
            result = probe_path(path)
            if path == str(tmp_path / "shadow"):
                return result._replace(
                    identity=Identity(device=original_st.st_dev, inode=original_st.st_ino)
                )
            return result

        updates = run_pool(tmp_path, probe=stat_with_shared_identity, max_workers=1)
        alias = [u for u in updates if u.kind == UpdateKind.ALIAS]
        assert len(alias) == 1
        assert alias[0].path == str(tmp_path / "shadow")
        assert alias[0].alias_of == str(tmp_path / "original")
        assert alias[0].error_kind == ErrorKind.CYCLE
        assert not any(u.path == str(tmp_path / "shadow" / "f") for u in updates)


class TestCancellation:
    def test_cancel_before_start_emits_only_finished(self, sample_tree):
        cancel = threading.Event()
        cancel.set()
        updates = run_pool(sample_tree, cancel_event=cancel)
        assert [u.kind for u in updates] == [UpdateKind.FINISHED]
        assert updates[0].cancelled

    def test_workers_stop_between_entries(self, sample_tree):
        cancel = threading.Event()

        def stat_entry(path):
            result = probe_path(path)
            if path.endswith("a.bin"):
                cancel.set()
            return result

        updates = run_pool(sample_tree, cancel_event=cancel, probe=stat_entry, max_workers=1)
        leaves = [u.path for u in updates if u.kind == UpdateKind.LEAF]
        assert leaves == [str(sample_tree / "a.bin")]
        assert updates[-1].cancelled


class TestWorkerFailure:
    def test_unexpected_exception_reported_as_error(self, sample_tree):
        def stat_entry(path):
            if path.endswith("b.bin"):
                raise RuntimeError("boom")
            return probe_path(path)

        updates = run_pool(sample_tree, probe=stat_entry)
        errors = [u for u in updates if u.kind == UpdateKind.ERROR]
        assert len(errors) == 1
        assert "boom" in errors[0].error
        assert updates[-1].kind == UpdateKind.FINISHED
