"""Concurrent directory scanning for diskscope.

Workers walk directories on a thread pool and describe what they find as a
stream of NodeUpdate messages. They never touch the tree model; the
aggregator applies the stream on a single thread.
"""

import logging
import os
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterator, Optional

from diskscope.cache import SubtreeCache
from diskscope.errors import Cycle, RootUnavailable, ScanError
from diskscope.models import Identity, NodeKind, NodeUpdate, UpdateKind
from diskscope.probe import ProbeResult, list_directory, probe_path

logger = logging.getLogger(__name__)

# Each worker holds at most one directory handle, so this also caps descriptors
MAX_WORKERS = 64


def default_concurrency() -> int:
    """Pool size tied to CPU parallelism, capped to keep descriptors bounded."""
    return min(32, (os.cpu_count() or 4) * 2)


def _within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


class VisitedSet:
    """Identities seen in the current session, mapped to the first path seen."""

    def __init__(self):
        self._owners: dict[Identity, str] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._owners)

    def __contains__(self, identity: Identity) -> bool:
        with self._lock:
            return identity in self._owners

    def claim(self, identity: Identity, path: str) -> Optional[str]:
        """
        Record identity as seen at path.

        Returns:
            None if this is the first visit, otherwise the path that owns it
        """
        with self._lock:
            owner = self._owners.get(identity)
            if owner is None or owner == path:
                self._owners[identity] = path
                return None
            return owner

    def release_under(self, root: str) -> int:
        """Forget identities first seen inside root (used before a rescan)."""
        with self._lock:
            doomed = [i for i, p in self._owners.items() if _within(p, root)]
            for identity in doomed:
                del self._owners[identity]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._owners.clear()


class ScanWorkerPool:
    """
    A bounded pool of workers expanding directories for one scan pass.

    Args:
        emit: Called with every NodeUpdate; must be thread safe
        visited: Session-wide visited set
        cache: Optional subtree cache consulted before expanding a directory
        max_workers: Pool size (defaults to default_concurrency())
        cancel_event: Cooperative cancellation signal, polled between entries
        pass_id: Tag attached to every update from this pass
        probe: Entry probe function
        lister: Directory listing function
    """

    def __init__(
        self,
        emit: Callable[[NodeUpdate], None],
        visited: VisitedSet,
        cache: Optional[SubtreeCache] = None,
        max_workers: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        pass_id: int = 0,
        probe: Callable[[str], ProbeResult] = probe_path,
        lister: Callable[[str], list] = list_directory,
        log: Optional[logging.Logger] = None,
    ):
        workers = max_workers or default_concurrency()
        self.max_workers = max(1, min(workers, MAX_WORKERS))
        self.emit = emit
        self.visited = visited
        self.cache = cache
        self.cancel_event = cancel_event or threading.Event()
        self.pass_id = pass_id
        self.probe = probe
        self.lister = lister
        self.log = log or logger

        self._executor: Optional[ThreadPoolExecutor] = None
        self._outstanding = 0
        self._lock = threading.Lock()
        self._done = threading.Event()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def start(
        self,
        root_path: str,
        root_probe: Optional[ProbeResult] = None,
        use_cache: bool = True,
    ) -> None:
        """
        Begin scanning root_path in the background.

        Args:
            root_path: Absolute path to scan
            root_probe: Probe result for the root, if the caller already has one
            use_cache: If False, the root itself is always walked (its
                descendants may still be served from cache)
        """
        if self._executor is not None:
            raise RuntimeError("scan pass already started")
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix=f"diskscope-scan-{self.pass_id}",
        )
        self._submit(self._visit_root, root_path, root_probe, use_cache)

    def cancel(self) -> None:
        """Ask workers to stop at their next polling point."""
        self.cancel_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the pass has finished. Returns False on timeout."""
        return self._done.wait(timeout)

    # -- work accounting ----------------------------------------------------

    def _submit(self, fn: Callable, *args) -> None:
        with self._lock:
            self._outstanding += 1
        self._executor.submit(self._run, fn, *args)

    def _run(self, fn: Callable, *args) -> None:
        try:
            fn(*args)
        except Exception as e:  # a bug in a worker must not hang the pass
            path = args[0] if args else "?"
            self.log.exception("Scan worker failed on %s", path)
            self._emit(UpdateKind.ERROR, path, node_kind=NodeKind.DIRECTORY, error=str(e))
        finally:
            with self._lock:
                self._outstanding -= 1
                finished = self._outstanding == 0
            if finished:
                self._finish()

    def _finish(self) -> None:
        self._emit(UpdateKind.FINISHED, "", cancelled=self.cancelled)
        self._done.set()
        self._executor.shutdown(wait=False)

    def _emit(self, kind: UpdateKind, path: str, **fields) -> None:
        self.emit(NodeUpdate(kind=kind, path=path, pass_id=self.pass_id, **fields))

    def _emit_error(self, err: ScanError, node_kind: NodeKind) -> None:
        self.log.debug("Scan error (%s) at %s: %s", err.kind.value, err.path, err.message)
        self._emit(
            UpdateKind.ERROR,
            err.path,
            node_kind=node_kind,
            error_kind=err.kind,
            error=err.message,
        )

    # -- worker steps -------------------------------------------------------

    def _visit_root(self, path: str, result: Optional[ProbeResult], use_cache: bool) -> None:
        if result is None:
            try:
                result = self.probe(path)
            except ScanError as e:
                self._emit_error(e, NodeKind.DIRECTORY)
                return
        self._resolve(path, result, use_cache)

    def _visit(self, path: str, dir_hint: bool) -> None:
        try:
            result = self.probe(path)
        except ScanError as e:
            self._emit_error(e, NodeKind.DIRECTORY if dir_hint else NodeKind.INACCESSIBLE)
            return
        self._resolve(path, result, use_cache=True)

    def _resolve(self, path: str, result: ProbeResult, use_cache: bool) -> None:
        """Emit a leaf, short-circuit an alias or cache hit, or queue a walk."""
        if result.kind != NodeKind.DIRECTORY:
            alias_of = None
            if result.kind == NodeKind.FILE and result.nlink > 1:
                alias_of = self.visited.claim(result.identity, path)
            self._emit(
                UpdateKind.LEAF,
                path,
                node_kind=result.kind,
                self_size=result.self_size,
                identity=result.identity,
                mtime=result.mtime,
                alias_of=alias_of,
            )
            return

        alias_of = self.visited.claim(result.identity, path)
        if alias_of is not None:
            cycle = Cycle(path, f"same directory as {alias_of}")
            self.log.debug("Scan alias at %s: %s", path, cycle.message)
            self._emit(
                UpdateKind.ALIAS,
                path,
                node_kind=NodeKind.DIRECTORY,
                identity=result.identity,
                mtime=result.mtime,
                alias_of=alias_of,
                error_kind=cycle.kind,
                error=cycle.message,
            )
            return

        if use_cache and self.cache is not None:
            entry = self.cache.get(path, result.identity, result.mtime)
            if entry is not None:
                self._emit(
                    UpdateKind.CACHED,
                    path,
                    node_kind=NodeKind.DIRECTORY,
                    identity=result.identity,
                    mtime=result.mtime,
                    cumulative_size=entry.cumulative_size,
                    child_count=entry.child_count,
                )
                return

        if self.cancelled:
            return
        self._submit(self._expand, path, result)

    def _expand(self, path: str, result: ProbeResult) -> None:
        if self.cancelled:
            return

        try:
            entries = self.lister(path)
        except ScanError as e:
            self._emit_error(e, NodeKind.DIRECTORY)
            return

        self._emit(
            UpdateKind.LISTED,
            path,
            node_kind=NodeKind.DIRECTORY,
            identity=result.identity,
            mtime=result.mtime,
            child_count=len(entries),
            subdirs=tuple(e.name for e in entries if e.is_dir),
        )

        for entry in entries:
            if self.cancelled:
                return
            self._visit(entry.path, entry.is_dir)

        self._emit(UpdateKind.DIR_DONE, path)


def scan(
    root_path: str,
    concurrency_limit: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    cache: Optional[SubtreeCache] = None,
) -> Iterator[NodeUpdate]:
    """
    Scan a tree and yield updates as workers produce them.

    The stream ends with a FINISHED update. Closing the generator early
    cancels the scan.

    Raises:
        RootUnavailable: If the root itself cannot be probed
    """
    root_path = os.path.abspath(root_path)
    try:
        root_probe = probe_path(root_path)
    except ScanError as e:
        raise RootUnavailable(e) from e

    updates: "queue.Queue[NodeUpdate]" = queue.Queue()
    pool = ScanWorkerPool(
        emit=updates.put,
        visited=VisitedSet(),
        cache=cache,
        max_workers=concurrency_limit,
        cancel_event=cancel_event,
    )
    pool.start(root_path, root_probe)

    try:
        while True:
            update = updates.get()
            yield update
            if update.kind == UpdateKind.FINISHED:
                break
    finally:
        pool.cancel()
