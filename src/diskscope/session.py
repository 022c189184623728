"""Scan sessions: one root, one visited set, any number of scan passes."""

import itertools
import os
import queue
import time
from typing import Callable, Optional

from diskscope.context import RunContext
from diskscope.errors import RootUnavailable, ScanError
from diskscope.models import Node, NodeUpdate, ScanProgress, ScanState, UpdateKind
from diskscope.probe import ProbeResult, list_directory, probe_path
from diskscope.scanner import ScanWorkerPool, VisitedSet
from diskscope.tree import TreeModel


class ScanSession:
    """
    Owns the tree, visited set and worker pools for scanning one root.

    Workers push updates onto a queue; pump() applies them to the tree on the
    calling thread, which makes that thread the single writer.

    Args:
        root_path: Directory (or file) to scan
        ctx: Run context providing settings, logger and the subtree cache
        probe: Entry probe function, replaceable for tests
        lister: Directory listing function, replaceable for tests
    """

    def __init__(
        self,
        root_path: str,
        ctx: Optional[RunContext] = None,
        probe: Callable[[str], ProbeResult] = probe_path,
        lister: Callable[[str], list] = list_directory,
    ):
        self.ctx = ctx or RunContext()
        self.root_path = os.path.abspath(os.path.expanduser(root_path))
        self.probe = probe
        self.lister = lister
        self.visited = VisitedSet()
        self.tree: Optional[TreeModel] = None
        self.cancelled = False
        self.started_at: Optional[float] = None

        self._updates: "queue.Queue[NodeUpdate]" = queue.Queue()
        self._pools: dict[int, ScanWorkerPool] = {}
        self._pass_ids = itertools.count(1)

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> TreeModel:
        """
        Probe the root and begin the first scan pass.

        Raises:
            RootUnavailable: If the root cannot be probed
        """
        try:
            root_probe = self.probe(self.root_path)
        except ScanError as e:
            self.ctx.logger.warning("Cannot scan %s: %s", self.root_path, e.message)
            raise RootUnavailable(e) from e

        self.visited.clear()
        self.cancelled = False
        self.tree = TreeModel(
            self.root_path,
            root_kind=root_probe.kind,
            cache=self.ctx.cache,
            log=self.ctx.logger,
            visited=self.visited,
        )
        self.started_at = time.monotonic()
        # The root is always listed; its subdirectories may come from cache
        self._start_pass(self.root_path, root_probe, use_cache=False)
        return self.tree

    def cancel(self) -> None:
        """Ask every running pass to stop. Results gathered so far are kept."""
        self.cancelled = True
        for pool in list(self._pools.values()):
            pool.cancel()

    def close(self) -> None:
        """Cancel outstanding work and drain what the workers already produced."""
        self.cancel()
        self.wait(timeout=5.0)

    def _start_pass(
        self, path: str, root_probe: Optional[ProbeResult], use_cache: bool
    ) -> ScanWorkerPool:
        pass_id = next(self._pass_ids)
        pool = ScanWorkerPool(
            emit=self._updates.put,
            visited=self.visited,
            cache=self.ctx.cache,
            max_workers=self.ctx.settings.concurrency,
            pass_id=pass_id,
            probe=self.probe,
            lister=self.lister,
            log=self.ctx.logger,
        )
        self._pools[pass_id] = pool
        self.tree.begin_pass(pass_id, path)
        pool.start(path, root_probe, use_cache=use_cache)
        return pool

    # -- consuming updates ----------------------------------------------------

    def pump(self, limit: Optional[int] = None) -> int:
        """
        Apply pending updates without blocking.

        Args:
            limit: Maximum number of updates to apply (None for all pending)

        Returns:
            Number of updates applied
        """
        applied = 0
        while limit is None or applied < limit:
            try:
                update = self._updates.get_nowait()
            except queue.Empty:
                break
            self._apply(update)
            applied += 1
        return applied

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Apply updates until every pass has finished.

        Returns:
            True if all passes finished, False on timeout
        """
        if self.tree is None:
            return True
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._pools:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            try:
                update = self._updates.get(timeout=remaining)
            except queue.Empty:
                return False
            self._apply(update)
        self.pump()
        return True

    def _apply(self, update: NodeUpdate) -> None:
        self.tree.apply(update)
        if update.kind == UpdateKind.FINISHED:
            self._pools.pop(update.pass_id, None)

    # -- rescans --------------------------------------------------------------

    def invalidate(self, path: str) -> Node:
        """
        Drop what is known about a subtree and walk just that subtree again.

        Used after an external deletion so freed space shows up without a full
        rescan. If the path no longer exists it is pruned when the rescan
        reports it missing.

        Raises:
            KeyError: If path is not part of the tree
        """
        node = self.tree[path]
        self.visited.release_under(path)
        self.tree.invalidate(path)
        self._start_pass(path, None, use_cache=True)
        return node

    def expand(self, path: str) -> bool:
        """
        Materialize the children of a directory resolved from cache.

        The directory keeps its cached total until the walk completes, so no
        ancestor shrinks while browsing.

        Returns:
            True if a scoped walk was started
        """
        node = self.tree.get(path) if self.tree else None
        if node is None or not node.is_dir or node.is_materialized or node.is_alias:
            return False
        if node.scan_state != ScanState.COMPLETE:
            return False
        self.visited.release_under(path)
        self.tree.reopen(path)
        self._start_pass(path, None, use_cache=False)
        return True

    # -- read side ------------------------------------------------------------

    @property
    def root(self) -> Optional[Node]:
        return self.tree.root if self.tree else None

    @property
    def progress(self) -> ScanProgress:
        return self.tree.progress if self.tree else ScanProgress()

    @property
    def done(self) -> bool:
        return self.tree is not None and not self._pools

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return time.monotonic() - self.started_at
