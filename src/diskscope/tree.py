"""Size aggregation and the in-memory scan tree.

TreeModel is the only code that mutates Node objects. Updates from any number
of workers are applied one at a time, in arrival order, by whichever thread
owns the model (the dashboard's render loop, or a blocking caller).
"""

import logging
import os
from typing import Iterable, Iterator, Optional

from diskscope.cache import SubtreeCache
from diskscope.errors import Cancelled
from diskscope.models import (
    ErrorKind,
    Node,
    NodeKind,
    NodeUpdate,
    ScanProgress,
    ScanState,
    UpdateKind,
)
from diskscope.scanner import VisitedSet

logger = logging.getLogger(__name__)


def is_within(path: str, root: str) -> bool:
    """True if path is root or lies beneath it."""
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


class TreeModel:
    """
    Authoritative tree of nodes for one scan session.

    Args:
        root_path: Absolute path of the scan root
        root_kind: Kind of the root entry, when already probed
        cache: Subtree cache written on directory completion
        visited: Session visited set, told when a hard link changes owner
    """

    def __init__(
        self,
        root_path: str,
        root_kind: NodeKind = NodeKind.DIRECTORY,
        cache: Optional[SubtreeCache] = None,
        log: Optional[logging.Logger] = None,
        visited: Optional[VisitedSet] = None,
    ):
        self.root_path = root_path
        self.cache = cache
        self.visited = visited
        self.log = log or logger
        self.progress = ScanProgress()
        self.nodes: dict[str, Node] = {}
        self.root = self._new_node(root_path, root_kind, parent=None)
        self._pass_roots: dict[int, str] = {}
        self._last_pass = 0
        # Invalidated subtree -> newest pass whose updates for it are stale
        self._fences: dict[str, int] = {}

    # -- lookup ---------------------------------------------------------------

    def get(self, path: str) -> Optional[Node]:
        return self.nodes.get(path)

    def __getitem__(self, path: str) -> Node:
        return self.nodes[path]

    def __contains__(self, path: str) -> bool:
        return path in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def parent_of(self, node: Node) -> Optional[Node]:
        if node.parent is None:
            return None
        return self.nodes.get(node.parent)

    def ancestors(self, node: Node) -> Iterator[Node]:
        """Yield node's ancestors from its parent up to the root."""
        parent = self.parent_of(node)
        while parent is not None:
            yield parent
            parent = self.parent_of(parent)

    def walk(self, path: Optional[str] = None) -> Iterator[Node]:
        """Yield every materialized node in a subtree, depth first."""
        start = self.nodes.get(path or self.root_path)
        if start is None:
            return
        stack = [start]
        while stack:
            node = stack.pop()
            yield node
            if node.children:
                stack.extend(node.children.values())

    @property
    def is_scanning(self) -> bool:
        return bool(self._pass_roots)

    # -- node creation --------------------------------------------------------

    def _new_node(self, path: str, kind: NodeKind, parent: Optional[str]) -> Node:
        name = os.path.basename(path.rstrip(os.sep)) or path
        node = Node(path=path, name=name, kind=kind, parent=parent)
        self.nodes[path] = node
        return node

    def _ensure(self, path: str, kind: NodeKind) -> Node:
        """Return the node for path, creating it and any missing ancestors."""
        node = self.nodes.get(path)
        if node is not None:
            return node
        if not is_within(path, self.root_path):
            raise ValueError(f"{path} is outside the scan root {self.root_path}")

        parent = self._ensure(os.path.dirname(path), NodeKind.DIRECTORY)
        node = self._new_node(path, kind, parent=parent.path)
        if parent.children is None:
            parent.children = {}
        parent.children[node.name] = node
        return node

    # -- applying updates -------------------------------------------------------

    def begin_pass(self, pass_id: int, root: str) -> None:
        """Register a scan pass so its FINISHED update can be resolved."""
        self._pass_roots[pass_id] = root
        self._last_pass = max(self._last_pass, pass_id)

    def apply_many(self, updates: Iterable[NodeUpdate]) -> int:
        count = 0
        for update in updates:
            self.apply(update)
            count += 1
        return count

    def apply(self, update: NodeUpdate) -> None:
        """Apply a single worker update to the tree."""
        if self._is_stale(update):
            return
        handler = {
            UpdateKind.LISTED: self._on_listed,
            UpdateKind.LEAF: self._on_leaf,
            UpdateKind.ALIAS: self._on_alias,
            UpdateKind.CACHED: self._on_cached,
            UpdateKind.ERROR: self._on_error,
            UpdateKind.DIR_DONE: self._on_dir_done,
            UpdateKind.FINISHED: self._on_finished,
        }[update.kind]
        handler(update)

    def _is_stale(self, update: NodeUpdate) -> bool:
        """True for updates an older pass produced for a subtree invalidated since."""
        if update.kind == UpdateKind.FINISHED:
            return False
        return any(
            update.pass_id <= newest and is_within(update.path, root)
            for root, newest in self._fences.items()
        )

    def _on_listed(self, update: NodeUpdate) -> None:
        node = self._ensure(update.path, NodeKind.DIRECTORY)
        node.kind = NodeKind.DIRECTORY
        node.identity = update.identity
        node.mtime = update.mtime
        node.child_count = update.child_count
        node.scan_state = ScanState.SCANNING
        if node.children is None:
            node.children = {}
        node._listed = True
        self.progress.dirs_visited += 1

        for name in update.subdirs:
            child = self._ensure(os.path.join(update.path, name), NodeKind.DIRECTORY)
            if not child._settled and not child._awaited:
                child._awaited = True
                node._pending_dirs += 1

    def _on_leaf(self, update: NodeUpdate) -> None:
        node = self._ensure(update.path, update.node_kind or NodeKind.FILE)
        node.kind = update.node_kind or NodeKind.FILE
        node.self_size = update.self_size
        node.identity = update.identity
        node.mtime = update.mtime
        node.alias_of = update.alias_of
        node.cumulative_size = node.counted_size
        node.scan_state = ScanState.COMPLETE

        self.progress.files_visited += 1
        self.progress.bytes_scanned += node.counted_size
        if node.is_alias:
            self.progress.aliases += 1
        self._add_size(node, node.counted_size)
        self._settle(node)

    def _on_alias(self, update: NodeUpdate) -> None:
        node = self._ensure(update.path, NodeKind.DIRECTORY)
        node.identity = update.identity
        node.mtime = update.mtime
        node.alias_of = update.alias_of
        node.error_kind = update.error_kind or ErrorKind.CYCLE
        node.error = update.error
        node.cumulative_size = 0
        node.scan_state = ScanState.COMPLETE
        self.progress.aliases += 1
        self._settle(node)

    def _on_cached(self, update: NodeUpdate) -> None:
        node = self._ensure(update.path, NodeKind.DIRECTORY)
        node.identity = update.identity
        node.mtime = update.mtime
        node.child_count = update.child_count
        node.cumulative_size = update.cumulative_size
        node.scan_state = ScanState.COMPLETE

        self.progress.cache_hits += 1
        self.progress.bytes_scanned += update.cumulative_size
        self._add_size(node, update.cumulative_size)
        self._settle(node)

    def _on_error(self, update: NodeUpdate) -> None:
        node = self.nodes.get(update.path)
        rescan_root = update.path in self._pass_roots.values() and update.path != self.root_path
        if node is not None and rescan_root and update.error_kind == ErrorKind.NOT_FOUND:
            # Gone from disk since the last scan
            self._prune(node)
            return

        node = self._ensure(update.path, update.node_kind or NodeKind.INACCESSIBLE)
        if node.kind != NodeKind.DIRECTORY or update.node_kind == NodeKind.DIRECTORY:
            node.kind = update.node_kind or NodeKind.INACCESSIBLE
        node.self_size = 0
        node.error_kind = update.error_kind or ErrorKind.TRANSIENT
        node.error = update.error
        node.scan_state = ScanState.ERROR
        node._held = None
        node._walked = 0

        self.progress.errors += 1
        self._mark_partial(node)
        self._settle(node)

    def _on_dir_done(self, update: NodeUpdate) -> None:
        node = self.nodes.get(update.path)
        if node is None:
            return
        node._entries_done = True
        self._maybe_complete(node)
    def _on_finished(self, update: NodeUpdate) -> None:
        root = self._pass_roots.pop(update.pass_id, None)
        # Fences only matter while a pass they were raised against is running
        self._fences = {
            path: newest
            for path, newest in self._fences.items()
            if any(pass_id <= newest for pass_id in self._pass_roots)
        }
        if root is None:
            return
        if update.cancelled:
            self._cancel_under(root)

    # -- bookkeeping ------------------------------------------------------------

    def _add_size(self, node: Node, delta: int) -> None:
        """Add delta to node's ancestors, stopping at one that is being re-walked."""
        if not delta:
            return
        for ancestor in self.ancestors(node):
            if ancestor._held is not None:
                ancestor._walked += delta
                return
            ancestor.cumulative_size += delta

    def _mark_partial(self, node: Node) -> None:
        for ancestor in self.ancestors(node):
            ancestor.partial = True

    def _settle(self, node: Node) -> None:
        """Node reached a final state; let its parent know."""
        if node._settled:
            return
        node._settled = True
        parent = self.parent_of(node)
        if parent is None or not node._awaited:
            return
        parent._pending_dirs -= 1
        self._maybe_complete(parent)

    def _maybe_complete(self, node: Node) -> None:
        if node.scan_state.is_terminal:
            return
        if not (node._listed and node._entries_done and node._pending_dirs <= 0):
            return

        node.partial = any(
            c.partial or c.scan_state != ScanState.COMPLETE for c in (node.children or {}).values()
        )
        node.scan_state = ScanState.COMPLETE
        if node._held is not None:
            self._release_hold(node)

        if (
            self.cache is not None
            and not node.partial
            and node.identity is not None
            and node.mtime is not None
        ):
            self.cache.put(
                node.path, node.identity, node.mtime, node.cumulative_size, node.child_count
            )
        self._settle(node)

    def _release_hold(self, node: Node) -> None:
        """Swap a re-walked directory's held total for the walked one."""
        delta = node._walked - node._held
        node.cumulative_size = node._walked
        node._held = None
        node._walked = 0
        self._add_size(node, delta)

    def _cancel_under(self, root: str) -> None:
        busy = list(self._pass_roots.values())
        for node in list(self.nodes.values()):
            if not is_within(node.path, root) or node.scan_state.is_terminal:
                continue
            if any(is_within(node.path, b) for b in busy):
                continue
            self._mark_cancelled(node)
            self._mark_partial(node)

        start = self.nodes.get(root)
        if start is None:
            return
        for ancestor in self.ancestors(start):
            if ancestor.scan_state.is_terminal:
                continue
            if any(is_within(b, ancestor.path) for b in busy):
                break
            self._mark_cancelled(ancestor)

    def _mark_cancelled(self, node: Node) -> None:
        # A re-walk cut short keeps the total it had before
        node._held = None
        node._walked = 0
        node.scan_state = ScanState.CANCELLED
        node.error_kind = ErrorKind.CANCELLED
        node.error = Cancelled(node.path).message
        node.partial = True

    def _prune(self, node: Node) -> None:
        parent = self.parent_of(node)
        self._add_size(node, -(node.cumulative_size if node.is_dir else node.counted_size))
        self._drop_descendants(node.path)
        del self.nodes[node.path]
        if parent is None:
            return
        if parent.children:
            parent.children.pop(node.name, None)
        parent.child_count = max(0, parent.child_count - 1)
        if node._awaited and not node._settled:
            parent._pending_dirs -= 1
        self._maybe_complete(parent)

    def _drop_descendants(self, path: str) -> None:
        for p in [p for p in self.nodes if p != path and is_within(p, path)]:
            del self.nodes[p]

    def _promote_aliases(self, root: str) -> list[Node]:
        """
        Hand each hard-linked file owned inside root to a surviving link outside it.

        The first remaining link (by path) becomes the owner and starts counting
        its bytes; any other links are re-pointed at it.
        """
        owners = {
            n.path
            for n in self.nodes.values()
            if is_within(n.path, root) and n.kind == NodeKind.FILE and not n.is_alias
        }
        heirs: dict[str, Node] = {}
        for node in sorted(self.nodes.values(), key=lambda n: n.path):
            if node.alias_of not in owners or is_within(node.path, root):
                continue
            heir = heirs.get(node.alias_of)
            if heir is not None:
                node.alias_of = heir.path
                continue

            heirs[node.alias_of] = node
            node.alias_of = None
            node.cumulative_size = node.self_size
            self.progress.aliases -= 1
            self._add_size(node, node.self_size)
            if self.visited is not None and node.identity is not None:
                self.visited.claim(node.identity, node.path)
            if self.cache is not None:
                for ancestor in self.ancestors(node):
                    self.cache.invalidate(ancestor.path, descendants=False)
            self.log.debug("%s now owns the bytes of hard link %s", node.path, root)
        return list(heirs.values())

    # -- invalidation -----------------------------------------------------------

    def invalidate(self, path: str) -> Node:
        """
        Forget everything known about a subtree so it can be walked again.

        The subtree's size is subtracted from its ancestors, its cache entries
        (and those of its ancestors) are dropped, and completed ancestors are
        reopened so they finish again once the rescan settles. Updates still
        queued from passes already running are ignored for the subtree.

        Raises:
            KeyError: If path is not in the tree
        """
        node = self.nodes[path]
        self._promote_aliases(path)
        removed = node.cumulative_size if node.is_dir else node.counted_size
        self._add_size(node, -removed)
        self._drop_descendants(path)
        self._fences[path] = self._last_pass

        if self.cache is not None:
            self.cache.invalidate(path, descendants=True)
            for ancestor in self.ancestors(node):
                self.cache.invalidate(ancestor.path, descendants=False)

        node.cumulative_size = 0
        node.self_size = 0
        node.alias_of = None
        node._held = None
        node._walked = 0
        self._reset(node)
        self.log.debug("Invalidated %s (%d bytes)", path, removed)
        return node

    def reopen(self, path: str) -> Node:
        """
        Walk a completed directory again without taking its total away.

        Ancestors keep seeing the current total until the walk completes, when
        the walked total replaces it.

        Raises:
            KeyError: If path is not in the tree
        """
        node = self.nodes[path]
        node._held = node.cumulative_size
        node._walked = 0
        self._drop_descendants(path)
        self._reset(node)
        return node

    def _reset(self, node: Node) -> None:
        """Return node to pending and reopen the ancestors waiting on it."""
        was_pending = node._awaited and not node._settled

        node.children = None
        node.child_count = 0
        node.scan_state = ScanState.PENDING
        node.partial = False
        node.error_kind = None
        node.error = None
        node._listed = False
        node._entries_done = False
        node._pending_dirs = 0
        node._settled = False

        parent = self.parent_of(node)
        if parent is None:
            node._awaited = False
            return
        if was_pending:
            # Still counted in the parent from the pass that listed it
            return

        node._awaited = parent._listed
        if node._awaited:
            parent._pending_dirs += 1

        current = parent
        while current is not None and current.scan_state == ScanState.COMPLETE:
            current.scan_state = ScanState.SCANNING
            current._settled = False
            above = self.parent_of(current)
            if above is not None and current._awaited:
                above._pending_dirs += 1
            current = above
