"""Dashboard state machine for diskscope.

Dashboard holds everything the interactive view needs: navigation, the
delete confirmation flow and frame assembly. It has no terminal code, so it
can be driven by feeding keys and calling tick(). The Textual app in
diskscope.tui only forwards keys and paints frames.
"""

import os
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

from diskscope.context import RunContext
from diskscope.deleter import DeletionEngine
from diskscope.display import format_size
from diskscope.errors import RootUnavailable
from diskscope.metrics import MetricsSampler
from diskscope.models import (
    DeleteRequest,
    DeleteResult,
    MetricSample,
    Node,
    NodeKind,
    ScanProgress,
    ScanState,
)
from diskscope.session import ScanSession


class DashboardState(str, Enum):
    BROWSING = "browsing"
    CONFIRMING_DELETE = "confirming_delete"
    SCANNING = "scanning"
    ERROR = "error"


class Key(str, Enum):
    UP = "up"
    DOWN = "down"
    ENTER = "enter"
    BACK = "back"
    DELETE = "delete"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    RETRY = "retry"
    STOP = "stop"
    QUIT = "quit"


class Row(BaseModel, frozen=True):
    """One line of the size list."""

    path: str
    name: str
    kind: NodeKind
    size: int
    scan_state: ScanState
    partial: bool = False
    alias_of: Optional[str] = None
    error: Optional[str] = None
    annotation: Optional[str] = None


class Frame(BaseModel, frozen=True):
    """Everything needed to paint one redraw."""

    state: DashboardState
    root: str
    cwd: str
    cwd_size: int = 0
    cwd_state: ScanState = ScanState.PENDING
    cwd_partial: bool = False
    rows: tuple[Row, ...] = ()
    cursor: int = 0
    metrics: tuple[MetricSample, ...] = ()
    progress: ScanProgress = ScanProgress()
    pending_delete: Optional[DeleteRequest] = None
    deleting: bool = False
    message: Optional[str] = None
    dry_run: bool = False


class Dashboard:
    """
    Interactive state machine over a scan session.

    Args:
        root_path: Directory to explore
        ctx: Run context (settings, logger, cache)
        deleter: Deletion collaborator; never called in dry-run mode
        sampler: Metrics sampler feeding the metrics strip
        session_factory: Builds the ScanSession, replaceable for tests
    """

    def __init__(
        self,
        root_path: str,
        ctx: Optional[RunContext] = None,
        deleter: Optional[DeletionEngine] = None,
        sampler: Optional[MetricsSampler] = None,
        session_factory: Callable[[str, RunContext], ScanSession] = ScanSession,
    ):
        self.ctx = ctx or RunContext()
        self.root_path = os.path.abspath(os.path.expanduser(root_path))
        self.deleter = deleter
        self.sampler = sampler
        self.session_factory = session_factory

        self.state = DashboardState.BROWSING
        self.session: Optional[ScanSession] = None
        self.cwd = self.root_path
        self.selected: Optional[str] = None
        self.annotations: dict[str, str] = {}
        self.message: Optional[str] = None
        self.pending_delete: Optional[DeleteRequest] = None

        self._delete_future: Optional[Future] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="diskscope-delete")
        self.running = False

    @property
    def dry_run(self) -> bool:
        return self.ctx.settings.dry_run

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> DashboardState:
        """Start scanning the root. A root that cannot be probed enters ERROR."""
        if self.session is not None:
            self.session.cancel()
        self.session = self.session_factory(self.root_path, self.ctx)
        self.cwd = self.root_path
        self.selected = None
        self.annotations.clear()
        self.pending_delete = None
        try:
            self.session.start()
        except RootUnavailable as e:
            self.state = DashboardState.ERROR
            self.message = f"{e} - press r to retry"
            return self.state

        self.state = DashboardState.SCANNING
        self.message = None
        self.running = True
        if self.sampler is not None and not self.sampler.running:
            self.sampler.start()
        return self.state

    def close(self) -> None:
        """Stop scans, the sampler and the delete worker."""
        self.running = False
        if self.session is not None and self.session.tree is not None:
            self.session.close()
        if self.sampler is not None:
            self.sampler.stop()
        self._executor.shutdown(wait=False)

    # -- input ----------------------------------------------------------------

    def handle_key(self, key: Key) -> bool:
        """
        Apply one key press.

        Returns:
            False once the dashboard should exit
        """
        if key == Key.QUIT:
            self.running = False
            return False

        if self.state == DashboardState.ERROR:
            if key == Key.RETRY:
                self.start()
            return True

        if self.state == DashboardState.CONFIRMING_DELETE:
            self._handle_confirm_key(key)
            return True

        handlers = {
            Key.UP: lambda: self._move(-1),
            Key.DOWN: lambda: self._move(1),
            Key.ENTER: self._enter,
            Key.BACK: self._back,
            Key.STOP: self._stop_scan,
        }
        if self.state == DashboardState.BROWSING:
            # Deleting is only offered once the current directory has settled
            handlers[Key.DELETE] = self._request_delete
        handler = handlers.get(key)
        if handler:
            handler()
        return True

    def _handle_confirm_key(self, key: Key) -> None:
        if self._delete_future is not None:
            return  # waiting on the collaborator
        if key == Key.CONFIRM:
            self._confirm_delete()
        elif key in (Key.CANCEL, Key.BACK):
            self.pending_delete = None
            self.message = None
            self.state = DashboardState.BROWSING

    def _rows_nodes(self) -> list[Node]:
        node = self._cwd_node()
        return node.sorted_children() if node else []

    def _cwd_node(self) -> Optional[Node]:
        if self.session is None or self.session.tree is None:
            return None
        return self.session.tree.get(self.cwd)

    def _cursor_index(self, nodes: list[Node]) -> int:
        for i, node in enumerate(nodes):
            if node.path == self.selected:
                return i
        return 0

    def _move(self, delta: int) -> None:
        nodes = self._rows_nodes()
        if not nodes:
            self.selected = None
            return
        index = max(0, min(len(nodes) - 1, self._cursor_index(nodes) + delta))
        self.selected = nodes[index].path

    def _selected_node(self) -> Optional[Node]:
        nodes = self._rows_nodes()
        if not nodes:
            return None
        return nodes[self._cursor_index(nodes)]

    def _enter(self) -> None:
        node = self._selected_node()
        if node is None or not node.is_dir or node.is_alias:
            return
        if not node.is_materialized:
            self.session.expand(node.path)
        self.cwd = node.path
        self.selected = None

    def _back(self) -> None:
        if self.cwd == self.root_path:
            return
        previous = self.cwd
        self.cwd = os.path.dirname(self.cwd)
        self.selected = previous

    def _stop_scan(self) -> None:
        if self.session is None or self.session.done:
            return
        self.session.cancel()
        self.message = "Scan stopped - sizes shown are lower bounds"

    def _request_delete(self) -> None:
        node = self._selected_node()
        if node is None:
            return
        self.pending_delete = DeleteRequest(path=node.path, size_bytes=node.cumulative_size)
        self.message = f"Delete {node.name} ({format_size(node.cumulative_size)})? y/n"
        self.state = DashboardState.CONFIRMING_DELETE

    def _confirm_delete(self) -> None:
        request = self.pending_delete
        if request is None:
            self.state = DashboardState.BROWSING
            return

        if self.dry_run or self.deleter is None:
            self.annotations[request.path] = (
                f"dry run: would free {format_size(request.size_bytes)}"
            )
            self.message = f"Dry run - {os.path.basename(request.path)} was not deleted"
            self.pending_delete = None
            self.state = DashboardState.BROWSING
            return

        self.message = f"Deleting {os.path.basename(request.path)}..."
        self._delete_future = self._executor.submit(self.deleter.delete, request)

    # -- redraw ---------------------------------------------------------------

    def tick(self) -> Frame:
        """Fold in scan updates, delete results and metrics; never blocks."""
        if self.session is not None and self.session.tree is not None:
            self.session.pump(limit=self.ctx.settings.max_updates_per_tick)

        if self._delete_future is not None and self._delete_future.done():
            self._finish_delete(self._delete_future)
            self._delete_future = None

        if self.state in (DashboardState.BROWSING, DashboardState.SCANNING):
            self._settle_cwd()
            node = self._cwd_node()
            busy = node is not None and not node.scan_state.is_terminal
            self.state = DashboardState.SCANNING if busy else DashboardState.BROWSING

        return self.frame()

    def _finish_delete(self, future: Future) -> None:
        request = self.pending_delete
        self.pending_delete = None
        self.state = DashboardState.BROWSING
        if request is None:
            return

        try:
            result: DeleteResult = future.result()
        except Exception as e:
            self.ctx.logger.exception("Deletion collaborator failed for %s", request.path)
            result = DeleteResult(path=request.path, success=False, error=str(e))

        name = os.path.basename(request.path)
        if result.success:
            freed = result.bytes_freed if result.bytes_freed is not None else request.size_bytes
            self.message = f"Deleted {name}, freed {format_size(freed)}"
            self.annotations.pop(request.path, None)
            if request.path in self.session.tree:
                self.session.invalidate(request.path)
        else:
            self.annotations[request.path] = result.error or "delete failed"
            self.message = f"Could not delete {name}"

    def _settle_cwd(self) -> None:
        """Move up if the current directory disappeared from the tree."""
        tree = self.session.tree if self.session else None
        if tree is None:
            return
        while self.cwd not in tree and self.cwd != self.root_path:
            self.cwd = os.path.dirname(self.cwd)
            self.selected = None

    def frame(self) -> Frame:
        """Build a frame from the current tree and metrics."""
        metrics = tuple(self.sampler.samples()) if self.sampler is not None else ()
        node = self._cwd_node()
        if node is None:
            return Frame(
                state=self.state,
                root=self.root_path,
                cwd=self.cwd,
                metrics=metrics,
                message=self.message,
                dry_run=self.dry_run,
            )

        nodes = node.sorted_children()
        rows = tuple(
            Row(
                path=n.path,
                name=n.name,
                kind=n.kind,
                size=n.cumulative_size,
                scan_state=n.scan_state,
                partial=n.partial,
                alias_of=n.alias_of,
                error=n.error,
                annotation=self.annotations.get(n.path),
            )
            for n in nodes
        )
        return Frame(
            state=self.state,
            root=self.root_path,
            cwd=self.cwd,
            cwd_size=node.cumulative_size,
            cwd_state=node.scan_state,
            cwd_partial=node.partial,
            rows=rows,
            cursor=self._cursor_index(nodes),
            metrics=metrics,
            progress=self.session.progress.model_copy(),
            pending_delete=self.pending_delete,
            deleting=self._delete_future is not None,
            message=self.message,
            dry_run=self.dry_run,
        )
