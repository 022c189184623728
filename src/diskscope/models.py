"""Data models for diskscope."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, PrivateAttr


class NodeKind(str, Enum):
    """What a filesystem entry is, as seen without following symlinks."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    SPECIAL = "special"  # sockets, fifos, device nodes
    INACCESSIBLE = "inaccessible"  # could not be stat'ed at all


class ScanState(str, Enum):
    """Per-node scan state."""

    PENDING = "pending"
    SCANNING = "scanning"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanState.COMPLETE, ScanState.ERROR, ScanState.CANCELLED)


class ErrorKind(str, Enum):
    """Error taxonomy shared by the probe, the scanner and node state."""

    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    CYCLE = "cycle"  # informational: hard-link or mount alias
    CANCELLED = "cancelled"


class Identity(BaseModel, frozen=True):
    """Device + inode pair identifying the underlying file."""

    device: int
    inode: int


class Node(BaseModel):
    """One filesystem entry in the scan tree."""

    path: str = Field(..., description="Absolute path, unique within a session")
    name: str = Field(..., description="Last path component")
    kind: NodeKind = Field(..., description="Entry kind")
    parent: Optional[str] = Field(None, description="Parent path, None for the scan root")
    self_size: int = Field(0, description="Bytes owned directly by this entry")
    cumulative_size: int = Field(0, description="Self size plus all counted descendants")
    child_count: int = Field(0, description="Number of direct entries")
    children: Optional[dict[str, "Node"]] = Field(
        None, description="Materialized children by name; None until listed"
    )
    scan_state: ScanState = Field(ScanState.PENDING, description="Scan state")
    identity: Optional[Identity] = None
    mtime: Optional[float] = None
    partial: bool = Field(False, description="cumulative_size is only a lower bound")
    alias_of: Optional[str] = Field(None, description="First path seen with the same identity")
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    # Aggregator bookkeeping
    _pending_dirs: int = PrivateAttr(0)
    _listed: bool = PrivateAttr(False)
    _entries_done: bool = PrivateAttr(False)
    _settled: bool = PrivateAttr(False)
    _awaited: bool = PrivateAttr(False)  # counted in the parent's pending directories
    _held: Optional[int] = PrivateAttr(None)  # total shown to ancestors while re-walking
    _walked: int = PrivateAttr(0)

    @property
    def is_dir(self) -> bool:
        return self.kind == NodeKind.DIRECTORY

    @property
    def is_alias(self) -> bool:
        return self.alias_of is not None

    @property
    def counted_size(self) -> int:
        """Bytes this entry contributes to its ancestors."""
        if self.is_alias:
            return 0
        return self.self_size

    @property
    def is_materialized(self) -> bool:
        return self.children is not None

    def sorted_children(self) -> list["Node"]:
        """Children ordered by descending cumulative size, then name."""
        if not self.children:
            return []
        return sorted(self.children.values(), key=lambda n: (-n.cumulative_size, n.name))


class UpdateKind(str, Enum):
    """Kinds of messages flowing from scan workers to the aggregator."""

    LISTED = "listed"  # directory listed, placeholders for its subdirectories
    LEAF = "leaf"  # a non-directory entry was probed
    ALIAS = "alias"  # directory already visited under another path
    CACHED = "cached"  # directory resolved from the subtree cache
    ERROR = "error"  # entry could not be probed or listed
    DIR_DONE = "dir_done"  # worker finished the entries of a directory
    FINISHED = "finished"  # a scan pass has no more work


class NodeUpdate(BaseModel, frozen=True):
    """A single delta produced by a scan worker."""

    kind: UpdateKind
    path: str
    pass_id: int = 0
    node_kind: Optional[NodeKind] = None
    self_size: int = 0
    identity: Optional[Identity] = None
    mtime: Optional[float] = None
    alias_of: Optional[str] = None
    child_count: int = 0
    subdirs: tuple[str, ...] = ()
    cumulative_size: int = 0
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    cancelled: bool = False


class CacheEntry(BaseModel, frozen=True):
    """A previously computed subtree total."""

    path: str
    identity: Identity
    mtime: float
    cumulative_size: int
    child_count: int
    captured_at: datetime = Field(default_factory=datetime.now)


class ScanProgress(BaseModel):
    """Aggregate counters for one scan session."""

    bytes_scanned: int = 0
    files_visited: int = 0
    dirs_visited: int = 0
    errors: int = 0
    aliases: int = 0
    cache_hits: int = 0


class MetricSample(BaseModel, frozen=True):
    """Immutable snapshot of system resource usage."""

    timestamp: datetime = Field(default_factory=datetime.now)
    cpu_percent: float = 0.0
    memory_used_bytes: int = 0
    memory_total_bytes: int = 0
    disk_read_bytes_per_sec: float = 0.0
    disk_write_bytes_per_sec: float = 0.0
    unavailable: frozenset[str] = Field(
        default_factory=frozenset,
        description="Metrics that failed three times in a row (cpu, memory, disk)",
    )

    @property
    def memory_percent(self) -> float:
        if self.memory_total_bytes <= 0:
            return 0.0
        return (self.memory_used_bytes / self.memory_total_bytes) * 100


class DeleteRequest(BaseModel, frozen=True):
    """A request handed to the deletion collaborator."""

    path: str = Field(..., description="Exact path to remove")
    size_bytes: int = Field(0, description="Last-known cumulative size, for confirmation")


class DeleteResult(BaseModel):
    """Outcome reported by the deletion collaborator."""

    path: str
    success: bool = True
    bytes_freed: Optional[int] = Field(None, description="Bytes actually freed, if known")
    error: Optional[str] = None
    dry_run: bool = False
