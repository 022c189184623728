"""Default deletion collaborator for diskscope.

The dashboard never removes anything itself: it hands a DeleteRequest to a
DeletionEngine and waits for the result. ProtectedDeleter is the engine used
by the CLI. It refuses protected locations and records every operation.
"""

import json
import logging
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from diskscope.models import DeleteRequest, DeleteResult
from diskscope.probe import expand_path

logger = logging.getLogger(__name__)

# Paths that should NEVER be deleted, nor anything containing them
BLOCKED_PATHS = [
    "/",
    "~",
    "~/Documents",
    "~/Desktop",
    "~/Pictures",
    "~/Music",
    "~/Movies",
    "~/Library",
    "/System",
    "/Library",
    "/Applications",
    "/usr",
    "/bin",
    "/sbin",
    "/etc",
    "/var",
    "/private",
    "/Users",
    "/Volumes",
]

# Maximum size for a single delete request (safety check)
MAX_DELETE_BYTES = 100 * 1024**3  # 100 GB


class DeletionEngine(Protocol):
    """Anything that can carry out a delete request."""

    def delete(self, request: DeleteRequest) -> DeleteResult:
        ...


def _normalize(path: str) -> str:
    return os.path.normpath(str(expand_path(path)))


def is_path_safe(path: Path) -> bool:
    """
    Check if a path is safe to delete.

    A path is refused if it is a blocked location or an ancestor of one.

    Args:
        path: Path to check

    Returns:
        True if safe to delete, False otherwise
    """
    path_str = _normalize(str(path))
    prefix = path_str.rstrip(os.sep) + os.sep

    for blocked in BLOCKED_PATHS:
        blocked_expanded = _normalize(blocked)
        if path_str == blocked_expanded:
            return False
        # Deleting a parent would take the blocked path with it
        if blocked_expanded.startswith(prefix):
            return False

    return True


def delete_path(path: Path) -> tuple[int, Optional[str]]:
    """
    Delete a file, symlink or directory tree.

    Returns:
        Tuple of (bytes_freed, error_message)
    """
    if not os.path.lexists(path):
        return 0, "Path no longer exists"

    try:
        if path.is_symlink() or not path.is_dir():
            size = path.lstat().st_size if not path.is_symlink() else 0
            path.unlink()
            return size, None

        size = 0
        for dirpath, _dirnames, filenames in os.walk(path):
            for name in filenames:
                try:
                    size += os.lstat(os.path.join(dirpath, name)).st_size
                except OSError:
                    continue
        shutil.rmtree(path)
        return size, None

    except PermissionError as e:
        return 0, f"Permission denied: {e}"
    except OSError as e:
        return 0, f"OS error: {e}"


class ProtectedDeleter:
    """
    Deletion engine with path protection and an operation log.

    Args:
        operation_log: Optional JSON-lines file receiving one record per request
        dry_run: If True, report what would happen without deleting
    """

    def __init__(self, operation_log: Optional[Path] = None, dry_run: bool = False):
        self.operation_log = operation_log
        self.dry_run = dry_run

    def validate(self, request: DeleteRequest) -> Optional[str]:
        """Return an error message if the request must be refused."""
        path = Path(request.path)
        if not path.is_absolute():
            return f"Refusing relative path: {request.path}"
        if not is_path_safe(path):
            return f"Protected path: {request.path}"
        if request.size_bytes > MAX_DELETE_BYTES:
            return (
                f"Delete exceeds safety limit "
                f"({request.size_bytes / 1024**3:.1f} GB > {MAX_DELETE_BYTES // 1024**3} GB)"
            )
        return None

    def delete(self, request: DeleteRequest) -> DeleteResult:
        error = self.validate(request)
        if error:
            result = DeleteResult(path=request.path, success=False, error=error, dry_run=self.dry_run)
        elif self.dry_run:
            result = DeleteResult(
                path=request.path, success=True, bytes_freed=request.size_bytes, dry_run=True
            )
        else:
            freed, error = delete_path(Path(request.path))
            result = DeleteResult(
                path=request.path,
                success=error is None,
                bytes_freed=freed if error is None else None,
                error=error,
            )

        self._record(request, result)
        return result

    def _record(self, request: DeleteRequest, result: DeleteResult) -> None:
        if result.success:
            logger.info("Deleted %s (%s bytes)", request.path, result.bytes_freed)
        else:
            logger.warning("Delete refused or failed for %s: %s", request.path, result.error)

        if self.operation_log is None:
            return
        record = {
            "timestamp": datetime.now().isoformat(),
            "path": request.path,
            "requested_bytes": request.size_bytes,
            "bytes_freed": result.bytes_freed,
            "success": result.success,
            "error": result.error,
            "dry_run": result.dry_run,
        }
        try:
            self.operation_log.parent.mkdir(parents=True, exist_ok=True)
            with open(self.operation_log, "a") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            logger.warning("Could not write operation log %s: %s", self.operation_log, e)
