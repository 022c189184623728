"""Exceptions raised by diskscope."""

from diskscope.models import ErrorKind


class ScanError(Exception):
    """Base class for errors attached to a single path."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, path: str, message: str = ""):
        self.path = path
        self.message = message or self.kind.value.replace("_", " ")
        super().__init__(f"{path}: {self.message}")


class AccessDenied(ScanError):
    kind = ErrorKind.ACCESS_DENIED


class NotFound(ScanError):
    kind = ErrorKind.NOT_FOUND


class Transient(ScanError):
    kind = ErrorKind.TRANSIENT


class Cycle(ScanError):
    kind = ErrorKind.CYCLE


class Cancelled(ScanError):
    kind = ErrorKind.CANCELLED


class RootUnavailable(Exception):
    """The scan root itself could not be probed; the session cannot start."""

    def __init__(self, cause: ScanError):
        self.cause = cause
        self.path = cause.path
        super().__init__(f"Cannot scan {cause.path}: {cause.message}")


class MetricsUnavailable(Exception):
    """A platform metrics API could not produce a value."""


def from_os_error(path: str, exc: OSError) -> ScanError:
    """Translate an OSError into the scan error taxonomy."""
    message = exc.strerror or str(exc)
    if isinstance(exc, PermissionError):
        return AccessDenied(path, message)
    if isinstance(exc, (FileNotFoundError, NotADirectoryError)):
        return NotFound(path, message)
    return Transient(path, message)
