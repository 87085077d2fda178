"""Exception hierarchy for the Leyline cache subsystem.

All exceptions inherit from LeylineError, which carries optional structured
context for logging. Content store failures are split by cause so callers can
disable caching instead of aborting.
"""

from __future__ import annotations

import errno
from pathlib import Path
from typing import Any

from leyline.models import ScanWarning


class LeylineError(Exception):
    """Base exception for all Leyline errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(LeylineError):
    """Raised when configuration values are invalid."""


class InvalidCategoryError(LeylineError, ValueError):
    """Raised when a query names a category outside the fixed set."""


# ---------------------------------------------------------------------------
# Content store
# ---------------------------------------------------------------------------


class CacheError(LeylineError):
    """Base class for content store failures."""


class StorageFull(CacheError):
    """A single blob is larger than the store's size bound."""


CacheFull = StorageFull


class PermissionDenied(CacheError):
    """The cache directory or one of its files is not accessible."""


class DiskFull(CacheError):
    """The filesystem holding the cache ran out of space."""


class ReadOnlyFilesystem(CacheError):
    """The cache directory lives on a read-only filesystem."""


class CacheOperationError(CacheError):
    """Any other I/O failure inside the content store."""


_ERRNO_KINDS: dict[int, type[CacheError]] = {
    errno.EACCES: PermissionDenied,
    errno.EPERM: PermissionDenied,
    errno.ENOSPC: DiskFull,
    errno.EROFS: ReadOnlyFilesystem,
}
if hasattr(errno, "EDQUOT"):
    _ERRNO_KINDS[errno.EDQUOT] = DiskFull


def error_from_os(exc: OSError, *, operation: str, path: Path | str | None = None) -> CacheError:
    """Translate an OSError into the matching CacheError subclass."""
    kind = _ERRNO_KINDS.get(exc.errno or 0, CacheOperationError)
    context: dict[str, Any] = {"operation": operation}
    if path is not None:
        context["path"] = str(path)
    if exc.errno is not None:
        context["errno"] = errno.errorcode.get(exc.errno, exc.errno)
    return kind(exc.strerror or str(exc), context)


def error_from_sqlite(exc: Exception, *, operation: str, path: Path | str | None = None) -> CacheError:
    """Translate a sqlite3 failure on the LRU sidecar into a CacheError."""
    text = str(exc).lower()
    if "readonly" in text or "read-only" in text:
        kind: type[CacheError] = ReadOnlyFilesystem
    elif "disk is full" in text or "database or disk is full" in text:
        kind = DiskFull
    elif "unable to open" in text or "permission" in text:
        kind = PermissionDenied
    else:
        kind = CacheOperationError
    context: dict[str, Any] = {"operation": operation}
    if path is not None:
        context["path"] = str(path)
    return kind(str(exc), context)


# ---------------------------------------------------------------------------
# Per-document scan failures (never escape the index builder)
# ---------------------------------------------------------------------------


class DocumentError(LeylineError):
    """A single document could not be indexed."""

    kind = "document_error"

    def __init__(self, message: str, path: Path, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context)
        self.path = Path(path)

    def to_warning(self) -> ScanWarning:
        return ScanWarning(path=self.path, kind=self.kind, message=self.message)


class ParseFailure(DocumentError):
    """Front-matter is missing, malformed or lacks required fields."""

    kind = "parse_failure"


class UnknownCategory(DocumentError):
    """The category implied by the document's path is not recognised."""

    kind = "unknown_category"


class DuplicateDocument(DocumentError):
    """Another document already uses this id."""

    kind = "duplicate_id"


class WarmingFailure(LeylineError):
    """Background population of the metadata cache failed."""
