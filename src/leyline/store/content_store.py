"""Content-addressable blob store with a size-bounded LRU sidecar.

Layout: ``{cache_dir}/content/{digest[:2]}/{digest[2:]}``. Access order and
sizes live in ``{cache_dir}/index.sqlite3`` so that eviction never has to walk
the content tree.
"""

from __future__ import annotations

import logging
import os
import re
import sqlite3
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List

from leyline.config import DEFAULT_MAX_CACHE_SIZE
from leyline.errors import StorageFull, error_from_os, error_from_sqlite
from leyline.utils.files import compute_digest

LOGGER = logging.getLogger(__name__)

SIDECAR_NAME = "index.sqlite3"
_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


class ContentStore:
    """Persistence layer for immutable blobs keyed by their SHA256 digest."""

    def __init__(self, cache_dir: Path, *, max_size_bytes: int = DEFAULT_MAX_CACHE_SIZE) -> None:
        self.cache_dir = Path(cache_dir).expanduser()
        self.content_dir = self.cache_dir / "content"
        self.max_size_bytes = max_size_bytes
        self._lock = threading.RLock()

        with self._os_errors("open", self.content_dir):
            self.content_dir.mkdir(parents=True, exist_ok=True)

        sidecar = self.cache_dir / SIDECAR_NAME
        try:
            self._conn = sqlite3.connect(sidecar, check_same_thread=False, timeout=10.0)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise error_from_sqlite(exc, operation="open", path=sidecar) from exc
        self._access_seq = self._conn.execute(
            "SELECT COALESCE(MAX(access_seq), 0) FROM blobs"
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "ContentStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    @contextmanager
    def _os_errors(self, operation: str, path: Path) -> Iterator[None]:
        try:
            yield
        except OSError as exc:
            raise error_from_os(exc, operation=operation, path=path) from exc

    @contextmanager
    def _sidecar(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            with self.transaction() as conn:
                yield conn
        except sqlite3.Error as exc:
            raise error_from_sqlite(
                exc, operation=operation, path=self.cache_dir / SIDECAR_NAME
            ) from exc

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS blobs (
                    digest TEXT PRIMARY KEY,
                    size INTEGER NOT NULL,
                    last_access REAL NOT NULL,
                    access_seq INTEGER NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_blobs_access_seq
                    ON blobs(access_seq)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS refs (
                    name TEXT PRIMARY KEY,
                    digest TEXT NOT NULL
                )
                """
            )

    # ------------------------------------------------------------------
    # Blob operations
    # ------------------------------------------------------------------

    def path_for(self, digest: str) -> Path:
        return self.content_dir / digest[:2] / digest[2:]

    def put(self, data: bytes) -> str:
        """Store ``data`` and return its digest.

        Writing identical bytes again only refreshes the blob's LRU position.

        Raises:
            StorageFull: ``data`` alone exceeds ``max_size_bytes``.
            PermissionDenied, DiskFull, ReadOnlyFilesystem, CacheOperationError:
                the blob could not be written.
        """
        size = len(data)
        if size > self.max_size_bytes:
            raise StorageFull(
                "Blob exceeds the cache size bound",
                {"size": size, "max_size_bytes": self.max_size_bytes},
            )

        digest = compute_digest(bytes(data))
        path = self.path_for(digest)
        with self._lock:
            if self._is_indexed(digest):
                if path.exists():
                    self._touch(digest)
                    return digest
                # Row outlived its file; rewrite the bytes
                self._forget(digest)

            self._evict_for(size)
            self._write_atomic(path, data)
            with self._sidecar("put") as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO blobs(digest, size, last_access, access_seq)
                    VALUES (?, ?, ?, ?)
                    """,
                    (digest, size, time.time(), self._next_seq()),
                )
        LOGGER.debug("Stored blob %s (%d bytes)", digest, size)
        return digest

    def get(self, digest: str) -> bytes | None:
        """Return the blob stored under ``digest``, or None when it is not cached."""
        if not _DIGEST_RE.match(digest or ""):
            return None

        path = self.path_for(digest)
        with self._lock:
            try:
                data = path.read_bytes()
            except FileNotFoundError:
                self._forget(digest)
                return None
            except OSError as exc:
                raise error_from_os(exc, operation="get", path=path) from exc

            if compute_digest(data) != digest:
                LOGGER.warning("Discarding corrupt blob %s", digest)
                self._remove(digest)
                return None

            if self._is_indexed(digest):
                self._touch(digest)
            elif self.total_size() + len(data) <= self.max_size_bytes:
                # Present on disk but unknown to the sidecar (e.g. after a crash)
                with self._sidecar("get") as conn:
                    conn.execute(
                        """
                        INSERT INTO blobs(digest, size, last_access, access_seq)
                        VALUES (?, ?, ?, ?)
                        """,
                        (digest, len(data), time.time(), self._next_seq()),
                    )
        return data

    def contains(self, digest: str) -> bool:
        if not _DIGEST_RE.match(digest or ""):
            return False
        with self._lock:
            return self._is_indexed(digest) and self.path_for(digest).exists()

    def delete(self, digest: str) -> bool:
        """Delete a blob. Returns True if it existed."""
        if not _DIGEST_RE.match(digest or ""):
            return False
        with self._lock:
            existed = self._is_indexed(digest) or self.path_for(digest).exists()
            self._remove(digest)
        return existed

    def clear(self) -> int:
        """Remove every blob and reference. Returns the number of blobs removed."""
        with self._lock:
            digests = [row["digest"] for row in self._conn.execute("SELECT digest FROM blobs")]
            for digest in digests:
                self._remove(digest)
            with self._sidecar("clear") as conn:
                conn.execute("DELETE FROM refs")
        return len(digests)

    # ------------------------------------------------------------------
    # Named references
    # ------------------------------------------------------------------

    def link(self, name: str, digest: str) -> None:
        """Point ``name`` at a stored blob."""
        with self._lock, self._sidecar("link") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO refs(name, digest) VALUES (?, ?)", (name, digest)
            )

    def resolve(self, name: str) -> str | None:
        """Return the digest ``name`` points at, if that blob is still stored."""
        with self._lock:
            row = self._conn.execute("SELECT digest FROM refs WHERE name = ?", (name,)).fetchone()
            if row is None:
                return None
            if not self._is_indexed(row["digest"]):
                with self._sidecar("resolve") as conn:
                    conn.execute("DELETE FROM refs WHERE name = ?", (name,))
                return None
            return row["digest"]

    # ------------------------------------------------------------------
    # Accounting
    # ------------------------------------------------------------------

    def total_size(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COALESCE(SUM(size), 0) FROM blobs").fetchone()[0]

    def __len__(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM blobs").fetchone()[0]

    def stats(self) -> Dict[str, Any]:
        size = self.total_size()
        return {
            "path": str(self.cache_dir),
            "size": size,
            "file_count": len(self),
            "max_size": self.max_size_bytes,
            "utilization_percent": round(size * 100.0 / self.max_size_bytes, 1),
        }

    def health(self) -> List[Dict[str, Any]]:
        """Report problems that would force callers to run without the cache."""
        issues: List[Dict[str, Any]] = []
        if not self.content_dir.is_dir():
            issues.append({"type": "missing_directory", "path": str(self.content_dir)})
            return issues
        if not os.access(self.content_dir, os.R_OK):
            issues.append({"type": "not_readable", "path": str(self.content_dir)})
        if not os.access(self.content_dir, os.W_OK):
            issues.append({"type": "not_writable", "path": str(self.content_dir)})
        size = self.total_size()
        if size > self.max_size_bytes:
            issues.append({"type": "over_budget", "size": size, "max_size": self.max_size_bytes})
        return issues

    def prune_missing(self) -> int:
        """Remove sidecar rows whose blob files no longer exist."""
        with self._lock:
            rows = self._conn.execute("SELECT digest FROM blobs").fetchall()
            missing = [row["digest"] for row in rows if not self.path_for(row["digest"]).exists()]
            with self._sidecar("prune") as conn:
                for digest in missing:
                    conn.execute("DELETE FROM blobs WHERE digest = ?", (digest,))
        return len(missing)

    # ------------------------------------------------------------------
    # Internals (callers hold self._lock)
    # ------------------------------------------------------------------

    def _next_seq(self) -> int:
        self._access_seq += 1
        return self._access_seq

    def _is_indexed(self, digest: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM blobs WHERE digest = ?", (digest,)).fetchone()
        return row is not None

    def _touch(self, digest: str) -> None:
        with self._sidecar("touch") as conn:
            conn.execute(
                "UPDATE blobs SET last_access = ?, access_seq = ? WHERE digest = ?",
                (time.time(), self._next_seq(), digest),
            )

    def _forget(self, digest: str) -> None:
        with self._sidecar("forget") as conn:
            conn.execute("DELETE FROM blobs WHERE digest = ?", (digest,))

    def _remove(self, digest: str) -> None:
        path = self.path_for(digest)
        with self._os_errors("delete", path):
            path.unlink(missing_ok=True)
        self._forget(digest)

    def _evict_for(self, incoming: int) -> List[str]:
        """Evict least-recently-used blobs until ``incoming`` bytes fit."""
        total = self.total_size()
        evicted: List[str] = []
        if total + incoming <= self.max_size_bytes:
            return evicted

        rows = self._conn.execute("SELECT digest, size FROM blobs ORDER BY access_seq").fetchall()
        for row in rows:
            if total + incoming <= self.max_size_bytes:
                break
            self._remove(row["digest"])
            total -= row["size"]
            evicted.append(row["digest"])
            LOGGER.debug("Evicted blob %s (%d bytes)", row["digest"], row["size"])
        return evicted

    def _write_atomic(self, path: Path, data: bytes) -> None:
        with self._os_errors("put", path):
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

