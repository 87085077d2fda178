"""Persist precomputed search terms in the content store."""

from __future__ import annotations

import json
import logging
import threading
import zlib

from leyline.discovery.index import DocumentTerms
from leyline.errors import CacheError, StorageFull
from leyline.store.content_store import ContentStore

LOGGER = logging.getLogger(__name__)

TERMS_FORMAT = "v2"

_PLAIN = b"J"
_COMPRESSED = b"Z"


class TermCache:
    """Best-effort cache of DocumentTerms keyed by source content digest.

    Store failures never reach the caller: a full blob is skipped, and any
    other CacheError disables the cache for the rest of the process.
    """

    def __init__(self, store: ContentStore, *, compress: bool = True) -> None:
        self.store = store
        self.compress = compress
        self.enabled = True
        self.hits = 0
        self.misses = 0
        self._raw_bytes = 0
        self._stored_bytes = 0
        self._lock = threading.Lock()

    @staticmethod
    def ref_name(content_digest: str) -> str:
        return f"terms/{TERMS_FORMAT}/{content_digest}"

    @property
    def compression_ratio(self) -> float:
        """Raw artifact bytes per stored byte; 1.0 until an artifact is seen."""
        with self._lock:
            if not self._stored_bytes:
                return 1.0
            return self._raw_bytes / self._stored_bytes

    def load(self, content_digest: str) -> DocumentTerms | None:
        if not self.enabled:
            return None
        try:
            artifact = self.store.resolve(self.ref_name(content_digest))
            blob = self.store.get(artifact) if artifact else None
        except CacheError as exc:
            self._disable(exc)
            return None

        if blob is None:
            self._count(hit=False)
            return None

        try:
            raw = self._decode(blob)
            terms = DocumentTerms.from_dict(json.loads(raw))
        except (zlib.error, ValueError, KeyError, TypeError, AttributeError) as exc:
            LOGGER.debug("Ignoring unreadable term artifact for %s: %s", content_digest, exc)
            self._count(hit=False)
            return None

        self._count(hit=True, raw=len(raw), stored=len(blob))
        return terms

    def save(self, content_digest: str, terms: DocumentTerms) -> None:
        if not self.enabled:
            return
        raw = json.dumps(terms.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")
        blob = _COMPRESSED + zlib.compress(raw) if self.compress else _PLAIN + raw
        try:
            artifact = self.store.put(blob)
            self.store.link(self.ref_name(content_digest), artifact)
        except StorageFull as exc:
            LOGGER.debug("Skipping term artifact for %s: %s", content_digest, exc)
            return
        except CacheError as exc:
            self._disable(exc)
            return
        with self._lock:
            self._raw_bytes += len(raw)
            self._stored_bytes += len(blob)

    def _decode(self, blob: bytes) -> bytes:
        marker, payload = blob[:1], blob[1:]
        if marker == _COMPRESSED:
            return zlib.decompress(payload)
        if marker == _PLAIN:
            return payload
        raise ValueError(f"unknown artifact marker {marker!r}")

    def _count(self, *, hit: bool, raw: int = 0, stored: int = 0) -> None:
        with self._lock:
            if hit:
                self.hits += 1
                self._raw_bytes += raw
                self._stored_bytes += stored
            else:
                self.misses += 1

    def _disable(self, exc: CacheError) -> None:
        with self._lock:
            if not self.enabled:
                return
            self.enabled = False
        LOGGER.warning("Content cache unavailable, continuing without it: %s", exc)
