"""In-memory metadata cache serving discovery queries."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List

from leyline.config import AppConfig, DEFAULT_SCAN_WORKERS
from leyline.discovery.index import Index
from leyline.discovery.scanner import DocumentIndexBuilder, ScanResult
from leyline.discovery.search import SearchResult, rank, suggest_corrections
from leyline.discovery.stats import PerformanceCounters
from leyline.discovery.term_cache import TermCache
from leyline.errors import CacheError, InvalidCategoryError, WarmingFailure
from leyline.models import Category, DocumentRecord, ScanWarning
from leyline.store.content_store import ContentStore

LOGGER = logging.getLogger(__name__)


class CacheState(str, Enum):
    COLD = "cold"
    WARMING = "warming"
    WARM = "warm"


def _coerce_category(category: Category | str) -> Category:
    if isinstance(category, Category):
        return category
    try:
        return Category(str(category).strip().lower())
    except ValueError:
        raise InvalidCategoryError(
            f"Unknown category '{category}'", {"valid_categories": Category.values()}
        ) from None


class MetadataCache:
    """Serves categories, listings and search from an immutable index snapshot.

    The snapshot reference is the only mutable shared state. It is swapped
    under ``_lock`` and read without it, so readers always see one complete
    scan. ``_scanning`` holds the completion event of the single scan allowed
    to run. It survives :meth:`invalidate`, which only bumps ``_generation``
    so that the running scan's result is discarded instead of published.
    """

    def __init__(
        self,
        docs_root: Path,
        *,
        store: ContentStore | None = None,
        builder: DocumentIndexBuilder | None = None,
        compression: bool = True,
        max_workers: int = DEFAULT_SCAN_WORKERS,
    ) -> None:
        self.docs_root = Path(docs_root)
        self.store = store
        self.term_cache = TermCache(store, compress=compression) if store is not None else None
        self.builder = builder or DocumentIndexBuilder(
            term_cache=self.term_cache, max_workers=max_workers
        )
        self.counters = PerformanceCounters()

        self._lock = threading.Lock()
        self._state = CacheState.COLD
        self._snapshot: ScanResult | None = None
        self._scanning: threading.Event | None = None
        self._warm_thread: threading.Thread | None = None
        self._generation = 0
        self._scan_count = 0
        self._last_scan: datetime | None = None
        self._last_error: WarmingFailure | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, config: AppConfig) -> "MetadataCache":
        """Create a cache for ``config``; a broken cache directory only disables caching."""
        store = None
        if config.cache_enabled:
            try:
                store = ContentStore(
                    config.resolve_cache_dir(), max_size_bytes=config.max_cache_size_bytes
                )
            except CacheError as exc:
                LOGGER.warning("Content cache disabled: %s", exc)
        return cls(
            config.resolve_docs_root(),
            store=store,
            compression=config.compression_enabled,
            max_workers=config.scan_workers,
        )

    def close(self) -> None:
        # An in-flight warm thread is a daemon and is simply abandoned.
        if self.store is not None:
            self.store.close()

    def __enter__(self) -> "MetadataCache":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def is_warm(self) -> bool:
        return self._state is CacheState.WARM

    @property
    def scan_warnings(self) -> List[ScanWarning]:
        snapshot = self._snapshot
        return list(snapshot.warnings) if snapshot is not None else []

    @property
    def last_error(self) -> WarmingFailure | None:
        return self._last_error

    def wait_until_warm(self, timeout: float | None = None) -> bool:
        """Block until the running scan finishes. Returns whether the cache is warm."""
        with self._lock:
            running = self._scanning
        if running is not None:
            running.wait(timeout)
        return self.is_warm

    def warm_in_background(self) -> bool:
        """Start populating the index on a background thread.

        Returns True only if a new warm task was started; False when the cache
        is already warm, a scan is still running (including one made stale by
        :meth:`invalidate`), or the thread could not start.
        """
        with self._lock:
            if self._state is not CacheState.COLD or self._scanning is not None:
                return False
            generation, done = self._begin_scan()
            thread = threading.Thread(
                target=self._warm,
                args=(generation, done),
                name="leyline-cache-warm",
                daemon=True,
            )
            try:
                thread.start()
            except RuntimeError as exc:
                self._state = CacheState.COLD
                self._scanning = None
                done.set()
                LOGGER.warning("Could not start cache warming: %s", exc)
                return False
            self._warm_thread = thread
        LOGGER.debug("Started background cache warming for %s", self.docs_root)
        return True

    def refresh(self) -> ScanResult:
        """Rescan synchronously and publish the result.

        A scan already in flight is waited for first; scans never overlap.
        """
        while True:
            with self._lock:
                running = self._scanning
                if running is None:
                    generation, done = self._begin_scan()
                    break
            running.wait()

        try:
            result = self._scan()
        except Exception:
            self._finish_scan(generation, done, failed=True)
            raise
        self._publish(result, generation)
        self._finish_scan(generation, done)
        return result

    def invalidate(self) -> None:
        """Drop the index and counters; the next query starts from cold."""
        with self._lock:
            self._generation += 1
            self._snapshot = None
            self._state = CacheState.COLD
            self._last_error = None
            self.counters.reset()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def categories(self, *, block: bool = True) -> List[Category]:
        """Categories that have at least one document, in enum order."""
        with self.counters.timed("list_categories"):
            return self._index(block).categories()

    def documents_for_category(
        self, category: Category | str, *, block: bool = True
    ) -> tuple[DocumentRecord, ...]:
        with self.counters.timed("show_category"):
            resolved = _coerce_category(category)
            return self._index(block).documents_for(resolved)

    def get(self, doc_id: str, *, block: bool = True) -> DocumentRecord | None:
        with self.counters.timed("get_document"):
            return self._index(block).by_id.get(doc_id)

    def search(
        self, query: str, *, limit: int | None = None, block: bool = True
    ) -> List[SearchResult]:
        with self.counters.timed("search_content"):
            return rank(self._index(block), query, limit=limit)

    def suggest_corrections(self, query: str, *, limit: int = 3) -> List[str]:
        snapshot = self._snapshot
        if snapshot is None:
            return []
        return suggest_corrections(snapshot.index, query, limit=limit)

    def performance_stats(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        index = snapshot.index if snapshot is not None else Index.empty()
        last_scan = self._last_scan
        return {
            "state": self._state.value,
            "document_count": len(index),
            "category_count": len(index.categories()),
            "memory_usage": self.counters.memory_usage,
            "hit_ratio": self.counters.hit_ratio,
            "hits": self.counters.hits,
            "misses": self.counters.misses,
            "compression_ratio": (
                self.term_cache.compression_ratio if self.term_cache is not None else 1.0
            ),
            "scan_count": self._scan_count,
            "last_scan": last_scan.isoformat() if last_scan else None,
            "skipped_documents": len(snapshot.warnings) if snapshot is not None else 0,
            "scan_stats": snapshot.stats.to_dict() if snapshot is not None else None,
            "operation_stats": self.counters.operation_stats(),
            "performance_summary": self.counters.performance_summary(),
            "store": self._store_stats(),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _index(self, block: bool) -> Index:
        """Return the index to answer from, scanning or waiting as needed."""
        snapshot = self._snapshot
        if snapshot is not None:
            self.counters.record_hit()
            return snapshot.index

        self.counters.record_miss()
        if not block:
            self.warm_in_background()
            snapshot = self._snapshot
            return snapshot.index if snapshot is not None else Index.empty()

        while True:
            with self._lock:
                snapshot = self._snapshot
                if snapshot is not None:
                    return snapshot.index
                running = self._scanning
                if running is None:
                    generation, done = self._begin_scan()

            if running is not None:
                running.wait()
                continue

            try:
                result = self._scan()
            except Exception:
                self._finish_scan(generation, done, failed=True)
                raise
            self._publish(result, generation)
            self._finish_scan(generation, done)
            return result.index

    def _begin_scan(self) -> tuple[int, threading.Event]:
        # Caller holds self._lock and has seen no scan running.
        if self._state is CacheState.COLD:
            self._state = CacheState.WARMING
        done = self._scanning = threading.Event()
        return self._generation, done

    def _finish_scan(self, generation: int, done: threading.Event, *, failed: bool = False) -> None:
        with self._lock:
            if failed and generation == self._generation and self._state is CacheState.WARMING:
                self._state = CacheState.COLD
            if self._scanning is done:
                self._scanning = None
        done.set()

    def _scan(self) -> ScanResult:
        with self.counters.timed("scan"):
            return self.builder.scan(self.docs_root)

    def _publish(self, result: ScanResult, generation: int) -> bool:
        with self._lock:
            if generation != self._generation:
                LOGGER.debug("Discarding scan started before invalidation")
                return False
            self._snapshot = result
            self._state = CacheState.WARM
            self._scan_count += 1
            self._last_scan = datetime.now(timezone.utc)
            self._last_error = None
        self.counters.set_memory_usage(result.index.estimate_memory())
        if result.warnings:
            LOGGER.warning(
                "%d documents skipped while indexing %s", len(result.warnings), self.docs_root
            )
        return True

    def _warm(self, generation: int, done: threading.Event) -> None:
        try:
            result = self._scan()
        except Exception as exc:
            failure = WarmingFailure(
                f"Background warming failed: {exc}", {"docs_root": str(self.docs_root)}
            )
            LOGGER.warning("%s", failure)
            with self._lock:
                if generation == self._generation:
                    self._last_error = failure
            self._finish_scan(generation, done, failed=True)
        else:
            self._publish(result, generation)
            self._finish_scan(generation, done)

    def _store_stats(self) -> Dict[str, Any] | None:
        if self.store is None or self.term_cache is None or not self.term_cache.enabled:
            return None
        try:
            return self.store.stats()
        except CacheError as exc:
            LOGGER.debug("Store statistics unavailable: %s", exc)
            return None
