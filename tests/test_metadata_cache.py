"""Tests for MetadataCache."""

from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from leyline.config import AppConfig
from leyline.discovery.metadata_cache import CacheState, MetadataCache
from leyline.discovery.scanner import DocumentIndexBuilder, ScanResult
from leyline.errors import InvalidCategoryError, PermissionDenied, WarmingFailure
from leyline.models import Category
from leyline.store.content_store import ContentStore


class GatedBuilder:
    """Builder whose scans block until released."""

    def __init__(self, result: ScanResult, *, fail_first: bool = False) -> None:
        self.result = result
        self.fail_first = fail_first
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def scan(self, root: Path) -> ScanResult:
        with self._lock:
            self.calls += 1
            call = self.calls
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self.started.set()
            assert self.release.wait(5), "scan was never released"
            if self.fail_first and call == 1:
                raise RuntimeError("disk vanished")
            return self.result
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def scan_result(corpus: Path) -> ScanResult:
    return DocumentIndexBuilder().scan(corpus)


@pytest.fixture
def cache(corpus: Path):
    metadata_cache = MetadataCache(corpus)
    yield metadata_cache
    metadata_cache.close()


class TestWarming:
    """Test background warming."""

    def test_starts_cold(self, cache: MetadataCache) -> None:
        assert cache.state is CacheState.COLD
        assert not cache.is_warm

    def test_second_warm_is_rejected(self, corpus: Path, scan_result: ScanResult) -> None:
        builder = GatedBuilder(scan_result)
        cache = MetadataCache(corpus, builder=builder)

        assert cache.warm_in_background() is True
        assert builder.started.wait(5)
        assert cache.warm_in_background() is False
        assert cache.state is CacheState.WARMING

        builder.release.set()
        assert cache.wait_until_warm(5) is True
        assert cache.warm_in_background() is False
        assert builder.calls == 1

    def test_warm_populates_index(self, cache: MetadataCache) -> None:
        cache.warm_in_background()

        assert cache.wait_until_warm(5)
        assert cache.categories(block=False) == [Category.GO, Category.RUST]

    def test_warm_failure_returns_to_cold(self, corpus: Path, caplog) -> None:
        builder = MagicMock()
        builder.scan.side_effect = RuntimeError("disk vanished")
        cache = MetadataCache(corpus, builder=builder)

        with caplog.at_level("WARNING"):
            assert cache.warm_in_background() is True
            assert cache.wait_until_warm(5) is False

        assert cache.state is CacheState.COLD
        assert isinstance(cache.last_error, WarmingFailure)
        assert "Background warming failed" in caplog.text
        assert cache.warm_in_background() is True
        cache.wait_until_warm(5)

    def test_thread_start_failure(self, cache: MetadataCache) -> None:
        with patch(
            "leyline.discovery.metadata_cache.threading.Thread.start",
            side_effect=RuntimeError("can't start new thread"),
        ):
            assert cache.warm_in_background() is False

        assert cache.state is CacheState.COLD

    def test_wait_until_warm_on_cold_cache(self, cache: MetadataCache) -> None:
        assert cache.wait_until_warm(0.1) is False


class TestBlocking:
    """Test block=True / block=False query semantics."""

    def test_blocking_query_on_cold_cache_scans(self, cache: MetadataCache) -> None:
        assert cache.categories() == [Category.GO, Category.RUST]
        assert cache.state is CacheState.WARM
        assert cache.counters.misses == 1

    def test_non_blocking_query_on_cold_cache(self, corpus: Path, scan_result) -> None:
        builder = GatedBuilder(scan_result)
        cache = MetadataCache(corpus, builder=builder)

        assert cache.categories(block=False) == []
        assert cache.state is CacheState.WARMING

        builder.release.set()
        assert cache.wait_until_warm(5)
        assert cache.categories(block=False) == [Category.GO, Category.RUST]

    def test_blocking_query_waits_for_warm_task(self, corpus: Path, scan_result) -> None:
        builder = GatedBuilder(scan_result)
        cache = MetadataCache(corpus, builder=builder)
        cache.warm_in_background()
        assert builder.started.wait(5)

        timer = threading.Timer(0.05, builder.release.set)
        timer.start()
        try:
            documents = cache.documents_for_category(Category.GO)
        finally:
            timer.cancel()

        assert len(documents) == 3
        assert builder.calls == 1

    def test_blocking_query_rescans_after_failed_warm(self, corpus: Path, scan_result) -> None:
        builder = GatedBuilder(scan_result, fail_first=True)
        cache = MetadataCache(corpus, builder=builder)
        cache.warm_in_background()
        assert builder.started.wait(5)

        timer = threading.Timer(0.05, builder.release.set)
        timer.start()
        try:
            found = cache.categories()
        finally:
            timer.cancel()

        assert found == [Category.GO, Category.RUST]
        assert builder.calls == 2
        assert cache.state is CacheState.WARM

    def test_blocking_scan_failure_propagates(self, corpus: Path) -> None:
        builder = MagicMock()
        builder.scan.side_effect = RuntimeError("boom")
        cache = MetadataCache(corpus, builder=builder)

        with pytest.raises(RuntimeError):
            cache.categories()

        assert cache.state is CacheState.COLD


class TestQueries:
    """Test the query surface against a real corpus."""

    def test_documents_for_category(self, cache: MetadataCache) -> None:
        ids = [record.id for record in cache.documents_for_category(Category.GO)]

        assert ids == ["error-wrapping", "interface-design", "package-layout"]

    def test_category_by_name(self, cache: MetadataCache) -> None:
        assert len(cache.documents_for_category("Rust")) == 2

    def test_recognised_empty_category(self, cache: MetadataCache) -> None:
        assert cache.documents_for_category("web") == ()

    def test_unknown_category_raises(self, cache: MetadataCache) -> None:
        with pytest.raises(InvalidCategoryError) as excinfo:
            cache.documents_for_category("cobol")

        assert isinstance(excinfo.value, ValueError)
        assert "go" in excinfo.value.context["valid_categories"]

    def test_get(self, cache: MetadataCache) -> None:
        assert cache.get("result-handling").category is Category.RUST
        assert cache.get("missing") is None

    def test_search_title_before_body(self, cache: MetadataCache) -> None:
        results = cache.search("error errors")

        ids = [result.record.id for result in results]
        assert ids[0] == "error-wrapping"
        assert set(ids) == {"error-wrapping", "package-layout", "result-handling"}
        assert results[0].score > 0.5 > results[-1].score

    def test_search_limit(self, cache: MetadataCache) -> None:
        assert len(cache.search("errors", limit=1)) == 1

    def test_search_unmatched(self, cache: MetadataCache) -> None:
        assert cache.search("kubernetes") == []

    def test_suggest_corrections(self, cache: MetadataCache) -> None:
        assert cache.suggest_corrections("interfaces") == []
        cache.categories()

        assert "interfaces" in cache.suggest_corrections("interfacs")

    def test_scan_warnings(self, cache: MetadataCache) -> None:
        cache.categories()

        assert [w.kind for w in cache.scan_warnings] == ["parse_failure"]


class TestRefreshAndInvalidate:
    def test_refresh_picks_up_new_documents(self, cache, corpus: Path, make_document) -> None:
        assert cache.get("new-doc") is None
        make_document(corpus, "bindings/categories/python/new-doc.md", "new-doc")

        cache.refresh()

        assert cache.get("new-doc") is not None
        assert Category.PYTHON in cache.categories()

    def test_invalidate(self, cache: MetadataCache) -> None:
        cache.categories()
        cache.categories()

        cache.invalidate()

        assert cache.state is CacheState.COLD
        assert cache.counters.hits == cache.counters.misses == 0
        assert cache.performance_stats()["document_count"] == 0

    def test_stale_warm_is_discarded(self, corpus: Path, scan_result) -> None:
        builder = GatedBuilder(scan_result)
        cache = MetadataCache(corpus, builder=builder)
        cache.warm_in_background()
        assert builder.started.wait(5)
        thread = cache._warm_thread

        cache.invalidate()
        builder.release.set()
        thread.join(5)

        assert cache.state is CacheState.COLD
        assert cache.scan_warnings == []

    def test_warm_after_invalidate_waits_for_stale_scan(self, corpus: Path, scan_result) -> None:
        """Invalidating mid-warm never lets a second scan run alongside the first."""
        builder = GatedBuilder(scan_result)
        cache = MetadataCache(corpus, builder=builder)
        cache.warm_in_background()
        assert builder.started.wait(5)
        thread = cache._warm_thread

        cache.invalidate()
        assert cache.warm_in_background() is False
        assert cache.categories(block=False) == []

        builder.release.set()
        thread.join(5)
        assert cache.categories() == [Category.GO, Category.RUST]

        assert builder.max_active == 1
        assert builder.calls == 2

    def test_refresh_waits_for_running_warm(self, corpus: Path, scan_result) -> None:
        builder = GatedBuilder(scan_result)
        cache = MetadataCache(corpus, builder=builder)
        cache.warm_in_background()
        assert builder.started.wait(5)

        timer = threading.Timer(0.05, builder.release.set)
        timer.start()
        try:
            cache.refresh()
        finally:
            timer.cancel()

        assert cache.state is CacheState.WARM
        assert builder.max_active == 1
        assert builder.calls == 2

    def test_stale_warm_failure_is_not_reported(self, corpus: Path, scan_result) -> None:
        builder = GatedBuilder(scan_result, fail_first=True)
        cache = MetadataCache(corpus, builder=builder)
        cache.warm_in_background()
        assert builder.started.wait(5)
        thread = cache._warm_thread

        cache.invalidate()
        builder.release.set()
        thread.join(5)

        assert cache.last_error is None
        assert cache.state is CacheState.COLD


class TestPerformanceStats:
    """Test statistics reporting."""

    def test_keys(self, cache: MetadataCache) -> None:
        cache.categories()
        stats = cache.performance_stats()

        for key in (
            "document_count",
            "memory_usage",
            "hit_ratio",
            "compression_ratio",
            "operation_stats",
            "state",
            "hits",
            "misses",
            "category_count",
            "scan_count",
            "last_scan",
            "skipped_documents",
            "performance_summary",
            "store",
        ):
            assert key in stats

    def test_values_after_queries(self, cache: MetadataCache) -> None:
        cache.categories()
        cache.search("errors")
        cache.documents_for_category("go")

        stats = cache.performance_stats()

        assert stats["state"] == "warm"
        assert stats["document_count"] == 5
        assert stats["category_count"] == 2
        assert stats["skipped_documents"] == 1
        assert stats["memory_usage"] > 0
        assert stats["hit_ratio"] == pytest.approx(2 / 3)
        assert stats["compression_ratio"] == 1.0
        assert stats["scan_count"] == 1
        assert stats["last_scan"] is not None
        assert stats["store"] is None
        operations = stats["operation_stats"]
        assert {"list_categories", "search_content", "show_category", "scan"} <= set(operations)
        for name in ("list_categories", "search_content", "show_category"):
            assert {"count", "avg_ms", "min_ms", "max_ms", "p95_ms", "total_ms"} <= set(
                operations[name]
            )

    def test_stats_is_not_a_lookup(self, cache: MetadataCache) -> None:
        cache.performance_stats()

        assert cache.counters.hits == cache.counters.misses == 0
        assert cache.performance_stats()["hit_ratio"] == 0.0


class TestOpen:
    """Test construction from configuration."""

    def test_open_with_store(self, corpus: Path, tmp_path: Path) -> None:
        config = AppConfig(docs_root=corpus, cache_dir=tmp_path / "cache")

        with MetadataCache.open(config) as cache:
            assert cache.store is not None
            cache.categories()
            stats = cache.performance_stats()

        assert stats["store"]["file_count"] == 5
        assert stats["compression_ratio"] > 0

    def test_term_artifacts_reused_across_processes(self, corpus: Path, tmp_path: Path) -> None:
        config = AppConfig(docs_root=corpus, cache_dir=tmp_path / "cache")
        with MetadataCache.open(config) as first:
            first.categories()

        with MetadataCache.open(config) as second:
            second.categories()
            assert second.term_cache.hits == 5
            assert second.search("ownership")[0].record.id == "ownership-patterns"

    def test_open_without_cache(self, corpus: Path, tmp_path: Path) -> None:
        config = AppConfig(docs_root=corpus, cache_dir=tmp_path / "cache", cache_enabled=False)

        with MetadataCache.open(config) as cache:
            assert cache.store is None
            assert len(cache.categories()) == 2

        assert not (tmp_path / "cache").exists()

    def test_broken_cache_dir_disables_caching(self, corpus: Path, tmp_path: Path) -> None:
        config = AppConfig(docs_root=corpus, cache_dir=tmp_path / "cache")

        with patch(
            "leyline.discovery.metadata_cache.ContentStore",
            side_effect=PermissionDenied("denied"),
        ):
            cache = MetadataCache.open(config)

        assert cache.store is None
        assert cache.categories() == [Category.GO, Category.RUST]

    def test_explicit_store(self, corpus: Path, tmp_path: Path) -> None:
        store = ContentStore(tmp_path / "cache")
        with MetadataCache(corpus, store=store, compression=False) as cache:
            assert cache.term_cache is not None
            assert cache.term_cache.compress is False
