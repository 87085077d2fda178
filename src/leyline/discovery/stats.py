"""Thread-safe performance counters for the metadata cache."""

from __future__ import annotations

import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator

import numpy as np

RECENT_SAMPLES = 100
TARGET_OPERATION_MS = 1000.0

_NS_PER_MS = 1_000_000


@dataclass(slots=True)
class OperationStats:
    count: int = 0
    total_ns: int = 0
    min_ns: int | None = None
    max_ns: int = 0
    recent: deque = field(default_factory=lambda: deque(maxlen=RECENT_SAMPLES))

    def record(self, duration_ns: int) -> None:
        self.count += 1
        self.total_ns += duration_ns
        self.min_ns = duration_ns if self.min_ns is None else min(self.min_ns, duration_ns)
        self.max_ns = max(self.max_ns, duration_ns)
        self.recent.append(duration_ns)

    def summary(self) -> Dict[str, float]:
        avg_ns = self.total_ns / self.count if self.count else 0.0
        samples = np.fromiter(self.recent, dtype=np.int64, count=len(self.recent))
        p50 = float(np.percentile(samples, 50)) if samples.size else 0.0
        p95 = float(np.percentile(samples, 95)) if samples.size else 0.0
        return {
            "count": self.count,
            "total_ms": self.total_ns / _NS_PER_MS,
            "avg_ms": avg_ns / _NS_PER_MS,
            "min_ms": (self.min_ns or 0) / _NS_PER_MS,
            "max_ms": self.max_ns / _NS_PER_MS,
            "p50_ms": p50 / _NS_PER_MS,
            "p95_ms": p95 / _NS_PER_MS,
        }


class PerformanceCounters:
    """Lookup hit/miss counts and per-operation latency.

    Timings use ``time.perf_counter_ns`` so wall-clock adjustments cannot
    skew them. Counters only observe; nothing reads them to make decisions.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.memory_usage = 0
        self._operations: Dict[str, OperationStats] = {}

    def record_hit(self) -> None:
        with self._lock:
            self.hits += 1

    def record_miss(self) -> None:
        with self._lock:
            self.misses += 1

    def record_timing(self, operation: str, duration_ns: int) -> None:
        with self._lock:
            self._operations.setdefault(operation, OperationStats()).record(duration_ns)

    @contextmanager
    def timed(self, operation: str) -> Iterator[None]:
        start = time.perf_counter_ns()
        try:
            yield
        finally:
            self.record_timing(operation, time.perf_counter_ns() - start)

    def set_memory_usage(self, size: int) -> None:
        with self._lock:
            self.memory_usage = size

    @property
    def hit_ratio(self) -> float:
        with self._lock:
            total = self.hits + self.misses
            return self.hits / total if total else 0.0

    def operation_stats(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {name: stats.summary() for name, stats in sorted(self._operations.items())}

    def performance_summary(self) -> Dict[str, float | int | bool]:
        operations = self.operation_stats()
        total_count = sum(int(stats["count"]) for stats in operations.values())
        total_ms = sum(stats["total_ms"] for stats in operations.values())
        return {
            "total_operations": total_count,
            "total_operation_time_ms": total_ms,
            "avg_operation_time_ms": total_ms / total_count if total_count else 0.0,
            "performance_target_met": all(
                stats["avg_ms"] < TARGET_OPERATION_MS for stats in operations.values()
            ),
        }

    def reset(self) -> None:
        with self._lock:
            self.hits = 0
            self.misses = 0
            self.memory_usage = 0
            self._operations.clear()
