"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of ResultSync, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Timing of remote operations.

Each monitor owns its own Prometheus registry, so several submissions in one
process never share or re-register collectors.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram

logger = logging.getLogger("resultsync.performance")


@dataclass
class OperationStats:
    count: int = 0
    failures: int = 0
    total_time: float = 0.0
    max_time: float = 0.0

    @property
    def avg_time(self) -> float:
        return self.total_time / self.count if self.count else 0.0


class PerformanceMonitor:
    """Records duration and success of every remote operation."""

    def __init__(self, registry: CollectorRegistry | None = None, logger: logging.Logger | None = None):
        self.registry = registry or CollectorRegistry()
        self.logger = logger or logging.getLogger("resultsync.performance")
        self._lock = threading.Lock()
        self._stats: dict[str, OperationStats] = {}

        self.operation_count = Counter(
            "resultsync_remote_operations",
            "Number of remote operations",
            ["operation", "outcome"],
            registry=self.registry,
        )
        self.operation_time = Histogram(
            "resultsync_remote_operation_seconds",
            "Remote operation duration in seconds",
            ["operation"],
            registry=self.registry,
        )

    def record(self, operation: str, duration: float, success: bool = True) -> None:
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.count += 1
            stats.total_time += duration
            stats.max_time = max(stats.max_time, duration)
            if not success:
                stats.failures += 1

        self.operation_count.labels(operation=operation, outcome="success" if success else "failure").inc()
        self.operation_time.labels(operation=operation).observe(duration)
        self.logger.debug(f"{operation} took {duration:.3f}s ({'ok' if success else 'failed'})")

    @contextmanager
    def track(self, operation: str):
        """Time the enclosed block; an exception counts as a failure and propagates."""
        start_time = time.perf_counter()
        try:
            yield
        except BaseException:
            self.record(operation, time.perf_counter() - start_time, success=False)
            raise
        self.record(operation, time.perf_counter() - start_time, success=True)

    def summary(self) -> dict[str, Any]:
        """
        Per-operation statistics.

        Returns:
            ``{"operations": {name: {count, failures, total_time, avg_time, max_time}},
            "summary": {total_operations, total_failures, total_time}}``
        """
        with self._lock:
            operations = {
                name: {
                    "count": stats.count,
                    "failures": stats.failures,
                    "total_time": round(stats.total_time, 6),
                    "avg_time": round(stats.avg_time, 6),
                    "max_time": round(stats.max_time, 6),
                }
                for name, stats in self._stats.items()
            }
        return {
            "operations": operations,
            "summary": {
                "total_operations": sum(op["count"] for op in operations.values()),
                "total_failures": sum(op["failures"] for op in operations.values()),
                "total_time": round(sum(op["total_time"] for op in operations.values()), 6),
            },
        }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
