from __future__ import annotations
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from collections import defaultdict, deque
import threading


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MetricPoint:
    """A single metric data point."""
    timestamp: datetime
    value: float
    attributes: Dict[str, Any] = field(default_factory=dict)

    def matches(self, where: Optional[Dict[str, Any]]) -> bool:
        return not where or all(self.attributes.get(k) == v for k, v in where.items())


class MetricsCollector:
    """Collects metric values within a retention window.

    Aggregates can be narrowed to points whose attributes match ``where``,
    e.g. ``{"tier": "exact"}`` or ``{"table": "api_spec"}``.
    """

    def __init__(self, name: str, retention_period: timedelta = timedelta(hours=24)):
        self.name = name
        self.retention_period = retention_period
        self.data_points: deque[MetricPoint] = deque()
        self._lock = threading.Lock()

    def record(self, value: float, attributes: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            self.data_points.append(MetricPoint(_utcnow(), value, attributes or {}))
            cutoff = _utcnow() - self.retention_period
            while self.data_points and self.data_points[0].timestamp < cutoff:
                self.data_points.popleft()

    def points(self, duration: timedelta, where: Optional[Dict[str, Any]] = None) -> List[MetricPoint]:
        cutoff = _utcnow() - duration
        with self._lock:
            return [p for p in self.data_points if p.timestamp >= cutoff and p.matches(where)]

    def total(self, duration: timedelta, where: Optional[Dict[str, Any]] = None) -> float:
        return sum(p.value for p in self.points(duration, where))

    def mean(self, duration: timedelta, where: Optional[Dict[str, Any]] = None) -> float:
        points = self.points(duration, where)
        if not points:
            return 0.0
        return sum(p.value for p in points) / len(points)


class SearchMetrics:
    """Query engine calls, keyed by the matching tier that answered them.

    Tiers are ``exact``, ``fuzzy``, ``regex`` (API file search only) and
    ``none`` (rejected before matching).
    """

    def __init__(self):
        self.query_duration = MetricsCollector("search.query_duration")
        self.result_count = MetricsCollector("search.result_count")
        self.error_count = MetricsCollector("search.error_count")

        self.tiers = defaultdict(int)
        self._lock = threading.Lock()

    def record_search_query(
        self,
        tier: str,
        duration: float,
        result_count: int,
        error: Optional[str] = None
    ) -> None:
        attributes = {"tier": tier}
        self.query_duration.record(duration, attributes)
        self.result_count.record(result_count, attributes)
        if error:
            self.error_count.record(1.0, {**attributes, "error_type": error})

        with self._lock:
            self.tiers[tier] += 1

    def get_query_stats(self, duration: timedelta = timedelta(minutes=5)) -> Dict[str, Any]:
        """Query totals for the window, with a per-tier latency breakdown."""
        total = len(self.query_duration.points(duration))
        by_tier = {
            tier: {
                "queries": len(self.query_duration.points(duration, {"tier": tier})),
                "avg_duration": self.query_duration.mean(duration, {"tier": tier}),
                "avg_results": self.result_count.mean(duration, {"tier": tier}),
            }
            for tier in self.get_tier_distribution()
        }
        return {
            "total_queries": total,
            "avg_duration": self.query_duration.mean(duration),
            "avg_results": self.result_count.mean(duration),
            "error_rate": self.error_count.total(duration) / max(1, total),
            "by_tier": by_tier,
        }

    def get_tier_distribution(self) -> Dict[str, int]:
        with self._lock:
            return dict(self.tiers)


class IndexingMetrics:
    """Row counts and write times per exported table."""

    def __init__(self):
        self.rows_inserted = MetricsCollector("indexing.rows_inserted")
        self.rows_failed = MetricsCollector("indexing.rows_failed")
        self.write_duration = MetricsCollector("indexing.write_duration")
        self.tables: set = set()
        self._lock = threading.Lock()

    def record_table(self, table: str, inserted: int, failed: int, duration: float) -> None:
        attributes = {"table": table}
        self.rows_inserted.record(inserted, attributes)
        self.rows_failed.record(failed, attributes)
        self.write_duration.record(duration, attributes)
        with self._lock:
            self.tables.add(table)

    def get_indexing_stats(self, duration: timedelta = timedelta(hours=1)) -> Dict[str, Any]:
        with self._lock:
            tables = sorted(self.tables)
        return {
            table: {
                "rows_inserted": self.rows_inserted.total(duration, {"table": table}),
                "rows_failed": self.rows_failed.total(duration, {"table": table}),
                "avg_write_duration": self.write_duration.mean(duration, {"table": table}),
            }
            for table in tables
        }


search_metrics = SearchMetrics()
indexing_metrics = IndexingMetrics()
