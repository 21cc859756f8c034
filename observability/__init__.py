"""Observability package for docatlas."""

from .metrics import (
    MetricsCollector,
    SearchMetrics,
    IndexingMetrics,
    search_metrics,
    indexing_metrics
)
from .logging import setup_logging, log_performance

__all__ = [
    'MetricsCollector',
    'SearchMetrics',
    'IndexingMetrics',
    'search_metrics',
    'indexing_metrics',
    'setup_logging',
    'log_performance'
]
