import json
import logging
import threading

import pytest

from observability.logging import ColoredFormatter, JSONFormatter, log_performance, setup_logging
from observability.metrics import IndexingMetrics, MetricsCollector, SearchMetrics


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def _record(msg="hello %s", args=("world",), **extra):
    record = logging.LogRecord("docatlas.test", logging.INFO, __file__, 10, msg, args, None)
    record.__dict__.update(extra)
    return record


class TestFormatters:

    def test_json_formatter_merges_extras(self):
        entry = json.loads(JSONFormatter("docatlas-mcp").format(_record(table="api_spec")))
        assert entry["message"] == "hello world"
        assert entry["service"] == "docatlas-mcp"
        assert entry["level"] == "INFO"
        assert entry["table"] == "api_spec"
        assert "msg" not in entry and "args" not in entry

    def test_colored_formatter_without_colors(self):
        line = ColoredFormatter(use_colors=False).format(_record())
        assert line.endswith("| INFO     | docatlas.test | hello world")
        assert "\033[" not in line

    def test_colored_formatter_with_colors(self):
        line = ColoredFormatter(use_colors=True).format(_record())
        assert line.startswith(ColoredFormatter.COLORS["INFO"])
        assert line.endswith(ColoredFormatter.RESET)


def test_setup_logging_writes_json_file(tmp_path, restore_root_logger):
    log_file = tmp_path / "logs" / "index.log"
    setup_logging(level="debug", service_name="docatlas-index", log_file=log_file)

    logging.getLogger("pipelines.ingest").info("indexed", extra={"rows": 3})
    for handler in restore_root_logger.handlers:
        handler.flush()

    [line] = log_file.read_text(encoding="utf-8").splitlines()
    entry = json.loads(line)
    assert entry["service"] == "docatlas-index"
    assert entry["rows"] == 3
    assert restore_root_logger.level == logging.DEBUG


def test_log_performance_warns_on_slow_calls(caplog):
    @log_performance(logger_name="docatlas.perf", threshold_ms=-1)
    def slow():
        return 42

    with caplog.at_level(logging.DEBUG, logger="docatlas.perf"):
        assert slow() == 42
    assert any(r.levelno == logging.WARNING and r.function_name == "slow" for r in caplog.records)


def test_log_performance_reraises(caplog):
    @log_performance(logger_name="docatlas.perf")
    def broken():
        raise ValueError("boom")

    with caplog.at_level(logging.ERROR, logger="docatlas.perf"):
        with pytest.raises(ValueError):
            broken()
    assert caplog.records[-1].error_type == "ValueError"


class TestMetrics:

    def test_collector_filters_by_attributes(self):
        collector = MetricsCollector("test")
        collector.record(1.0, {"tier": "exact"})
        collector.record(3.0, {"tier": "fuzzy"})
        collector.record(5.0, {"tier": "fuzzy"})
        window = collector.retention_period

        assert collector.total(window) == 9.0
        assert collector.mean(window, {"tier": "fuzzy"}) == 4.0
        assert collector.mean(window, {"tier": "none"}) == 0.0

    def test_search_metrics_by_tier(self):
        metrics = SearchMetrics()
        metrics.record_search_query("exact", 0.01, 2)
        metrics.record_search_query("fuzzy", 0.03, 4)
        metrics.record_search_query("none", 0.0, 0, error="InvalidArgumentError")

        stats = metrics.get_query_stats()
        assert stats["total_queries"] == 3
        assert stats["error_rate"] == pytest.approx(1 / 3)
        assert stats["by_tier"]["fuzzy"]["avg_results"] == 4
        assert metrics.get_tier_distribution() == {"exact": 1, "fuzzy": 1, "none": 1}

    def test_indexing_metrics_per_table(self):
        metrics = IndexingMetrics()
        metrics.record_table("docs_content", 10, 0, 0.2)
        metrics.record_table("api_spec", 7, 1, 0.1)

        stats = metrics.get_indexing_stats()
        assert list(stats) == ["api_spec", "docs_content"]
        assert stats["api_spec"]["rows_failed"] == 1
        assert stats["docs_content"]["rows_inserted"] == 10

    def test_indexing_metrics_from_concurrent_writers(self):
        metrics = IndexingMetrics()

        def write_tables(worker):
            for i in range(50):
                metrics.record_table(f"table_{worker}_{i % 5}", 1, 0, 0.01)

        threads = [threading.Thread(target=write_tables, args=(w,)) for w in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stats = metrics.get_indexing_stats()
        assert len(stats) == 20
        assert sum(table["rows_inserted"] for table in stats.values()) == 200
