"""
Integration tests for core/observability.py

Tests structured logging, correlation IDs, and metrics collection.
"""
import json
import logging
import time as time_module

import pytest

from core.observability import (
    HumanReadableFormatter,
    MetricsCollector,
    StructuredFormatter,
    Timer,
    correlation_context,
    generate_correlation_id,
    get_correlation_id,
    log_context,
    timed,
)


def make_record(msg="Sync finished", **extra) -> logging.LogRecord:
    record = logging.LogRecord("core.sync_service", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationId:
    """Tests for correlation ID management."""

    def test_generated_ids_are_short_and_unique(self):
        ids = {generate_correlation_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(cid) == 8 for cid in ids)

    def test_context_sets_and_restores(self):
        outer = get_correlation_id()
        with correlation_context("job-123") as cid:
            assert cid == "job-123"
            assert get_correlation_id() == "job-123"
        assert get_correlation_id() == outer

    def test_context_generates_when_missing(self):
        with correlation_context() as cid:
            assert cid
            assert get_correlation_id() == cid


class TestFormatters:
    """Tests for JSON and human-readable log output."""

    def test_structured_output(self):
        with correlation_context("abc12345"):
            line = StructuredFormatter().format(make_record(store_id="s1"))
        entry = json.loads(line)
        assert entry["level"] == "INFO"
        assert entry["logger"] == "core.sync_service"
        assert entry["message"] == "Sync finished"
        assert entry["correlation_id"] == "abc12345"
        assert entry["store_id"] == "s1"
        assert entry["timestamp"].endswith("Z")

    def test_log_context_fields(self):
        with log_context(tenant_id="t1"):
            entry = json.loads(StructuredFormatter().format(make_record()))
        assert entry["tenant_id"] == "t1"

        entry = json.loads(StructuredFormatter().format(make_record()))
        assert "tenant_id" not in entry

    def test_human_readable(self):
        with correlation_context("abc12345"):
            line = HumanReadableFormatter().format(make_record(job_id="j1"))
        assert "INFO" in line
        assert "[abc12345]" in line
        assert "Sync finished" in line
        assert "'job_id': 'j1'" in line


class TestTimer:
    """Tests for Timer context manager."""

    def test_measures_elapsed_time(self):
        with Timer("fetch_page") as timer:
            time_module.sleep(0.02)
        assert timer.elapsed_ms >= 15
        assert timer.name == "fetch_page"

    def test_logs_slow_operations_as_warning(self, caplog):
        logger = logging.getLogger("tests.timer")
        with caplog.at_level(logging.DEBUG, logger="tests.timer"):
            with Timer("slow_query", logger, warn_threshold_ms=0):
                time_module.sleep(0.001)
        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.records[-1].getMessage() == "slow_query completed"


class TestTimedDecorator:

    @pytest.mark.asyncio
    async def test_records_metrics(self):
        from core.observability import metrics

        @timed("unit_operation")
        async def work():
            return 42

        metrics.reset()
        assert await work() == 42
        assert metrics.get_stats()["timing"]["unit_operation"]["count"] == 1

    def test_rejects_sync_functions(self):
        with pytest.raises(TypeError):
            @timed()
            def work():
                return 1


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def test_requests_and_errors(self):
        collector = MetricsCollector()
        collector.record_request("/api/stores")
        collector.record_request("/api/stores")
        collector.record_error("QUERY_TIMEOUT")

        stats = collector.get_stats()
        assert stats["requests"] == {"/api/stores": 2}
        assert stats["errors"] == {"QUERY_TIMEOUT": 1}

    def test_timing_summary(self):
        collector = MetricsCollector()
        for value in (10, 20, 30):
            collector.record_timing("analytics", value)

        timing = collector.get_stats()["timing"]["analytics"]
        assert timing["count"] == 3
        assert timing["avg_ms"] == 20
        assert timing["min_ms"] == 10
        assert timing["max_ms"] == 30
        assert timing["p95_ms"] is None

    def test_samples_capped(self):
        collector = MetricsCollector(max_samples=5)
        for value in range(20):
            collector.record_timing("op", value)
        timing = collector.get_stats()["timing"]["op"]
        assert timing["count"] == 5
        assert timing["min_ms"] == 15

    def test_sync_outcomes(self):
        collector = MetricsCollector()
        collector.record_sync("all", "success", 1200)
        collector.record_sync("orders", "partial", 300)

        stats = collector.get_stats()
        assert stats["syncs"] == {"all:success": 1, "orders:partial": 1}
        assert "sync_all" in stats["timing"]

    def test_reset(self):
        collector = MetricsCollector()
        collector.record_request("/api/health")
        collector.reset()
        assert collector.get_stats()["requests"] == {}
