"""
Tests for the metrics sinks.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from monitoring.metrics import LoggingMetricsSink
from monitoring.prometheus import PrometheusMetricsSink


async def finish(value, delay=0.0):
    await asyncio.sleep(delay)
    return value


async def explode():
    raise RuntimeError("boom")


class TestLoggingMetricsSink:
    def test_count_keeps_last_value(self, caplog):
        sink = LoggingMetricsSink()
        with caplog.at_level("INFO", logger="monitoring.metrics"):
            sink.count("abc.def.entities", 3)
            sink.count("abc.def.entities", 5)
        assert sink.counts == {"abc.def.entities": 5}
        assert "count abc.def.entities=5" in caplog.text

    @pytest.mark.asyncio
    async def test_timer_returns_result_and_records(self):
        sink = LoggingMetricsSink()
        assert await sink.timer("backup-table.abc.def", finish(42)) == 42
        assert [t.operation_name for t in sink.timings] == ["backup-table.abc.def"]
        assert sink.timings[0].success

    @pytest.mark.asyncio
    async def test_timer_records_failure_and_reraises(self):
        sink = LoggingMetricsSink()
        with pytest.raises(RuntimeError):
            await sink.timer("backup-table.abc.def", explode())
        assert not sink.timings[0].success

    @pytest.mark.asyncio
    async def test_summary(self):
        sink = LoggingMetricsSink()
        await sink.timer("op", finish(1))
        await sink.timer("op", finish(2))
        with pytest.raises(RuntimeError):
            await sink.timer("op", explode())
        sink.count("n", 7)

        summary = sink.get_summary()
        assert summary["counts"] == {"n": 7}
        assert summary["timings"]["op"].total_operations == 3
        assert summary["timings"]["op"].failed_operations == 1
        assert sink.get_timing_summary("other") is None

        sink.clear()
        assert sink.counts == {} and sink.timings == []


class TestPrometheusMetricsSink:
    @pytest.fixture
    def sink(self):
        return PrometheusMetricsSink(registry=CollectorRegistry())

    def test_count_sets_labelled_gauge(self, sink):
        sink.count("abc.def.entities", 3)
        value = sink.registry.get_sample_value("storage_backups_records", {"name": "abc.def.entities"})
        assert value == 3

    @pytest.mark.asyncio
    async def test_timer_records_duration_and_success(self, sink):
        assert await sink.timer("backup-table.abc.def", finish("ok", 0.01)) == "ok"
        duration = sink.registry.get_sample_value(
            "storage_backups_operation_duration_seconds", {"name": "backup-table.abc.def"}
        )
        last_success = sink.registry.get_sample_value(
            "storage_backups_last_success_timestamp_seconds", {"name": "backup-table.abc.def"}
        )
        assert duration > 0
        assert last_success > 0

    @pytest.mark.asyncio
    async def test_timer_counts_failures(self, sink):
        with pytest.raises(RuntimeError):
            await sink.timer("backup-table.abc.def", explode())
        failures = sink.registry.get_sample_value(
            "storage_backups_operation_failures_total", {"name": "backup-table.abc.def"}
        )
        assert failures == 1

    def test_push_without_gateway_is_noop(self, sink):
        sink.push()

    def test_push_to_gateway(self, monkeypatch):
        calls = []
        monkeypatch.setattr(
            "monitoring.prometheus.push_to_gateway",
            lambda url, job, registry: calls.append((url, job, registry))
        )
        sink = PrometheusMetricsSink(pushgateway_url="pushgateway:9091", job_name="nightly")
        sink.push()
        assert calls == [("pushgateway:9091", "nightly", sink.registry)]
