"""Unit tests for tonematch.observability module."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace.export import ConsoleSpanExporter
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from conftest import make_candidate
from tonematch import observability
from tonematch.config import ObservabilityConfig, SystemConfig, ToneMatchConfig


@pytest.fixture
def fresh_state(monkeypatch):
    monkeypatch.setattr(observability, "_initialized", False)
    monkeypatch.setattr(observability, "_tracer", None)
    monkeypatch.setattr(observability, "_meter", None)
    monkeypatch.setattr(observability, "_tracer_provider", None)
    monkeypatch.setattr(observability, "_meter_provider", None)
    monkeypatch.setattr(observability, "_metric_instruments", {})
    monkeypatch.setattr(observability, "_register_shutdown_hook", MagicMock())


@pytest.fixture
def mock_tracer(monkeypatch):
    tracer = MagicMock()
    span = tracer.start_as_current_span.return_value.__enter__.return_value
    span.get_span_context.return_value = SimpleNamespace(trace_id=0xABC, span_id=0x12)
    monkeypatch.setattr(observability, "_tracer", tracer)
    return tracer, span


def _config(enable_tracing: bool) -> ToneMatchConfig:
    return ToneMatchConfig(
        system=SystemConfig(log_level="INFO", log_format="json"),
        observability=ObservabilityConfig(
            service_name="tonematch-test",
            enable_tracing=enable_tracing,
            sample_rate=0.5,
            exporter="console",
            metric_export_interval_ms=5000,
        ),
    )


class TestObservabilityInit:
    @patch("tonematch.observability._init_metrics")
    @patch("tonematch.observability._init_tracing")
    @patch("tonematch.observability._init_structured_logging")
    def test_init_with_tracing(self, mock_log, mock_trace, mock_metrics, fresh_state):
        mock_trace.return_value = MagicMock()

        observability.init_observability(_config(enable_tracing=True))

        mock_log.assert_called_once_with("INFO", "json")
        mock_trace.assert_called_once_with("tonematch-test", 0.5, "console")
        mock_metrics.assert_called_once_with("tonematch-test", "console", 5000)
        assert observability._tracer is mock_trace.return_value
        assert observability._meter is mock_metrics.return_value

    @patch("tonematch.observability._init_metrics")
    @patch("tonematch.observability._init_tracing")
    @patch("tonematch.observability._init_structured_logging")
    def test_init_without_tracing(self, mock_log, mock_trace, mock_metrics, fresh_state):
        observability.init_observability(_config(enable_tracing=False))

        mock_log.assert_called_once()
        mock_trace.assert_not_called()
        assert observability._tracer is None

    @patch("tonematch.observability._init_metrics")
    @patch("tonematch.observability._init_tracing")
    @patch("tonematch.observability._init_structured_logging")
    def test_init_is_idempotent(self, mock_log, mock_trace, mock_metrics, fresh_state):
        observability.init_observability(_config(enable_tracing=False))
        observability.init_observability(_config(enable_tracing=True))

        mock_log.assert_called_once()
        mock_trace.assert_not_called()


class TestExport:
    def test_console_exporters_by_name(self):
        assert isinstance(observability._span_exporter("console"), ConsoleSpanExporter)
        assert observability._span_exporter("none") is None
        assert observability._metric_exporter("none") is None

    def test_metrics_off_without_exporter(self, fresh_state):
        assert observability._init_metrics("tonematch-test", "none", 5000) is None
        assert observability._meter_provider is None

    def test_spans_reach_the_exporter(self, fresh_state, monkeypatch):
        exporter = InMemorySpanExporter()
        monkeypatch.setattr(observability, "_span_exporter", lambda name: exporter)
        monkeypatch.setattr(observability.trace, "set_tracer_provider", MagicMock())

        tracer = observability._init_tracing("tonematch-test", 1.0, "console")
        with tracer.start_as_current_span("vector_search.search"):
            pass
        observability._tracer_provider.force_flush()

        assert [s.name for s in exporter.get_finished_spans()] == ["vector_search.search"]
        observability._tracer_provider.shutdown()

    @pytest.mark.asyncio
    async def test_search_records_cache_metrics(self, fresh_state, monkeypatch, engine, store):
        reader = InMemoryMetricReader()
        monkeypatch.setattr(observability.metrics, "set_meter_provider", MagicMock())
        meter = observability._init_metrics("tonematch-test", "none", 5000, [reader])
        monkeypatch.setattr(observability, "_meter", meter)
        store.add("user-1", make_candidate("a"))

        await engine.search("user-1", "hello there")

        data = reader.get_metrics_data()
        recorded = {
            m.name: m
            for rm in data.resource_metrics
            for sm in rm.scope_metrics
            for m in sm.metrics
        }
        assert recorded["index_cache_miss"].data.data_points[0].value == 1
        assert "index_cache_hit" not in recorded
        assert "search_latency_ms" in recorded
        observability._meter_provider.shutdown()

    def test_shutdown_flushes_both_providers(self, fresh_state, monkeypatch):
        tracer_provider = MagicMock()
        meter_provider = MagicMock()
        monkeypatch.setattr(observability, "_tracer_provider", tracer_provider)
        monkeypatch.setattr(observability, "_meter_provider", meter_provider)

        observability.shutdown_observability()

        tracer_provider.shutdown.assert_called_once()
        meter_provider.shutdown.assert_called_once()


class TestTraceOperation:
    def test_passthrough_without_tracer(self, monkeypatch):
        monkeypatch.setattr(observability, "_tracer", None)

        @observability.trace_operation("op")
        def add(a, b):
            return a + b

        assert add(2, 3) == 5

    def test_sync_span_binds_trace_context(self, mock_tracer):
        tracer, span = mock_tracer
        seen = {}

        @observability.trace_operation("vector_search.test", component="engine")
        def work():
            seen.update(observability.get_trace_context())
            return "done"

        assert work() == "done"
        tracer.start_as_current_span.assert_called_once_with("vector_search.test")
        span.set_attribute.assert_called_once_with("component", "engine")
        assert seen["trace_id"] == format(0xABC, "032x")
        assert seen["span_id"] == format(0x12, "016x")
        assert observability.get_trace_context() == {}

    def test_sync_span_records_exception(self, mock_tracer):
        _, span = mock_tracer

        @observability.trace_operation("op")
        def fail():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            fail()
        span.record_exception.assert_called_once()
        assert observability.get_trace_context() == {}

    @pytest.mark.asyncio
    async def test_async_span(self, mock_tracer):
        tracer, span = mock_tracer

        @observability.trace_operation("op.async")
        async def work():
            return observability.get_trace_context()["trace_id"]

        assert await work() == format(0xABC, "032x")
        tracer.start_as_current_span.assert_called_once_with("op.async")

    @pytest.mark.asyncio
    async def test_async_span_records_exception(self, mock_tracer):
        _, span = mock_tracer

        @observability.trace_operation("op.async")
        async def fail():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await fail()
        span.record_exception.assert_called_once()


class TestRecordMetric:
    def test_noop_without_meter(self, fresh_state):
        observability.record_metric("search_latency_ms", 1.0, metric_type="histogram")

        assert observability._metric_instruments == {}

    def test_counter_and_histogram(self, fresh_state, monkeypatch):
        meter = MagicMock()
        monkeypatch.setattr(observability, "_meter", meter)

        observability.record_metric("index_cache_hit", 1)
        observability.record_metric("index_cache_hit", 1)
        observability.record_metric("search_latency_ms", 12.5, {"phase": "direct"}, "histogram")

        meter.create_counter.assert_called_once_with("index_cache_hit", unit="1")
        assert meter.create_counter.return_value.add.call_count == 2
        meter.create_histogram.return_value.record.assert_called_once_with(
            12.5, {"phase": "direct"}
        )

    def test_unknown_type_is_ignored(self, fresh_state, monkeypatch):
        monkeypatch.setattr(observability, "_meter", MagicMock())

        observability.record_metric("weird", 1, metric_type="gauge")

        assert observability._metric_instruments == {}

    def test_instrument_cap(self, fresh_state, monkeypatch):
        meter = MagicMock()
        monkeypatch.setattr(observability, "_meter", meter)
        monkeypatch.setattr(observability, "MAX_METRIC_INSTRUMENTS", 1)

        observability.record_metric("first", 1)
        observability.record_metric("second", 1)

        assert meter.create_counter.call_count == 1

    def test_never_raises(self, fresh_state, monkeypatch):
        meter = MagicMock()
        meter.create_counter.side_effect = RuntimeError("exporter down")
        monkeypatch.setattr(observability, "_meter", meter)

        observability.record_metric("documents_indexed", 3)


def test_get_logger_returns_bound_logger():
    logger = observability.get_logger("tonematch.test")

    assert hasattr(logger, "info")
