"""
Observability infrastructure with OpenTelemetry and structlog.

Tracing spans wrap the public retrieval and selection operations, metrics
record search latency and cache hit rates, and structlog renders log
records with trace context attached.
"""

from __future__ import annotations

import atexit
import functools
import inspect
import logging
import sys
import threading
from collections.abc import Callable, Sequence
from contextvars import ContextVar
from typing import Any

import structlog
from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Status, StatusCode

from tonematch.config.loader import ToneMatchConfig

MAX_METRIC_INSTRUMENTS = 1000

AttributeValue = str | bool | int | float

__all__ = (
    "get_logger",
    "get_trace_context",
    "init_observability",
    "shutdown_observability",
    "record_metric",
    "trace_operation",
)

_trace_context: ContextVar[dict[str, str] | None] = ContextVar(
    "trace_context", default=None
)

_tracer = None
_meter = None
_tracer_provider: TracerProvider | None = None
_meter_provider: MeterProvider | None = None
_metric_instruments: dict[tuple[str, str], Any] = {}
_initialized = False
_init_lock = threading.Lock()
_shutdown_registered = False
_metric_lock = threading.Lock()


def _register_shutdown_hook() -> None:
    global _shutdown_registered
    if _shutdown_registered:
        return
    atexit.register(shutdown_observability)
    _shutdown_registered = True


def _span_exporter(exporter: str) -> Any:
    if exporter == "console":
        return ConsoleSpanExporter(out=sys.stderr)
    return None


def _metric_exporter(exporter: str) -> Any:
    if exporter == "console":
        return ConsoleMetricExporter(out=sys.stderr)
    return None


def _init_tracing(service_name: str, sample_rate: float, exporter: str) -> Any:
    """Install a tracer provider. Returns tracer or None."""
    global _tracer_provider
    try:
        resource = Resource.create({"service.name": service_name})
        provider = TracerProvider(
            resource=resource,
            sampler=TraceIdRatioBased(sample_rate),
        )
        span_exporter = _span_exporter(exporter)
        if span_exporter is not None:
            provider.add_span_processor(BatchSpanProcessor(span_exporter))
        else:
            logging.warning(
                "Tracing enabled but no exporter configured; spans will not be exported."
            )
        trace.set_tracer_provider(provider)
        _tracer_provider = provider
        logging.info(
            "OpenTelemetry tracing initialized (sample_rate=%.2f, exporter=%s)",
            sample_rate,
            exporter,
        )
        return provider.get_tracer(__name__)
    except Exception:
        logging.warning("Failed to initialize tracing", exc_info=True)
        return None


def _init_metrics(
    service_name: str,
    exporter: str,
    export_interval_ms: int,
    extra_readers: Sequence[MetricReader] = (),
) -> Any:
    """Install a meter provider. Returns meter or None when nothing reads it."""
    global _meter_provider
    try:
        readers = list(extra_readers)
        metric_exporter = _metric_exporter(exporter)
        if metric_exporter is not None:
            readers.append(
                PeriodicExportingMetricReader(
                    metric_exporter, export_interval_millis=export_interval_ms
                )
            )
        if not readers:
            logging.info("No metrics exporter configured; metrics disabled")
            return None

        resource = Resource.create({"service.name": service_name})
        provider = MeterProvider(resource=resource, metric_readers=readers)
        metrics.set_meter_provider(provider)
        _meter_provider = provider
        logging.info("Metrics export initialized (exporter=%s)", exporter)
        return provider.get_meter(__name__)
    except Exception:
        logging.warning("Failed to initialize metrics", exc_info=True)
        return None


def _bind_trace_context(logger, method_name, event_dict):
    """A structlog processor to inject the current trace context into log records."""
    ctx = _trace_context.get()
    if ctx:
        event_dict["trace_id"] = ctx.get("trace_id")
        event_dict["span_id"] = ctx.get("span_id")
    return event_dict


def _init_structured_logging(log_level: str, log_format: str) -> None:
    """Route stdlib logging through structlog's formatter."""
    renderer: Any
    if log_format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        _bind_trace_context,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)


def init_observability(config: ToneMatchConfig) -> None:
    """
    Initialize the observability stack once per process.

    Configures structured logging from ``config.system`` and, when
    ``config.observability.enable_tracing`` is set, an OpenTelemetry
    tracer provider with ratio sampling. ``config.observability.exporter``
    picks where spans and metrics are sent; with ``none`` metrics stay off.
    """
    global _tracer, _meter, _initialized

    with _init_lock:
        if _initialized:
            return

        _init_structured_logging(config.system.log_level, config.system.log_format)

        obs = config.observability
        if obs.enable_tracing:
            _tracer = _init_tracing(obs.service_name, obs.sample_rate, obs.exporter)

        _meter = _init_metrics(
            obs.service_name, obs.exporter, obs.metric_export_interval_ms
        )

        _initialized = True
        _register_shutdown_hook()


def shutdown_observability() -> None:
    """Flush and shutdown the tracer and meter providers."""
    if _tracer_provider is not None:
        try:
            _tracer_provider.shutdown()
        except Exception:
            logging.warning("Failed to shutdown tracer provider", exc_info=True)
    if _meter_provider is not None:
        try:
            _meter_provider.shutdown()
        except Exception:
            logging.warning("Failed to shutdown meter provider", exc_info=True)


def _bind_span(span: Any, span_attributes: dict[str, Any]) -> Any:
    for key, value in span_attributes.items():
        span.set_attribute(key, value)
    trace_ctx = {
        "trace_id": format(span.get_span_context().trace_id, "032x"),
        "span_id": format(span.get_span_context().span_id, "016x"),
    }
    return _trace_context.set(trace_ctx)


def trace_operation(operation_name: str, **span_attributes):
    """
    Decorator to trace function execution.

    Starts a span, binds trace context for log correlation and records
    exceptions. Runs the function untouched when tracing is disabled.
    """

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                if _tracer is None:
                    return await func(*args, **kwargs)

                with _tracer.start_as_current_span(operation_name) as span:
                    token = _bind_span(span, span_attributes)
                    try:
                        result = await func(*args, **kwargs)
                        span.set_status(Status(StatusCode.OK))
                        return result
                    except Exception as e:
                        span.set_status(Status(StatusCode.ERROR))
                        span.record_exception(e)
                        raise
                    finally:
                        _trace_context.reset(token)

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if _tracer is None:
                return func(*args, **kwargs)

            with _tracer.start_as_current_span(operation_name) as span:
                token = _bind_span(span, span_attributes)
                try:
                    result = func(*args, **kwargs)
                    span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as e:
                    span.set_status(Status(StatusCode.ERROR))
                    span.record_exception(e)
                    raise
                finally:
                    _trace_context.reset(token)

        return wrapper

    return decorator


def record_metric(
    metric_name: str,
    value: float | int,
    labels: dict[str, AttributeValue] | None = None,
    metric_type: str = "counter",
) -> None:
    """
    Record a counter or histogram value. Never raises.
    """
    if _meter is None:
        return

    try:
        attributes = labels or {}
        key = (metric_name, metric_type)

        instrument = _metric_instruments.get(key)
        if instrument is None:
            with _metric_lock:
                instrument = _metric_instruments.get(key)
                if instrument is None:
                    if len(_metric_instruments) >= MAX_METRIC_INSTRUMENTS:
                        logging.warning(
                            "Metric instrument cache full (%d items). Cannot create new instrument for '%s'.",
                            MAX_METRIC_INSTRUMENTS,
                            metric_name,
                        )
                        return

                    if metric_type == "counter":
                        instrument = _meter.create_counter(metric_name, unit="1")
                    elif metric_type == "histogram":
                        instrument = _meter.create_histogram(metric_name, unit="ms")
                    else:
                        logging.warning(
                            "Unknown metric type '%s' for metric '%s'",
                            metric_type,
                            metric_name,
                        )
                        return

                    _metric_instruments[key] = instrument

        if metric_type == "histogram":
            instrument.record(value, attributes)
        else:
            instrument.add(value, attributes)

    except Exception:
        logging.warning("Failed to record metric %s", metric_name, exc_info=True)


def get_logger(name: str) -> Any:
    """Get a structlog logger that carries trace context."""
    return structlog.get_logger(name)


def get_trace_context() -> dict[str, str]:
    """Get current trace context for log correlation."""
    return _trace_context.get() or {}
