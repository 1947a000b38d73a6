#!/usr/bin/env python3
"""
Telemetry setup using OpenTelemetry.

This module configures tracing for aiohttp client requests, sqlite3 calls and
the refresh pipeline's own spans. Spans are exported to Azure Monitor when an
Application Insights connection string is provided and the exporter package is
installed; otherwise they stay in-process.

Environment variables:
  - APPLICATIONINSIGHTS_CONNECTION_STRING or AZURE_MONITOR_CONNECTION_STRING
  - OTEL_SERVICE_NAME (default: feed-reader)
  - OTEL_ENVIRONMENT (maps to deployment.environment)
  - DISABLE_TELEMETRY=true to fully disable

The module is safe to import multiple times; initialization is idempotent.
"""

from __future__ import annotations

import os
import atexit
import logging
import threading
from typing import Optional
import asyncio

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlite3 import SQLite3Instrumentor

try:
    # Azure Monitor exporter is optional; only used when connection string is present
    from azure.monitor.opentelemetry.exporter import AzureMonitorTraceExporter  # type: ignore
    _AZURE_AVAILABLE = True
except ImportError:
    AzureMonitorTraceExporter = None  # type: ignore
    _AZURE_AVAILABLE = False

_init_lock = threading.Lock()
_initialized = False
_provider: Optional[TracerProvider] = None

_logger = logging.getLogger(__name__)


def _telemetry_disabled() -> bool:
    return os.environ.get("DISABLE_TELEMETRY", "false").lower() == "true"


def init_telemetry(service_name: Optional[str] = None) -> None:
    """Initialize OpenTelemetry tracing and instrumentation.

    Safe to call multiple times. If DISABLE_TELEMETRY=true, it's a no-op.
    """
    global _initialized, _provider
    if _telemetry_disabled() or _initialized:
        return
    with _init_lock:
        if _initialized:
            return

        svc = service_name or os.environ.get("OTEL_SERVICE_NAME", "feed-reader")
        attrs = {"service.name": svc}
        env = os.environ.get("OTEL_ENVIRONMENT")
        if env:
            attrs["deployment.environment"] = env

        # If a provider was already set by external auto-instrumentation, reuse it
        existing = trace.get_tracer_provider()
        if isinstance(existing, TracerProvider):
            provider = existing
        else:
            provider = TracerProvider(resource=Resource.create(attrs))

        conn = os.environ.get("APPLICATIONINSIGHTS_CONNECTION_STRING") or os.environ.get(
            "AZURE_MONITOR_CONNECTION_STRING"
        )
        if conn and _AZURE_AVAILABLE:
            try:
                exporter = AzureMonitorTraceExporter.from_connection_string(conn)  # type: ignore
                provider.add_span_processor(BatchSpanProcessor(exporter))
                _logger.info("Telemetry initialized with Azure Monitor exporter (service=%s)", svc)
            except ValueError as e:
                _logger.warning("Telemetry init: failed to enable Azure exporter: %s", e)
        else:
            if conn:
                _logger.warning(
                    "Connection string set but 'azure-monitor-opentelemetry-exporter' is not installed"
                )
            _logger.debug("Telemetry initialized without exporter (service=%s)", svc)

        if not isinstance(existing, TracerProvider):
            trace.set_tracer_provider(provider)
        _provider = provider

        for instrumentor in (AioHttpClientInstrumentor(), LoggingInstrumentor(), SQLite3Instrumentor()):
            try:
                instrumentor.instrument()
            except Exception as e:
                _logger.debug("Instrumentation %s skipped: %s", type(instrumentor).__name__, e)

        _initialized = True

        def _shutdown():
            # TracerProvider.shutdown() flushes BatchSpanProcessor
            if _provider:
                _provider.shutdown()

        atexit.register(_shutdown)


def get_tracer(name: Optional[str] = None):
    """Return a tracer; works as a no-op tracer when telemetry is not initialized."""
    return trace.get_tracer(name or "feed-reader")


def annotate_current_span(prefix: str, values: dict) -> None:
    """Copy scalar values onto the active span as ``<prefix>.<key>`` attributes."""
    span = trace.get_current_span()
    if not span.is_recording():
        return
    for key, value in values.items():
        if isinstance(value, (bool, int, float, str)):
            span.set_attribute(f"{prefix}.{key}", value)


def trace_span(
    span_name: Optional[str] = None,
    tracer_name: Optional[str] = None,
    static_attrs: Optional[dict] = None,
    attr_from_args=None,
):
    """Decorator to wrap a function in an OpenTelemetry span.

    Args:
        span_name: Span name (defaults to module.function)
        tracer_name: Tracer name (defaults to the first part of span_name)
        static_attrs: Dict of attributes to set on the span
        attr_from_args: Callable taking (*args, **kwargs) and returning a dict
                        of attributes to set on the span

    Works with sync and async functions.
    """

    def _decorator(func):
        name = span_name or f"{func.__module__}.{func.__name__}"
        tname = tracer_name or name.split(".")[0] or "feed-reader"

        def _set_attrs(span, args, kwargs):
            try:
                if static_attrs:
                    for k, v in static_attrs.items():
                        span.set_attribute(k, v)
                if callable(attr_from_args):
                    for k, v in (attr_from_args(*args, **kwargs) or {}).items():
                        span.set_attribute(k, v)
            except Exception:
                # Never break the app on attribute setting
                pass

        def _record(span, exc):
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR))

        if asyncio.iscoroutinefunction(func):

            async def _aw(*args, **kwargs):
                with get_tracer(tname).start_as_current_span(name) as span:
                    _set_attrs(span, args, kwargs)
                    try:
                        return await func(*args, **kwargs)
                    except Exception as e:
                        _record(span, e)
                        raise

            _aw.__name__ = func.__name__
            _aw.__doc__ = func.__doc__
            _aw.__qualname__ = getattr(func, "__qualname__", func.__name__)
            return _aw

        def _w(*args, **kwargs):
            with get_tracer(tname).start_as_current_span(name) as span:
                _set_attrs(span, args, kwargs)
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    _record(span, e)
                    raise

        _w.__name__ = func.__name__
        _w.__doc__ = func.__doc__
        _w.__qualname__ = getattr(func, "__qualname__", func.__name__)
        return _w

    return _decorator


__all__ = ["init_telemetry", "get_tracer", "trace_span", "annotate_current_span"]
