"""Observability module for OpenTelemetry-aligned tracing, metrics, and logging."""

from search_mirror.observability.context import bind_entity_type, get_trace_context, set_trace_context, trace_context
from search_mirror.observability.logging import QUERY_LOGGER_NAME, JsonFormatter, configure_logging
from search_mirror.observability.metrics import (
    INDEX_WRITES,
    SEARCH_LATENCY,
    SYNC_FAILURES,
    get_metrics,
    get_metrics_content_type,
    init_metrics,
    track_latency,
)
from search_mirror.observability.tracing import create_span, get_tracer, init_tracing


__all__ = [
    "INDEX_WRITES",
    "QUERY_LOGGER_NAME",
    "SEARCH_LATENCY",
    "SYNC_FAILURES",
    "JsonFormatter",
    "bind_entity_type",
    "configure_logging",
    "create_span",
    "get_metrics",
    "get_metrics_content_type",
    "get_trace_context",
    "get_tracer",
    "init_metrics",
    "init_tracing",
    "set_trace_context",
    "trace_context",
    "track_latency",
]
