"""Observability module for OpenTelemetry-aligned tracing, metrics, and logging."""

from site_search.observability.logging import JsonFormatter, configure_logging, configure_logging_from_settings
from site_search.observability.metrics import (
    INDEX_OPERATIONS,
    SEARCH_LATENCY,
    SEARCH_RESULTS,
    SNIPPETS_BUILT,
    get_metrics,
    get_metrics_content_type,
    init_metrics,
    track_latency,
)
from site_search.observability.tracing import (
    create_span,
    get_trace_context,
    get_tracer,
    init_tracing,
    set_trace_context,
    trace_context,
)


__all__ = [
    "INDEX_OPERATIONS",
    "SEARCH_LATENCY",
    "SEARCH_RESULTS",
    "SNIPPETS_BUILT",
    "JsonFormatter",
    "configure_logging",
    "configure_logging_from_settings",
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
