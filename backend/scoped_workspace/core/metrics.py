"""Prometheus metrics instrumentation."""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

WORKSPACE_OPS = Counter(
    "scws_workspace_operations_total",
    "Workspace store operations",
    labelnames=("operation",),
    registry=REGISTRY,
)

EMBEDDING_CACHE = Counter(
    "scws_embedding_cache_total",
    "Embedding cache lookups",
    labelnames=("result",),
    registry=REGISTRY,
)

PROVIDER_CALLS = Counter(
    "scws_embedding_provider_calls_total",
    "Embedding provider calls",
    labelnames=("outcome",),
    registry=REGISTRY,
)

BREAKER_STATE = Gauge(
    "scws_circuit_breaker_open",
    "1 when the embedding circuit breaker is open, 0.5 half-open, 0 closed",
    registry=REGISTRY,
)

SEARCH_LATENCY = Histogram(
    "scws_search_latency_seconds",
    "Latency of semantic searches",
    labelnames=("kind",),
    registry=REGISTRY,
)

SEARCH_BRANCH_FAILURES = Counter(
    "scws_search_branch_failures_total",
    "Multi-scope search branches that failed or timed out",
    labelnames=("reason",),
    registry=REGISTRY,
)

INDEX_JOBS = Counter(
    "scws_index_jobs_total",
    "Background indexing jobs",
    labelnames=("status",),
    registry=REGISTRY,
)


def metrics_payload() -> tuple[bytes, str]:
    """Return Prometheus exposition bytes and their content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


__all__ = [
    "REGISTRY",
    "WORKSPACE_OPS",
    "EMBEDDING_CACHE",
    "PROVIDER_CALLS",
    "BREAKER_STATE",
    "SEARCH_LATENCY",
    "SEARCH_BRANCH_FAILURES",
    "INDEX_JOBS",
    "metrics_payload",
]
