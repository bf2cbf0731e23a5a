"""
Observability helpers (Prometheus metrics for providers, cache and rate limiting).
"""

from .prometheus import (
    PROMETHEUS_CONTENT_TYPE,
    generate_prometheus_metrics,
    record_cache_lookup,
    record_inbound_rate_limited,
    record_mock_fallback,
    record_provider_demotion,
    record_provider_request,
    reset_prometheus_metrics,
)

__all__ = [
    "PROMETHEUS_CONTENT_TYPE",
    "generate_prometheus_metrics",
    "record_cache_lookup",
    "record_inbound_rate_limited",
    "record_mock_fallback",
    "record_provider_demotion",
    "record_provider_request",
    "reset_prometheus_metrics",
]
