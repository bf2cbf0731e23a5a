from __future__ import annotations

from typing import Literal

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

PROMETHEUS_CONTENT_TYPE = CONTENT_TYPE_LATEST

ProviderResult = Literal["success", "empty", "failure", "rate_limited", "skipped"]
CacheResult = Literal["hit", "miss", "error"]


def _build_registry() -> tuple[CollectorRegistry, Counter, Histogram, Counter, Counter, Counter, Counter]:
    registry = CollectorRegistry()
    provider_counter = Counter(
        "marketdata_provider_requests_total",
        "Upstream provider calls grouped by provider, operation and outcome",
        labelnames=("provider", "operation", "result"),
        registry=registry,
    )
    provider_latency = Histogram(
        "marketdata_provider_latency_seconds",
        "Latency of upstream provider calls",
        labelnames=("provider",),
        buckets=(
            0.05,
            0.1,
            0.25,
            0.5,
            1.0,
            2.5,
            5.0,
            10.0,
        ),
        registry=registry,
    )
    demotion_counter = Counter(
        "marketdata_provider_demotions_total",
        "Providers demoted for the rest of the process lifetime",
        labelnames=("provider",),
        registry=registry,
    )
    cache_counter = Counter(
        "marketdata_cache_lookups_total",
        "Cache store lookups grouped by result",
        labelnames=("result",),
        registry=registry,
    )
    mock_counter = Counter(
        "marketdata_mock_fallbacks_total",
        "Responses synthesized by the mock generator",
        labelnames=("operation",),
        registry=registry,
    )
    rate_limit_counter = Counter(
        "marketdata_inbound_rate_limited_total",
        "Inbound requests rejected by the fixed-window rate limiter",
        registry=registry,
    )
    return (
        registry,
        provider_counter,
        provider_latency,
        demotion_counter,
        cache_counter,
        mock_counter,
        rate_limit_counter,
    )


(
    _registry,
    _provider_counter,
    _provider_latency,
    _demotion_counter,
    _cache_counter,
    _mock_counter,
    _rate_limit_counter,
) = _build_registry()


def record_provider_request(
    provider: str,
    operation: str,
    result: ProviderResult,
    latency_ms: float | None = None,
) -> None:
    _provider_counter.labels(provider=provider, operation=operation, result=result).inc()
    if latency_ms is not None and latency_ms >= 0:
        _provider_latency.labels(provider=provider).observe(latency_ms / 1000.0)


def record_provider_demotion(provider: str) -> None:
    _demotion_counter.labels(provider=provider).inc()


def record_cache_lookup(result: CacheResult) -> None:
    _cache_counter.labels(result=result).inc()


def record_mock_fallback(operation: str) -> None:
    _mock_counter.labels(operation=operation).inc()


def record_inbound_rate_limited() -> None:
    _rate_limit_counter.inc()


def generate_prometheus_metrics() -> bytes:
    return generate_latest(_registry)


def reset_prometheus_metrics() -> None:
    global _registry, _provider_counter, _provider_latency, _demotion_counter, _cache_counter, _mock_counter, _rate_limit_counter
    (
        _registry,
        _provider_counter,
        _provider_latency,
        _demotion_counter,
        _cache_counter,
        _mock_counter,
        _rate_limit_counter,
    ) = _build_registry()
