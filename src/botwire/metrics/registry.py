"""
Metric registry using prometheus_client.

Provides pre-defined metrics for the gateway client and the REST dispatcher.
Exposes metrics in Prometheus text format via ``generate_metrics``.
"""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Dedicated registry so host applications can mount it next to their own.
REGISTRY = CollectorRegistry()

# -----------------------------------------------------------------------------
# Gateway
# -----------------------------------------------------------------------------

gateway_events_dispatched = Counter(
    "botwire_gateway_events_dispatched_total",
    "Gateway events delivered to handlers",
    ["kind"],
    registry=REGISTRY,
)

gateway_reconnect_attempts = Counter(
    "botwire_gateway_reconnect_attempts_total",
    "Gateway reconnect attempts",
    registry=REGISTRY,
)

gateway_connected = Gauge(
    "botwire_gateway_connected",
    "1 while a gateway session is connected, 0 otherwise",
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# REST
# -----------------------------------------------------------------------------

rest_requests = Counter(
    "botwire_rest_requests_total",
    "REST calls by method and outcome",
    ["method", "outcome"],
    registry=REGISTRY,
)

rest_request_duration = Histogram(
    "botwire_rest_request_seconds",
    "REST call latency",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

rest_pending_requests = Gauge(
    "botwire_rest_pending_requests",
    "REST calls currently in flight",
    registry=REGISTRY,
)


def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics output.

    Returns:
        Prometheus text format output as bytes.
    """
    return generate_latest(REGISTRY)
