"""
Metrics module for observability.

Provides counters, gauges, and histograms for tracking client behavior.
Exposes metrics in Prometheus text format.
"""

from .registry import (
    REGISTRY,
    gateway_connected,
    gateway_events_dispatched,
    gateway_reconnect_attempts,
    generate_metrics,
    rest_pending_requests,
    rest_request_duration,
    rest_requests,
)

__all__ = [
    "REGISTRY",
    "gateway_connected",
    "gateway_events_dispatched",
    "gateway_reconnect_attempts",
    "generate_metrics",
    "rest_pending_requests",
    "rest_request_duration",
    "rest_requests",
]
