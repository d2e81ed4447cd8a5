"""
Telemetry Module

Prometheus metrics for:
- Source health (requests, latency, breaker state, rate limiting)
- Data quality of enriched matches
- Candidate gating and final decisions
- Learning loop accuracy and transitions
"""

from app.telemetry.metrics import (
    get_metrics_text,
    observe_data_quality,
    record_candidate,
    record_decision,
    record_learning_iteration,
    record_rate_limited,
    record_source_request,
    set_circuit_breaker_state,
)

__all__ = [
    "get_metrics_text",
    "observe_data_quality",
    "record_candidate",
    "record_decision",
    "record_learning_iteration",
    "record_rate_limited",
    "record_source_request",
    "set_circuit_breaker_state",
]
