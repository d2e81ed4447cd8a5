"""
Prometheus metrics for source health, prediction gating and the learning loop.

Design principles:
- Low cardinality (controlled labels)
- Best-effort (never block main flow)

ALLOWED LABELS (bounded sets):
- source:          configured provider names (max ~10)
- outcome:         "success", "failure", "empty", "rejected" (max ~5)
- market:          "1X2", "Over/Under 1.5|2.5|3.5", "BTTS" (max ~10)
- recommendation:  "STRONG_BET", "MODERATE_BET", "PASS", "AVOID"

FORBIDDEN AS LABELS: match ids, team names, URLs, timestamps, error messages.
"""

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# =============================================================================
# SOURCE METRICS
# =============================================================================

source_requests_total = Counter(
    "source_requests_total",
    "Requests issued to match data sources",
    ["source", "outcome"],
)

source_rate_limited_total = Counter(
    "source_rate_limited_total",
    "Admission checks rejected by the hourly rate limit",
    ["source"],
)

source_latency_ms = Histogram(
    "source_latency_ms",
    "Source call latency in milliseconds",
    ["source"],
    buckets=[10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

source_circuit_open = Gauge(
    "source_circuit_open",
    "Circuit breaker state (1=open/tripped, 0=closed/healthy)",
    ["source"],
)

source_consecutive_failures = Gauge(
    "source_consecutive_failures",
    "Current consecutive failure count for circuit breaker",
    ["source"],
)

match_data_quality = Histogram(
    "match_data_quality",
    "Data quality score of enriched matches",
    buckets=[0, 30, 50, 60, 80, 100],
)

# =============================================================================
# PREDICTION METRICS
# =============================================================================

prediction_candidates_total = Counter(
    "prediction_candidates_total",
    "Candidates evaluated by the synthesizer",
    ["market", "outcome"],
)

betting_decisions_total = Counter(
    "betting_decisions_total",
    "Final decisions emitted by the meta-learner",
    ["recommendation"],
)

# =============================================================================
# LEARNING METRICS
# =============================================================================

learning_accuracy = Gauge(
    "learning_accuracy_pct",
    "Accuracy of the live model version",
    ["model"],
)

learning_iterations_total = Counter(
    "learning_iterations_total",
    "Learning iterations by resulting transition",
    ["transition"],
)


# =============================================================================
# HELPERS
# =============================================================================


def record_source_request(source: str, outcome: str, latency_ms: float = None) -> None:
    """Count one source call and optionally observe its latency."""
    try:
        source_requests_total.labels(source=source, outcome=outcome).inc()
        if latency_ms is not None:
            source_latency_ms.labels(source=source).observe(latency_ms)
    except Exception as e:
        logger.warning(f"Failed to record source request metric: {e}")


def record_rate_limited(source: str) -> None:
    try:
        source_rate_limited_total.labels(source=source).inc()
    except Exception as e:
        logger.warning(f"Failed to record rate limit metric: {e}")


def set_circuit_breaker_state(
    source: str,
    is_open: bool,
    consecutive_failures: int,
) -> None:
    """
    Update circuit breaker state gauges.

    Args:
        source: Configured source name
        is_open: True if circuit is open (tripped), False if closed
        consecutive_failures: Current consecutive failure count
    """
    try:
        source_circuit_open.labels(source=source).set(1 if is_open else 0)
        source_consecutive_failures.labels(source=source).set(consecutive_failures)
    except Exception as e:
        logger.warning(f"Failed to set circuit breaker metric: {e}")


def observe_data_quality(score: int) -> None:
    try:
        match_data_quality.observe(score)
    except Exception as e:
        logger.warning(f"Failed to observe data quality metric: {e}")


def record_candidate(market: str, emitted: bool) -> None:
    try:
        prediction_candidates_total.labels(
            market=market, outcome="emitted" if emitted else "gated"
        ).inc()
    except Exception as e:
        logger.warning(f"Failed to record candidate metric: {e}")


def record_decision(recommendation: str) -> None:
    try:
        betting_decisions_total.labels(recommendation=recommendation).inc()
    except Exception as e:
        logger.warning(f"Failed to record decision metric: {e}")


def record_learning_iteration(transition: str, current_accuracy: float, best_accuracy: float) -> None:
    """transition: 'new_best', 'rollback' or 'explore'."""
    try:
        learning_iterations_total.labels(transition=transition).inc()
        learning_accuracy.labels(model="current").set(current_accuracy)
        learning_accuracy.labels(model="best").set(best_accuracy)
    except Exception as e:
        logger.warning(f"Failed to record learning metric: {e}")


def get_metrics_text() -> tuple[bytes, str]:
    """Exposition payload and content type for a scrape endpoint."""
    return generate_latest(), CONTENT_TYPE_LATEST
