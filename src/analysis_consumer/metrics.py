"""
Prometheus metrics for analysis consumer monitoring.

Provides instrumentation for:
- Delivery consumption by status
- Processing outcomes and analysis errors by kind
- Compensating index removals
- Processing time histograms and in-flight deliveries
"""

from prometheus_client import Counter, Gauge, Histogram

messages_consumed_total = Counter(
    "analysis_messages_consumed_total",
    "Total number of deliveries handled by the consumer",
    ["topic", "consumer_group", "status"],  # status: acked, redelivered, invalid
)

processing_outcomes_total = Counter(
    "analysis_processing_outcomes_total",
    "Total number of successfully handled deliveries by outcome",
    ["outcome"],  # blacklisted, already_analyzed, analyzed, unrecoverable
)

analysis_errors_total = Counter(
    "analysis_errors_total",
    "Total number of analysis failures by error kind",
    ["error_kind"],
)

scoring_errors_total = Counter(
    "analysis_scoring_errors_total",
    "Total number of swallowed scoring failures",
)

compensations_total = Counter(
    "analysis_index_compensations_total",
    "Total number of stale index entry removals",
    ["status"],  # success, error
)

message_processing_duration_seconds = Histogram(
    "analysis_message_processing_duration_seconds",
    "Time spent processing individual deliveries",
    ["topic", "consumer_group"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)

deliveries_in_flight = Gauge(
    "analysis_deliveries_in_flight",
    "Number of deliveries currently being processed",
    ["consumer_group"],
)


def record_message_consumed(topic: str, consumer_group: str, status: str) -> None:
    messages_consumed_total.labels(
        topic=topic, consumer_group=consumer_group, status=status
    ).inc()


def record_outcome(outcome: str) -> None:
    processing_outcomes_total.labels(outcome=outcome).inc()


def record_analysis_error(error_kind: str) -> None:
    analysis_errors_total.labels(error_kind=error_kind).inc()


def record_scoring_error() -> None:
    scoring_errors_total.inc()


def record_compensation(success: bool) -> None:
    compensations_total.labels(status="success" if success else "error").inc()


__all__ = [
    "messages_consumed_total",
    "processing_outcomes_total",
    "analysis_errors_total",
    "scoring_errors_total",
    "compensations_total",
    "message_processing_duration_seconds",
    "deliveries_in_flight",
    "record_message_consumed",
    "record_outcome",
    "record_analysis_error",
    "record_scoring_error",
    "record_compensation",
]
