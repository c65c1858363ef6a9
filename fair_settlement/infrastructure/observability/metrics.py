"""Prometheus metrics for monitoring settlement outcomes and audit writes"""

from prometheus_client import Counter, Histogram

# Settlement metrics
settlement_counter = Counter(
    "fair_settlement_operations_total",
    "Settlement operations by outcome",
    ["operation", "outcome"],  # outcome: success | rejected | failed
)

settled_cents_counter = Counter(
    "fair_settlement_recorded_cents_total",
    "Cents applied to installments",
)

settlement_duration_histogram = Histogram(
    "fair_settlement_duration_seconds",
    "Time spent inside one settlement scope",
    ["operation"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# Audit metrics (counted after commit)
audit_entries_counter = Counter(
    "fair_settlement_audit_entries_total",
    "Committed audit log entries",
    ["action"],
)


def record_settlement(operation: str, outcome: str, duration_seconds: float, amount_cents: int = 0) -> None:
    """Record one finished settlement operation"""
    settlement_counter.labels(operation=operation, outcome=outcome).inc()
    settlement_duration_histogram.labels(operation=operation).observe(duration_seconds)
    if outcome == "success" and amount_cents > 0:
        settled_cents_counter.inc(amount_cents)
