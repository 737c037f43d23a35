"""Prometheus metrics for monitoring repayments, allocations, and webhook performance"""

from decimal import Decimal
from prometheus_client import Counter, Histogram

# Repayment metrics
repayment_counter = Counter(
    "microfin_repayments_total",
    "Repayments recorded",
    ["method"],  # CASH | TRANSFER | POS | MOBILE | USSD | OTHER
)

repayment_reversal_counter = Counter(
    "microfin_repayment_reversals_total",
    "Repayments deleted and reversed",
)

allocation_counter = Counter(
    "microfin_allocations_total",
    "Allocation rows written against schedule items",
)

unallocated_amount_counter = Counter(
    "microfin_unallocated_amount_total",
    "Overpayment left undistributed after all installments were paid",
)

loan_status_counter = Counter(
    "microfin_loan_status_transitions_total",
    "Loan status changes made by repayment processing",
    ["status"],  # ACTIVE | COMPLETED
)

transaction_conflict_counter = Counter(
    "microfin_transaction_conflicts_total",
    "Serialization conflicts hit while writing a loan aggregate",
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "audit_webhook_latency_seconds",
    "Audit webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "audit_webhook_failures_total",
    "Failed audit webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_repayment(method: str, allocation_count: int, unallocated: Decimal) -> None:
    """Record repayment metrics for volume by channel and overpayment tracking"""
    repayment_counter.labels(method=method).inc()
    allocation_counter.inc(allocation_count)
    if unallocated > 0:
        unallocated_amount_counter.inc(float(unallocated))
