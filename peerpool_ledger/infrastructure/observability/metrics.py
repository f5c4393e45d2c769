"""Prometheus metrics for monitoring lending volume, repayment behaviour, and webhook performance"""

from prometheus_client import Counter, Histogram, Gauge

from peerpool_ledger.domain.models import LedgerEvent, LiquidityAdded, LoanDefaulted, LoanRepaid, LoanRequested

# Ledger operation metrics
operation_counter = Counter(
    "ledger_operations_total",
    "Ledger operations by outcome",
    ["operation", "outcome"],  # committed | rejected
)

loans_issued_counter = Counter(
    "ledger_loans_issued_total",
    "Loans disbursed from the pool",
)

loan_amount_histogram = Histogram(
    "ledger_loan_amount",
    "Principal of issued loans",
    buckets=[10, 50, 100, 500, 1_000, 5_000, 10_000],
)

repayment_counter = Counter(
    "ledger_repayments_total",
    "Loan repayments",
    ["timeliness"],  # on_time | late
)

default_counter = Counter(
    "ledger_defaults_total",
    "Loans written off after the grace period",
)

deposit_counter = Counter(
    "ledger_deposits_total",
    "Liquidity deposits into the pool",
)

pool_liquidity_gauge = Gauge(
    "ledger_pool_liquidity",
    "Funds currently available to lend",
)

# Value-transfer metrics
transfer_failures_counter = Counter(
    "transfer_failures_total",
    "Failed or declined value transfers",
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "webhook_latency_seconds",
    "Notification webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "webhook_failures_total",
    "Failed webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_operation(operation: str, committed: bool) -> None:
    """Count an engine call by outcome"""
    outcome = "committed" if committed else "rejected"
    operation_counter.labels(operation=operation, outcome=outcome).inc()


def record_event(event: LedgerEvent) -> None:
    """Engine observer: translate committed notifications into business metrics"""
    if isinstance(event, LoanRequested):
        loans_issued_counter.inc()
        loan_amount_histogram.observe(event.amount)
    elif isinstance(event, LoanRepaid):
        repayment_counter.labels(timeliness="on_time" if event.on_time else "late").inc()
    elif isinstance(event, LoanDefaulted):
        default_counter.inc()
    elif isinstance(event, LiquidityAdded):
        deposit_counter.inc()
