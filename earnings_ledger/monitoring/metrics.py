"""
Prometheus metrics for earnings ledger monitoring.

Tracks:
- Webhook events by type and outcome
- Line items processed or skipped
- Wallet credits by path (atomic, fallback, duplicate)
- Ledger verification failures (operator alert)
- Sales accumulator outcomes
- Referral commissions
- Provider API calls
"""
from prometheus_client import Counter, Gauge, Histogram

# Webhook metrics
webhook_events_total = Counter(
    "webhook_events_total",
    "Total webhook events handled",
    ["event_type", "status"],  # processed, duplicate, ignored, rejected, failed
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

webhook_signature_failures_total = Counter(
    "webhook_signature_failures_total",
    "Webhook deliveries rejected for a bad or missing signature",
)

# Order metrics
line_items_total = Counter(
    "line_items_total",
    "Line items by outcome",
    ["status"],  # recorded, skipped_not_found, skipped_error
)

sessions_rejected_total = Counter(
    "sessions_rejected_total",
    "Checkout sessions rejected before any record was written",
    ["reason"],  # amount_mismatch, order_insert_failed
)

# Ledger metrics
wallet_credits_total = Counter(
    "wallet_credits_total",
    "Wallet credits by path",
    ["path"],  # atomic, fallback, duplicate, failed
)

wallet_credited_amount = Histogram(
    "wallet_credited_amount",
    "Credited designer earnings in major currency units",
    buckets=(1, 5, 10, 50, 100, 500, 1000, 5000, 10000),
)

ledger_verification_failures_total = Counter(
    "ledger_verification_failures_total",
    "Wallet credits that could not be verified after writing",
)

sales_updates_total = Counter(
    "sales_updates_total",
    "Sales accumulator updates by path",
    ["path"],  # atomic, fallback, failed
)

# Referral metrics
referral_credits_total = Counter(
    "referral_credits_total",
    "Referral commissions by outcome",
    ["status"],  # credited, unknown_code, failed
)

# Provider metrics
provider_api_requests_total = Counter(
    "provider_api_requests_total",
    "Total payment provider API requests",
    ["operation", "status"],
)

provider_circuit_breaker_state = Gauge(
    "provider_circuit_breaker_state",
    "Provider circuit breaker state (0=closed, 1=open, 2=half_open)",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_webhook_event(event_type: str, status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_total.labels(event_type=event_type, status=status).inc()
        webhook_processing_duration_seconds.labels(event_type=event_type).observe(
            duration_seconds
        )

    @staticmethod
    def record_signature_failure() -> None:
        webhook_signature_failures_total.inc()

    @staticmethod
    def record_line_item(status: str) -> None:
        line_items_total.labels(status=status).inc()

    @staticmethod
    def record_session_rejected(reason: str) -> None:
        sessions_rejected_total.labels(reason=reason).inc()

    @staticmethod
    def record_wallet_credit(path: str, amount: float = 0) -> None:
        """Record a wallet credit attempt and, when it landed, its amount."""
        wallet_credits_total.labels(path=path).inc()
        if path in ("atomic", "fallback"):
            wallet_credited_amount.observe(amount)

    @staticmethod
    def record_verification_failure() -> None:
        ledger_verification_failures_total.inc()

    @staticmethod
    def record_sales_update(path: str) -> None:
        sales_updates_total.labels(path=path).inc()

    @staticmethod
    def record_referral_credit(status: str) -> None:
        referral_credits_total.labels(status=status).inc()

    @staticmethod
    def record_provider_call(operation: str, status: str) -> None:
        provider_api_requests_total.labels(operation=operation, status=status).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        provider_circuit_breaker_state.set(state_map.get(state, 0))


# Export singleton instance
metrics = MetricsCollector()
