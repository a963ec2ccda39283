"""
Prometheus metrics for the checkout relay.

Tracks:
- Checkout requests by status and pricing policy
- Charged amounts in centavos
- PayMongo API calls, errors and latency
- Circuit breaker state
- Webhook events
- LeadConnector notifications
- Rate limit rejections
"""
from prometheus_client import Counter, Gauge, Histogram

# Checkout metrics
checkout_requests_total = Counter(
    "checkout_requests_total",
    "Total number of checkout requests",
    ["status", "policy"],  # policy: catalog, caller_total
)

checkout_processing_duration_seconds = Histogram(
    "checkout_processing_duration_seconds",
    "Checkout processing duration in seconds",
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

checkout_amount_minor_units = Histogram(
    "checkout_amount_minor_units",
    "Charged amounts in centavos",
    buckets=(10000, 50000, 100000, 250000, 500000, 1000000, 5000000),
)

degraded_tax_rate_total = Counter(
    "degraded_tax_rate_total",
    "Checkouts where a malformed tax rate was replaced by zero",
)

# PayMongo API metrics
paymongo_api_requests_total = Counter(
    "paymongo_api_requests_total",
    "Total PayMongo API requests",
    ["operation", "status"],
)

paymongo_api_errors_total = Counter(
    "paymongo_api_errors_total",
    "Total PayMongo API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

paymongo_api_duration_seconds = Histogram(
    "paymongo_api_duration_seconds",
    "PayMongo API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

paymongo_circuit_breaker_state = Gauge(
    "paymongo_circuit_breaker_state",
    "PayMongo circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook events received",
    ["event_type"],
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "status"],  # success, failed, duplicate, no_handler
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Notification metrics
notifications_total = Counter(
    "notifications_total",
    "Outbound notifications by target and outcome",
    ["target", "status"],  # sent, failed, retried, retry_failed, skipped
)

# Rate limiting
rate_limit_rejections_total = Counter(
    "rate_limit_rejections_total",
    "Requests rejected by rate limiting",
    ["limiter"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_checkout_request(status: str, policy: str, amount_minor_units: int = 0) -> None:
        """Record a checkout request."""
        checkout_requests_total.labels(status=status, policy=policy).inc()
        if amount_minor_units:
            checkout_amount_minor_units.observe(amount_minor_units)

    @staticmethod
    def record_checkout_duration(duration_seconds: float) -> None:
        """Record checkout processing duration."""
        checkout_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_degraded_tax_rate() -> None:
        """Record a checkout that fell back to zero tax."""
        degraded_tax_rate_total.inc()

    @staticmethod
    def record_paymongo_api_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record PayMongo API call."""
        paymongo_api_requests_total.labels(operation=operation, status=status).inc()
        paymongo_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_paymongo_api_error(error_type: str) -> None:
        """Record PayMongo API error."""
        paymongo_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        paymongo_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_webhook_event(event_type: str, status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_received_total.labels(event_type=event_type).inc()
        webhook_events_processed_total.labels(event_type=event_type, status=status).inc()
        webhook_processing_duration_seconds.labels(event_type=event_type).observe(
            duration_seconds
        )

    @staticmethod
    def record_notification(target: str, status: str) -> None:
        """Record an outbound notification outcome."""
        notifications_total.labels(target=target, status=status).inc()

    @staticmethod
    def record_rate_limit_rejection(limiter: str) -> None:
        """Record a rate limited request."""
        rate_limit_rejections_total.labels(limiter=limiter).inc()


# Export singleton instance
metrics = MetricsCollector()
