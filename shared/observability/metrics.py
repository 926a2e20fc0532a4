from prometheus_client import Counter, Histogram

# Business Metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total orders recorded",
    ["payment_method"]
)

payment_push_total = Counter(
    "payment_push_total",
    "Push-payment initiations",
    ["outcome"]  # Labels: 'accepted', 'rejected', 'persistence_error'
)

payment_callbacks_total = Counter(
    "payment_callbacks_total",
    "Gateway callbacks received",
    ["outcome"]  # Labels: 'paid', 'failed', 'duplicate', 'unmatched', 'ignored', 'malformed', 'error'
)

side_effect_failures_total = Counter(
    "side_effect_failures_total",
    "Best-effort notifications or emails that failed",
    ["effect"]
)

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway call duration in seconds",
    ["operation"]  # Labels: 'token', 'stk_push'
)
