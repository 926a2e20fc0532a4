from .setup import setup_observability
from .metrics import (
    orders_created_total,
    payment_push_total,
    payment_callbacks_total,
    side_effect_failures_total,
    gateway_request_duration_seconds
)
