"""
Best-effort side effects of order and payment events.

Every effect is handed to the scheduler (FastAPI BackgroundTasks in the
HTTP layer) and runs after the response has been produced. A failing
effect is logged and counted; it never reaches the caller and never blocks
the other effects.
"""
from typing import Awaitable, Callable

import structlog

from shared.observability import side_effect_failures_total
from services.order_service.schemas import OrderResponse

from .sinks import EmailSink, NotificationSink

logger = structlog.get_logger(__name__)


async def run_guarded(effect: str, func: Callable[..., Awaitable], *args) -> None:
    try:
        result = await func(*args)
        if result is False:
            logger.info("side_effect_skipped", effect=effect)
    except Exception as e:
        side_effect_failures_total.labels(effect=effect).inc()
        logger.error("side_effect_failed", effect=effect, error=str(e), exc_info=True)


class SideEffects:
    def __init__(self, schedule: Callable, notifications: NotificationSink, email: EmailSink):
        self._schedule = schedule
        self.notifications = notifications
        self.email = email

    def _dispatch(self, effect: str, func: Callable[..., Awaitable], *args) -> None:
        self._schedule(run_guarded, effect, func, *args)

    def order_created(self, order: OrderResponse) -> None:
        self._dispatch(
            "notify_order_created",
            self.notifications.notify,
            f"New order {order.id} from {order.customer_info.get('name')} ({order.total})",
            "info",
            order.id,
        )

    def payment_request_failed(self, order_id: str, message: str) -> None:
        self._dispatch(
            "notify_payment_request_failed",
            self.notifications.notify,
            f"Payment request for order {order_id} failed: {message}",
            "error",
            order_id,
        )

    def payment_succeeded(self, order: OrderResponse) -> None:
        details = order.payment_details or {}
        self._dispatch(
            "notify_payment_succeeded",
            self.notifications.notify,
            f"Payment received for order {order.id}: receipt {details.get('receiptNumber')}",
            "success",
            order.id,
        )
        if order.customer_info.get("email"):
            self._dispatch("email_customer_confirmation", self.email.send_confirmation, order)
        self._dispatch("email_admin_alert", self.email.send_admin_alert, order)

    def payment_failed(self, order: OrderResponse, reason: str) -> None:
        self._dispatch(
            "notify_payment_failed",
            self.notifications.notify,
            f"Payment for order {order.id} failed: {reason}",
            "warning",
            order.id,
        )
