"""
Side channels for order and payment events.

NotificationSink appends rows to the notifications table through its own
session, since it runs after the request session has been closed.
EmailSink posts messages to a transactional email HTTP API.
"""
from typing import Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from shared.config.settings import Settings
from services.order_service.schemas import OrderResponse, dump

from .models import Notification
from .repository import NotificationRepository

logger = structlog.get_logger(__name__)

SEVERITIES = ("info", "success", "warning", "error")


class NotificationSink:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def notify(self, message: str, severity: str = "info", order_id: Optional[str] = None) -> None:
        if severity not in SEVERITIES:
            severity = "info"
        async with self.session_factory() as db:
            await NotificationRepository.create(
                db, Notification(message=message, severity=severity, order_id=order_id)
            )
        logger.info("notification_recorded", severity=severity, order_id=order_id)


class EmailSink:
    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.client = client or httpx.AsyncClient(timeout=settings.email_timeout)

    async def send_confirmation(self, order: OrderResponse) -> bool:
        email = order.customer_info.get("email")
        if not email:
            return False
        name = order.customer_info.get("name", "")
        details = order.payment_details or {}
        body = (
            f"Hi {name},\n\n"
            f"We have received your payment of {details.get('amount', order.total)} "
            f"for order {order.id}. M-Pesa receipt: {details.get('receiptNumber', 'unknown')}.\n\n"
            f"Your order will be delivered to {order.customer_info.get('address', '')}."
        )
        return await self._send(email, f"Payment received for order {order.id}", body, order)

    async def send_admin_alert(self, order: OrderResponse) -> bool:
        if not self.settings.admin_email:
            return False
        details = order.payment_details or {}
        body = (
            f"Order {order.id} has been paid.\n"
            f"Customer: {order.customer_info.get('name')} ({order.customer_info.get('phone')})\n"
            f"Amount: {details.get('amount', order.total)}\n"
            f"Receipt: {details.get('receiptNumber', 'unknown')}\n"
            f"Items: {len(order.items)}"
        )
        return await self._send(self.settings.admin_email, f"New paid order {order.id}", body, order)

    async def _send(self, to: str, subject: str, text: str, order: OrderResponse) -> bool:
        if not self.settings.email_configured:
            logger.info("email_skipped_not_configured", order_id=order.id, subject=subject)
            return False

        headers = {}
        if self.settings.email_api_key:
            headers["Authorization"] = f"Bearer {self.settings.email_api_key}"
        payload = {
            "from": self.settings.email_sender,
            "to": [to],
            "subject": subject,
            "text": text,
            "metadata": {"order": dump(order)},
        }
        try:
            resp = await self.client.post(self.settings.email_api_url, json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("email_send_failed", order_id=order.id, subject=subject, error=str(e))
            return False

        logger.info("email_sent", order_id=order.id, subject=subject)
        return True

    async def aclose(self) -> None:
        await self.client.aclose()
