"""
Push-payment initiation and callback reconciliation.

The callback path owns the only transitions into `paid` and
`payment_failed`. It matches a delivery to its order through the stored
payment reference and writes the outcome with a compare-and-set on the
order status, so redeliveries and concurrent duplicates fall through as
no-ops and side effects are scheduled at most once per order.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.config.settings import Settings
from shared.errors import CallbackShapeError, NotFoundError, PersistenceError, UpstreamError, ValidationError
from shared.observability import payment_callbacks_total, payment_push_total
from services.notification_service.dispatcher import SideEffects
from services.order_service.phone import normalize_phone
from services.order_service.repository import OrderRepository
from services.order_service.schemas import OrderResponse
from services.order_service.state import OrderStatus, can_transition, is_terminal, sources_for

from .callbacks import CallbackResult, PaymentSucceeded, parse_callback
from .gateway import MpesaGateway
from .schemas import ACCEPTED, CallbackAck, PushRequest, PushResponse

logger = structlog.get_logger(__name__)

PUSH_SENT_MESSAGE = "Payment request sent. Check your phone to complete payment."


class _ReferenceNotVisible(Exception):
    pass


@dataclass
class CallbackOutcome:
    ack: CallbackAck
    outcome: str
    order: Optional[OrderResponse] = None


def round_amount(amount: float) -> int:
    """Whole currency units, rounding halves up."""
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PaymentService:
    def __init__(self, db: AsyncSession, gateway: MpesaGateway, settings: Settings, effects: SideEffects):
        self.db = db
        self.gateway = gateway
        self.settings = settings
        self.effects = effects

    # --- push initiation ---

    async def initiate_push(self, data: PushRequest) -> PushResponse:
        order = await OrderRepository.get_order(self.db, data.order_id)
        if order is None:
            raise NotFoundError("Order not found", order_id=data.order_id)

        if is_terminal(order.status):
            raise ValidationError(f"Order {order.id} is already {order.status}", field="orderId")

        amount = round_amount(data.amount)
        if amount < 1:
            raise ValidationError("Valid amount is required (minimum 1 KSh)", field="amount")

        if self.settings.enforce_order_total and abs(data.amount - order.total) > 0.005:
            raise ValidationError(
                f"Amount {data.amount} does not match order total {order.total}",
                field="amount",
            )

        phone = normalize_phone(
            data.phone_number,
            self.settings.country_code,
            self.settings.subscriber_digits,
            field="phoneNumber",
        )

        # Close the read transaction so no connection idles in it across gateway calls
        await self.db.commit()

        try:
            result = await self.gateway.initiate_push(
                phone=phone,
                amount=amount,
                account_reference=data.account_reference or self.settings.mpesa_account_reference,
                description=data.transaction_desc or self.settings.mpesa_transaction_desc,
            )
        except UpstreamError as e:
            payment_push_total.labels(outcome="rejected").inc()
            logger.warning("payment_push_failed", order_id=order.id, status_code=e.status_code, message=e.message)
            self.effects.payment_request_failed(order.id, e.message)
            raise

        # The stored reference is the only way a later callback can find this order
        try:
            linked = await OrderRepository.update_status(
                self.db,
                order.id,
                OrderStatus.PAYMENT_PENDING.value,
                expected_statuses=sources_for(OrderStatus.PAYMENT_PENDING),
                payment_reference=result.checkout_request_id,
                merchant_request_id=result.merchant_request_id,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            payment_push_total.labels(outcome="persistence_error").inc()
            logger.error(
                "payment_reference_write_failed",
                order_id=order.id,
                checkout_request_id=result.checkout_request_id,
                error=str(e),
            )
            raise PersistenceError(
                "Payment request was sent but the order could not be updated",
                order_id=order.id,
                checkout_request_id=result.checkout_request_id,
            ) from e

        if not linked:
            payment_push_total.labels(outcome="persistence_error").inc()
            logger.error("payment_reference_not_linked", order_id=order.id, checkout_request_id=result.checkout_request_id)
            raise PersistenceError(
                "Order status changed while the payment request was in flight",
                order_id=order.id,
                checkout_request_id=result.checkout_request_id,
            )

        payment_push_total.labels(outcome="accepted").inc()
        logger.info(
            "payment_push_accepted",
            order_id=order.id,
            checkout_request_id=result.checkout_request_id,
            amount=amount,
        )
        return PushResponse(data=result.raw, message=PUSH_SENT_MESSAGE, order_id=order.id)

    # --- callback reconciliation ---

    async def apply_callback(self, payload: Any) -> CallbackOutcome:
        try:
            result = parse_callback(payload)
        except CallbackShapeError as e:
            payment_callbacks_total.labels(outcome="malformed").inc()
            logger.warning("payment_callback_malformed", **e.context)
            return CallbackOutcome(
                ack=CallbackAck(result_code=1, result_desc="Rejected: malformed callback payload"),
                outcome="malformed",
            )
        except Exception as e:
            payment_callbacks_total.labels(outcome="error").inc()
            logger.error("payment_callback_parse_error", error=str(e), exc_info=True)
            return CallbackOutcome(
                ack=CallbackAck(result_code=1, result_desc="Internal error, please retry"),
                outcome="error",
            )

        try:
            return await self._reconcile(result)
        except Exception as e:
            payment_callbacks_total.labels(outcome="error").inc()
            logger.error("payment_callback_error", checkout_request_id=result.reference, error=str(e), exc_info=True)
            return CallbackOutcome(
                ack=CallbackAck(result_code=1, result_desc="Internal error, please retry"),
                outcome="error",
            )

    async def _find_order(self, reference: str):
        """
        Look the order up by payment reference, retrying briefly on a miss.

        A callback can overtake the write that stores the reference, so a
        miss is retried with exponential backoff before giving up.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.callback_lookup_attempts),
            wait=wait_exponential(multiplier=self.settings.callback_lookup_backoff_seconds, max=5),
            retry=retry_if_exception_type(_ReferenceNotVisible),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    order = await OrderRepository.find_by_payment_reference(self.db, reference)
                    if order is None:
                        # End the read transaction so the next attempt sees fresh commits
                        await self.db.rollback()
                        raise _ReferenceNotVisible(reference)
                    return order
        except _ReferenceNotVisible:
            return None

    async def _reconcile(self, result: CallbackResult) -> CallbackOutcome:
        order = await self._find_order(result.reference)
        if order is None:
            payment_callbacks_total.labels(outcome="unmatched").inc()
            logger.warning(
                "payment_callback_unmatched",
                checkout_request_id=result.reference,
                result_code=result.result_code,
            )
            return CallbackOutcome(ack=ACCEPTED, outcome="unmatched")

        if is_terminal(order.status):
            payment_callbacks_total.labels(outcome="duplicate").inc()
            logger.info("payment_callback_duplicate", order_id=order.id, status=order.status)
            return CallbackOutcome(ack=ACCEPTED, outcome="duplicate", order=OrderResponse.model_validate(order))

        if isinstance(result, PaymentSucceeded):
            target = OrderStatus.PAID
            details = {
                "receiptNumber": result.receipt_number,
                "amount": result.amount,
                "phoneNumber": result.phone_number,
                "transactionDate": result.transaction_date,
                "resultCode": result.result_code,
                "resultDesc": result.result_desc,
                "completedAt": _now_iso(),
            }
        else:
            target = OrderStatus.PAYMENT_FAILED
            details = {
                "reason": result.result_desc,
                "resultCode": result.result_code,
                "resultDesc": result.result_desc,
                "failedAt": _now_iso(),
            }

        if not can_transition(order.status, target):
            payment_callbacks_total.labels(outcome="ignored").inc()
            logger.warning(
                "payment_callback_invalid_transition",
                order_id=order.id,
                status=order.status,
                target=target.value,
            )
            return CallbackOutcome(ack=ACCEPTED, outcome="ignored", order=OrderResponse.model_validate(order))

        changed = await OrderRepository.update_status(
            self.db,
            order.id,
            target.value,
            payment_details=details,
            expected_statuses=sources_for(target),
        )
        if not changed:
            # Another delivery of the same callback won the compare-and-set
            payment_callbacks_total.labels(outcome="duplicate").inc()
            logger.info("payment_callback_lost_race", order_id=order.id)
            return CallbackOutcome(ack=ACCEPTED, outcome="duplicate")

        order = await OrderRepository.get_order(self.db, order.id)
        snapshot = OrderResponse.model_validate(order)
        if target is OrderStatus.PAID:
            payment_callbacks_total.labels(outcome="paid").inc()
            logger.info("order_paid", order_id=order.id, receipt_number=result.receipt_number)
            self.effects.payment_succeeded(snapshot)
            outcome = "paid"
        else:
            payment_callbacks_total.labels(outcome="failed").inc()
            logger.info("order_payment_failed", order_id=order.id, reason=result.result_desc)
            self.effects.payment_failed(snapshot, result.result_desc)
            outcome = "failed"

        return CallbackOutcome(ack=ACCEPTED, outcome=outcome, order=snapshot)
