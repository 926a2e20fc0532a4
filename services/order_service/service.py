import secrets
import time

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.settings import Settings
from shared.errors import NotFoundError
from shared.observability import orders_created_total

from .models import Order
from .phone import normalize_phone
from .repository import OrderRepository
from .schemas import OrderCreate, OrderResponse
from .state import OrderStatus

logger = structlog.get_logger(__name__)


def generate_order_id() -> str:
    """ORD-<epoch ms>-<random hex>, unique without a database sequence."""
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(6)}"


class OrderService:
    @staticmethod
    async def create_order(db: AsyncSession, data: OrderCreate, settings: Settings, effects) -> Order:
        customer_info = data.customer_info.model_dump()
        customer_info["phone"] = normalize_phone(
            data.customer_info.phone,
            settings.country_code,
            settings.subscriber_digits,
            field="customerInfo.phone",
        )

        order = Order(
            id=generate_order_id(),
            items=[item.model_dump(exclude_none=True) for item in data.items],
            total=data.total,
            customer_info=customer_info,
            payment_method=data.payment_method,
            status=OrderStatus.PENDING.value,
        )
        order = await OrderRepository.create_order(db, order)

        orders_created_total.labels(payment_method=order.payment_method).inc()
        logger.info(
            "order_created",
            order_id=order.id,
            total=order.total,
            payment_method=order.payment_method,
            item_count=len(order.items),
        )
        effects.order_created(OrderResponse.model_validate(order))
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str) -> Order:
        order = await OrderRepository.get_order(db, order_id)
        if order is None:
            raise NotFoundError("Order not found", order_id=order_id)
        return order

    @staticmethod
    async def list_orders(db: AsyncSession, limit: int = 50):
        return await OrderRepository.list_orders(db, limit)
