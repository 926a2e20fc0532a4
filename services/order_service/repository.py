from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Order, utcnow


class OrderRepository:
    @staticmethod
    async def create_order(db: AsyncSession, order: Order) -> Order:
        db.add(order)
        await db.commit()
        await db.refresh(order)
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str) -> Optional[Order]:
        result = await db.execute(
            select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def list_orders(db: AsyncSession, limit: int = 50):
        result = await db.execute(select(Order).order_by(Order.created_at.desc()).limit(limit))
        return result.scalars().all()

    @staticmethod
    async def find_by_payment_reference(db: AsyncSession, reference: str) -> Optional[Order]:
        # Backed by the unique index on payment_reference
        result = await db.execute(
            select(Order)
            .where(Order.payment_reference == reference)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def update_status(
        db: AsyncSession,
        order_id: str,
        status: str,
        payment_details: Optional[dict] = None,
        expected_statuses: Optional[Iterable[str]] = None,
        **fields,
    ) -> bool:
        """
        Compare-and-set status write.

        When `expected_statuses` is given the row is only updated if its
        current status is one of them. Returns whether a row was changed.
        """
        values = {"status": status, "updated_at": utcnow(), **fields}
        if payment_details is not None:
            values["payment_details"] = payment_details

        stmt = update(Order).where(Order.id == order_id)
        if expected_statuses is not None:
            stmt = stmt.where(Order.status.in_(list(expected_statuses)))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount == 1
