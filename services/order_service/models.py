from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, JSON, String
from shared.config.database import Base

from .state import OrderStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    items = Column(JSON, nullable=False)
    total = Column(Float, nullable=False) # supplied by the caller, not derived from items
    customer_info = Column(JSON, nullable=False)
    payment_method = Column(String(32), nullable=False)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING.value)
    # CheckoutRequestID of the current push attempt; callbacks are matched on it
    payment_reference = Column(String(128), unique=True, index=True, nullable=True)
    merchant_request_id = Column(String(128), nullable=True)
    payment_details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
