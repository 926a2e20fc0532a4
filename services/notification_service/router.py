from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.errors import NotFoundError

from .repository import NotificationRepository
from .schemas import NotificationEnvelope, NotificationListResponse, NotificationResponse

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unread: bool = Query(default=False),
    order_id: Optional[str] = Query(default=None, alias="orderId"),
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    rows = await NotificationRepository.list_notifications(db, unread_only=unread, order_id=order_id, limit=limit)
    return NotificationListResponse(notifications=[NotificationResponse.model_validate(n) for n in rows])


@router.patch("/{notification_id}/read", response_model=NotificationEnvelope)
async def mark_read(notification_id: int, db: AsyncSession = Depends(get_db)):
    notification = await NotificationRepository.mark_read(db, notification_id)
    if notification is None:
        raise NotFoundError("Notification not found", notification_id=notification_id)
    return NotificationEnvelope(notification=NotificationResponse.model_validate(notification))
