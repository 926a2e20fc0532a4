from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class NotificationResponse(BaseModel):
    id: int
    message: str
    severity: str
    order_id: Optional[str] = None
    read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


class NotificationListResponse(BaseModel):
    success: bool = True
    notifications: List[NotificationResponse]


class NotificationEnvelope(BaseModel):
    success: bool = True
    notification: NotificationResponse
