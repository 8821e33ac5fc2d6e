from pydantic import BaseModel
from uuid import UUID
from datetime import datetime
from typing import Any, Optional


class NotificationResponse(BaseModel):
    id: UUID
    notification_type: str
    title: str
    message: str
    data: Optional[dict[str, Any]] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    unread_count: int
