"""schemas/notifications.py - In-app notification listing."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.bookings import Pagination


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    title: str
    message: str
    is_read: bool
    read_at: Optional[datetime] = None
    action_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="meta")
    created_at: datetime


class NotificationListResponse(BaseModel):
    data: List[NotificationOut]
    pagination: Pagination
    unread_count: int


class MarkReadResponse(BaseModel):
    success: bool = True
    updated: int
