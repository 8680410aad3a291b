from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class NotificationFilter(str, Enum):
    ALL = "all"
    UNREAD = "unread"
    READ = "read"


class NotificationResponse(BaseModel):
    id: int
    user_id: str
    title: str
    message: str
    type: str
    is_read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    total_count: int
    unread_count: int
    has_next: bool


class NotificationUpdateResponse(BaseModel):
    success: bool
    updated: int = 0
