from datetime import datetime

from pydantic import BaseModel


class NotificationOut(BaseModel):
    id: str
    type: str
    title: str
    message: str
    data: dict
    is_read: bool
    created_at: datetime | None


class NotificationListOut(BaseModel):
    notifications: list[NotificationOut]
    unreadCount: int


class MarkReadRequest(BaseModel):
    markAll: bool = False
    ids: list[str] | None = None
