"""
Notification Schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from floatledger.app.models.notification import NotificationCategory


class NotificationRequest(BaseModel):
    """Outbound request handed to the notification collaborator."""
    user_id: int
    title: str
    message: str
    category: NotificationCategory = NotificationCategory.INFO


class NotificationResponse(BaseModel):
    id: int
    category: NotificationCategory
    title: str
    message: str
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True
