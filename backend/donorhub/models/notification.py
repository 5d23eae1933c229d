from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, Field


class Notification(BaseModel):
    id: str = Field(alias="_id")
    user_id: str
    type: str = "donation_status_update"
    title: str
    message: str
    data: Dict[str, Any] = {}
    read: bool = False
    created_at: datetime | None = None
    created_by: str | None = None


class NotificationList(BaseModel):
    notifications: List[Notification]
