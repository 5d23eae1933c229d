from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..database import get_database
from ..models.notification import Notification, NotificationList
from ..models.user import UserPublic
from ..routers.auth import require_roles
from ..utils.documents import serialize_id
from ..utils.logging import store_unavailable

router = APIRouter(prefix="/notifications", tags=["notifications"])
StaffUser = Annotated[UserPublic, Depends(require_roles("admin", "staff"))]


@router.get("/", response_model=NotificationList)
async def donor_feed(
    _: StaffUser,
    user_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    database: AsyncIOMotorDatabase = Depends(get_database),
) -> NotificationList:
    cursor = database.get_collection("notifications").find({"user_id": user_id}).sort("created_at", -1).limit(limit)
    try:
        items = [Notification(**serialize_id(doc)) async for doc in cursor]
    except PyMongoError as exc:
        raise store_unavailable("donor_feed", exc) from exc
    return NotificationList(notifications=items)
