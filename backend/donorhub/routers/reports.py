from __future__ import annotations

from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..database import get_database
from ..models.user import UserPublic
from ..routers.auth import require_roles
from ..utils.logging import store_unavailable
from ..workflows import reports

router = APIRouter(prefix="/reports", tags=["reports"])
AdminUser = Annotated[UserPublic, Depends(require_roles("admin"))]


@router.get("/summary")
async def report_summary(_: AdminUser, database: AsyncIOMotorDatabase = Depends(get_database)) -> Dict[str, Any]:
    try:
        return await reports.summary(database)
    except PyMongoError as exc:
        raise store_unavailable("report_summary", exc) from exc
