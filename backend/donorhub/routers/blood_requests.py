from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..database import get_database
from ..models.blood_request import (
    BloodRequest,
    BloodRequestDecision,
    BloodRequestList,
    BloodRequestOutcome,
    BloodRequestStatus,
    Urgency,
    UrgencyUpdate,
)
from ..models.user import UserPublic
from ..routers.auth import require_roles
from ..utils.logging import store_unavailable
from ..utils.notifications import broadcast
from ..workflows.blood_requests import BloodRequestDesk

router = APIRouter(prefix="/blood-requests", tags=["blood-requests"])
StaffUser = Annotated[UserPublic, Depends(require_roles("admin", "staff"))]


async def get_desk(database: AsyncIOMotorDatabase = Depends(get_database)) -> BloodRequestDesk:
    return BloodRequestDesk(database)


async def _broadcast(request: dict) -> None:
    await broadcast(
        router.manager,
        "blood_request_updated",
        {"request_id": request["_id"], "status": request["status"], "urgency": request["urgency"]},
    )


@router.get("/", response_model=BloodRequestList)
async def list_blood_requests(
    _: StaffUser,
    status: BloodRequestStatus | None = None,
    blood_type: str | None = None,
    urgency: Urgency | None = None,
    search: str | None = None,
    desk: BloodRequestDesk = Depends(get_desk),
) -> BloodRequestList:
    try:
        return BloodRequestList(**await desk.list(status, blood_type, urgency, search))
    except PyMongoError as exc:
        raise store_unavailable("list_blood_requests", exc) from exc


@router.get("/{request_id}", response_model=BloodRequest)
async def get_blood_request(_: StaffUser, request_id: str, desk: BloodRequestDesk = Depends(get_desk)) -> BloodRequest:
    try:
        return BloodRequest(**await desk.get(request_id))
    except PyMongoError as exc:
        raise store_unavailable("get_blood_request", exc) from exc


@router.post("/{request_id}/status", response_model=BloodRequestOutcome)
async def decide_blood_request(
    user: StaffUser,
    request_id: str,
    payload: BloodRequestDecision,
    desk: BloodRequestDesk = Depends(get_desk),
) -> BloodRequestOutcome:
    try:
        outcome = await desk.decide(request_id, payload, user.id)
    except PyMongoError as exc:
        raise store_unavailable("decide_blood_request", exc) from exc
    await _broadcast(outcome["request"])
    return BloodRequestOutcome(**outcome)


@router.put("/{request_id}/urgency", response_model=BloodRequest)
async def update_blood_request_urgency(
    user: StaffUser,
    request_id: str,
    payload: UrgencyUpdate,
    desk: BloodRequestDesk = Depends(get_desk),
) -> BloodRequest:
    try:
        request = await desk.set_urgency(request_id, payload.urgency, user.id)
    except PyMongoError as exc:
        raise store_unavailable("update_blood_request_urgency", exc) from exc
    await _broadcast(request)
    return BloodRequest(**request)


def init_router(manager) -> None:
    router.manager = manager
