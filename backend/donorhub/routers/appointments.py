from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..database import get_database
from ..models.appointment import Appointment, AppointmentPage, AppointmentStatus, RescheduleRequest
from ..models.user import UserPublic
from ..routers.auth import require_roles
from ..utils.logging import store_unavailable
from ..utils.notifications import broadcast
from ..workflows.appointments import AppointmentDesk

router = APIRouter(prefix="/appointments", tags=["appointments"])
StaffUser = Annotated[UserPublic, Depends(require_roles("admin", "staff"))]


async def get_desk(database: AsyncIOMotorDatabase = Depends(get_database)) -> AppointmentDesk:
    return AppointmentDesk(database)


async def _broadcast(appointment: dict) -> None:
    await broadcast(
        router.manager,
        "appointment_updated",
        {"appointment_id": appointment["_id"], "status": appointment["status"]},
    )


@router.get("/", response_model=AppointmentPage)
async def list_appointments(
    _: StaffUser,
    status: AppointmentStatus | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    desk: AppointmentDesk = Depends(get_desk),
) -> AppointmentPage:
    try:
        return AppointmentPage(**await desk.find_page(status, page, page_size))
    except PyMongoError as exc:
        raise store_unavailable("list_appointments", exc) from exc


@router.post("/{appointment_id}/confirm", response_model=Appointment)
async def confirm_appointment(
    user: StaffUser,
    appointment_id: str,
    desk: AppointmentDesk = Depends(get_desk),
) -> Appointment:
    try:
        appointment = await desk.confirm(appointment_id, user.id)
    except PyMongoError as exc:
        raise store_unavailable("confirm_appointment", exc) from exc
    await _broadcast(appointment)
    return Appointment(**appointment)


@router.post("/{appointment_id}/cancel", response_model=Appointment)
async def cancel_appointment(
    user: StaffUser,
    appointment_id: str,
    desk: AppointmentDesk = Depends(get_desk),
) -> Appointment:
    try:
        appointment = await desk.cancel(appointment_id, user.id)
    except PyMongoError as exc:
        raise store_unavailable("cancel_appointment", exc) from exc
    await _broadcast(appointment)
    return Appointment(**appointment)


@router.post("/{appointment_id}/reschedule", response_model=Appointment)
async def reschedule_appointment(
    user: StaffUser,
    appointment_id: str,
    payload: RescheduleRequest,
    desk: AppointmentDesk = Depends(get_desk),
) -> Appointment:
    try:
        appointment = await desk.reschedule(appointment_id, payload, user.id)
    except PyMongoError as exc:
        raise store_unavailable("reschedule_appointment", exc) from exc
    await _broadcast(appointment)
    return Appointment(**appointment)


def init_router(manager) -> None:
    router.manager = manager
