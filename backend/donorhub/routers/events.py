from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..database import get_database
from ..models.event import Event, EventCreate, EventDeletion, EventList, EventStatus, EventUpdate, HospitalAssignment
from ..models.user import UserPublic
from ..routers.auth import require_roles
from ..utils.logging import store_unavailable
from ..utils.notifications import broadcast
from ..workflows.events import EventPlanner

router = APIRouter(prefix="/events", tags=["events"])
StaffUser = Annotated[UserPublic, Depends(require_roles("admin", "staff"))]


async def get_planner(database: AsyncIOMotorDatabase = Depends(get_database)) -> EventPlanner:
    return EventPlanner(database)


async def _broadcast(event_id: str, change: str) -> None:
    await broadcast(router.manager, "event_updated", {"event_id": event_id, "change": change})


@router.get("/", response_model=EventList)
async def list_events(
    _: StaffUser,
    status: EventStatus | None = None,
    planner: EventPlanner = Depends(get_planner),
) -> EventList:
    try:
        events = await planner.list(status)
    except PyMongoError as exc:
        raise store_unavailable("list_events", exc) from exc
    return EventList(events=[Event(**event) for event in events])


@router.get("/{event_id}", response_model=Event)
async def get_event(_: StaffUser, event_id: str, planner: EventPlanner = Depends(get_planner)) -> Event:
    try:
        return Event(**await planner.get(event_id))
    except PyMongoError as exc:
        raise store_unavailable("get_event", exc) from exc


@router.post("/", response_model=Event, status_code=status.HTTP_201_CREATED)
async def create_event(
    user: StaffUser,
    payload: EventCreate,
    planner: EventPlanner = Depends(get_planner),
) -> Event:
    try:
        event = await planner.create(payload, user.id)
    except PyMongoError as exc:
        raise store_unavailable("create_event", exc) from exc
    await _broadcast(event["_id"], "created")
    return Event(**event)


@router.patch("/{event_id}", response_model=Event)
async def update_event(
    user: StaffUser,
    event_id: str,
    payload: EventUpdate,
    planner: EventPlanner = Depends(get_planner),
) -> Event:
    try:
        event = await planner.update(event_id, payload, user.id)
    except PyMongoError as exc:
        raise store_unavailable("update_event", exc) from exc
    await _broadcast(event["_id"], "updated")
    return Event(**event)


@router.put("/{event_id}/hospital", response_model=Event)
async def assign_event_hospital(
    user: StaffUser,
    event_id: str,
    payload: HospitalAssignment,
    planner: EventPlanner = Depends(get_planner),
) -> Event:
    try:
        event = await planner.assign_hospital(event_id, payload.hospital_id, user.id)
    except PyMongoError as exc:
        raise store_unavailable("assign_event_hospital", exc) from exc
    await _broadcast(event["_id"], "hospital_assigned")
    return Event(**event)


@router.delete("/{event_id}", response_model=EventDeletion)
async def delete_event(
    user: StaffUser,
    event_id: str,
    planner: EventPlanner = Depends(get_planner),
) -> EventDeletion:
    try:
        deletion = await planner.delete(event_id, user.id)
    except PyMongoError as exc:
        raise store_unavailable("delete_event", exc) from exc
    await _broadcast(deletion["event_id"], "deleted")
    return EventDeletion(**deletion)


def init_router(manager) -> None:
    router.manager = manager
