from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..database import get_database
from ..models.inventory import MarkUsedResult
from ..models.registration import (
    CompletionRequest,
    RejectRequest,
    Registration,
    RegistrationPage,
    RegistrationStats,
    RegistrationStatus,
    TransitionRequest,
)
from ..models.user import UserPublic
from ..routers.auth import require_roles
from ..utils.logging import store_unavailable
from ..utils.notifications import broadcast
from ..workflows.inventory import InventoryLedger
from ..workflows.registrations import RegistrationWorkflow

router = APIRouter(prefix="/registrations", tags=["registrations"])
StaffUser = Annotated[UserPublic, Depends(require_roles("admin", "staff"))]


async def get_workflow(database: AsyncIOMotorDatabase = Depends(get_database)) -> RegistrationWorkflow:
    return RegistrationWorkflow(database)


async def get_ledger(database: AsyncIOMotorDatabase = Depends(get_database)) -> InventoryLedger:
    return InventoryLedger(database)


async def _broadcast(registration: dict) -> None:
    await broadcast(
        router.manager,
        "registration_updated",
        {
            "registration_id": registration["_id"],
            "status": registration["status"].value,
            "version": registration["version"],
        },
    )


@router.get("/", response_model=RegistrationPage)
async def list_registrations(
    _: StaffUser,
    status: RegistrationStatus | None = None,
    event_id: str | None = None,
    search: str | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> RegistrationPage:
    try:
        result = await workflow.find_page(status, event_id, search, page, page_size)
    except PyMongoError as exc:
        raise store_unavailable("list_registrations", exc) from exc
    return RegistrationPage(**result)


@router.get("/stats", response_model=RegistrationStats)
async def registration_stats(_: StaffUser, workflow: RegistrationWorkflow = Depends(get_workflow)) -> RegistrationStats:
    try:
        return RegistrationStats(**await workflow.stats())
    except PyMongoError as exc:
        raise store_unavailable("registration_stats", exc) from exc


@router.get("/{registration_id}", response_model=Registration)
async def get_registration(
    _: StaffUser,
    registration_id: str,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> Registration:
    try:
        registration = await workflow.get(registration_id)
    except PyMongoError as exc:
        raise store_unavailable("get_registration", exc) from exc
    return Registration(**registration)


@router.post("/{registration_id}/approve", response_model=Registration)
async def approve_registration(
    user: StaffUser,
    registration_id: str,
    payload: TransitionRequest | None = None,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> Registration:
    expected = payload.expected_version if payload else None
    try:
        registration = await workflow.approve(registration_id, user.id, expected)
    except PyMongoError as exc:
        raise store_unavailable("approve_registration", exc) from exc
    await _broadcast(registration)
    return Registration(**registration)


@router.post("/{registration_id}/reject", response_model=Registration)
async def reject_registration(
    user: StaffUser,
    registration_id: str,
    payload: RejectRequest | None = None,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> Registration:
    payload = payload or RejectRequest()
    try:
        registration = await workflow.reject(registration_id, user.id, payload.reason, payload.expected_version)
    except PyMongoError as exc:
        raise store_unavailable("reject_registration", exc) from exc
    await _broadcast(registration)
    return Registration(**registration)


@router.post("/{registration_id}/check-in", response_model=Registration)
async def check_in_registration(
    user: StaffUser,
    registration_id: str,
    payload: TransitionRequest | None = None,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> Registration:
    expected = payload.expected_version if payload else None
    try:
        registration = await workflow.check_in(registration_id, user.id, expected)
    except PyMongoError as exc:
        raise store_unavailable("check_in_registration", exc) from exc
    await _broadcast(registration)
    return Registration(**registration)


@router.post("/{registration_id}/complete", response_model=Registration)
async def complete_registration(
    user: StaffUser,
    registration_id: str,
    payload: CompletionRequest,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> Registration:
    try:
        registration = await workflow.complete(registration_id, payload, user.id)
    except PyMongoError as exc:
        raise store_unavailable("complete_registration", exc) from exc
    await _broadcast(registration)
    return Registration(**registration)


@router.post("/{registration_id}/cancel", response_model=Registration)
async def cancel_registration(
    user: StaffUser,
    registration_id: str,
    payload: TransitionRequest | None = None,
    workflow: RegistrationWorkflow = Depends(get_workflow),
) -> Registration:
    expected = payload.expected_version if payload else None
    try:
        registration = await workflow.cancel(registration_id, user.id, expected)
    except PyMongoError as exc:
        raise store_unavailable("cancel_registration", exc) from exc
    await _broadcast(registration)
    return Registration(**registration)


@router.post("/{registration_id}/mark-used", response_model=MarkUsedResult)
async def mark_registration_used(
    user: StaffUser,
    registration_id: str,
    ledger: InventoryLedger = Depends(get_ledger),
) -> MarkUsedResult:
    try:
        result = await ledger.mark_as_used(registration_id, user.id)
    except PyMongoError as exc:
        raise store_unavailable("mark_registration_used", exc) from exc
    await broadcast(
        router.manager,
        "inventory_updated",
        {
            "hospital_id": result["hospital_id"],
            "blood_type": result["blood_type"],
            "quantity": result["new_quantity"],
        },
    )
    return MarkUsedResult(**result)


def init_router(manager) -> None:
    router.manager = manager
