from __future__ import annotations

from typing import Annotated, Any, Dict, List

from fastapi import APIRouter, Depends, Query, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..database import get_database
from ..models.inventory import BloodStockCreate, HospitalStockSummary, StoredDonation
from ..models.user import UserPublic
from ..routers.auth import require_roles
from ..utils.logging import store_unavailable
from ..utils.notifications import broadcast
from ..workflows.inventory import InventoryLedger

router = APIRouter(prefix="/inventory", tags=["inventory"])
StaffUser = Annotated[UserPublic, Depends(require_roles("admin", "staff"))]


async def get_ledger(database: AsyncIOMotorDatabase = Depends(get_database)) -> InventoryLedger:
    return InventoryLedger(database)


@router.get("/hospitals/{hospital_id}", response_model=HospitalStockSummary)
async def hospital_stock(
    _: StaffUser,
    hospital_id: str,
    ledger: InventoryLedger = Depends(get_ledger),
) -> HospitalStockSummary:
    try:
        return HospitalStockSummary(**await ledger.hospital_summary(hospital_id))
    except PyMongoError as exc:
        raise store_unavailable("hospital_stock", exc) from exc


@router.post("/stock", status_code=status.HTTP_201_CREATED)
async def add_blood_stock(
    user: StaffUser,
    payload: BloodStockCreate,
    ledger: InventoryLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    try:
        result = await ledger.add_stock(payload, user.id)
    except PyMongoError as exc:
        raise store_unavailable("add_blood_stock", exc) from exc
    counter = result["counter"]
    await broadcast(
        router.manager,
        "inventory_updated",
        {"hospital_id": counter.hospital_id, "blood_type": counter.blood_type, "quantity": counter.quantity},
    )
    return {
        "donation_id": result["donation_id"],
        "counter_id": counter.id,
        "blood_type": counter.blood_type,
        "quantity": counter.quantity,
    }


@router.get("/donations", response_model=List[StoredDonation])
async def list_donations(
    _: StaffUser,
    hospital_id: str | None = None,
    blood_type: str | None = None,
    used: bool | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    ledger: InventoryLedger = Depends(get_ledger),
) -> List[StoredDonation]:
    try:
        items = await ledger.list_donations(hospital_id, blood_type, used, limit)
    except PyMongoError as exc:
        raise store_unavailable("list_donations", exc) from exc
    return [StoredDonation(**item) for item in items]


def init_router(manager) -> None:
    router.manager = manager
