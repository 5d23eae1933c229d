from __future__ import annotations

from typing import Any, Dict

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..models.inventory import BLOOD_TYPES
from .registrations import RegistrationWorkflow


async def summary(database: AsyncIOMotorDatabase) -> Dict[str, Any]:
    stats = await RegistrationWorkflow(database).stats()
    registrations = {
        "total": stats["total"],
        "by_status": {status.value: count for status, count in stats["by_status"].items()},
    }

    donations = database.get_collection("donations")
    stored = await donations.count_documents({"used": {"$ne": True}})
    used = await donations.count_documents({"used": True})

    totals = {blood_type: 0 for blood_type in BLOOD_TYPES}
    critical = []
    async for counter in database.get_collection("blood_stock").find({}):
        quantity = int(counter.get("quantity") or 0)
        blood_type = counter.get("blood_type") or "Unknown"
        totals[blood_type] = totals.get(blood_type, 0) + quantity
        if quantity <= int(counter.get("critical_level") or 0):
            critical.append(
                {
                    "counter_id": str(counter["_id"]),
                    "hospital_id": counter.get("hospital_id"),
                    "blood_type": blood_type,
                    "quantity": quantity,
                    "critical_level": counter.get("critical_level"),
                }
            )

    return {
        "registrations": registrations,
        "donations": {"stored": stored, "used": used},
        "inventory_totals": totals,
        "critical_stock": critical,
    }
