from __future__ import annotations

import math
import re
from datetime import datetime, time
from typing import Any, Dict, List

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from ..database import settings, transaction
from ..errors import (
    ConcurrentModification,
    InsufficientStock,
    RecordNotFound,
    TransitionNotAllowed,
    ValidationFailed,
)
from ..models.inventory import (
    BLOOD_TYPES,
    BloodStockCreate,
    ExpiryStatus,
    InventoryCounter,
    StockLevel,
)
from ..models.registration import RegistrationStatus, display_status
from ..utils.documents import as_datetime, id_filter
from ..utils.notifications import notify_donor
from .hospital_resolver import resolve_hospital


def counter_id(hospital_id: str, blood_type: str) -> str:
    return f"{hospital_id}:{blood_type}"


def normalize_blood_type(value: str) -> str:
    return re.sub(r"[^a-z0-9+]", "", value.lower())


def known_blood_type(*candidates: str | None) -> str | None:
    for candidate in candidates:
        if candidate and candidate.strip() and candidate.strip().lower() != "unknown":
            return candidate.strip()
    return None


def units_to_deduct(donation: Dict[str, Any]) -> int:
    """Units one used donation takes out of stock under the configured policy."""
    if settings.inventory_decrement_policy == "volume":
        amount = donation.get("amount_ml") or 0
        return max(1, math.ceil(amount / settings.unit_volume_ml))
    return 1


def stock_level(quantity: int, thresholds: Dict[str, int] | None) -> StockLevel:
    limits = {**settings.stock_thresholds, **(thresholds or {})}
    if quantity <= limits["low"]:
        return StockLevel.LOW
    if quantity <= limits["medium"]:
        return StockLevel.MEDIUM
    return StockLevel.HIGH


def expiry_status(expiry: datetime | None, now: datetime | None = None) -> tuple[ExpiryStatus, int | None]:
    if expiry is None:
        return ExpiryStatus.UNKNOWN, None
    now = now or datetime.utcnow()
    days = math.ceil((expiry - now).total_seconds() / 86400)
    windows = settings.expiry_warning_days
    if days < 0:
        return ExpiryStatus.EXPIRED, abs(days)
    if days <= windows["critical"]:
        return ExpiryStatus.CRITICAL, days
    if days <= windows["urgent"]:
        return ExpiryStatus.URGENT, days
    if days <= windows["warning"]:
        return ExpiryStatus.WARNING, days
    return ExpiryStatus.GOOD, days


def _default_counter(hospital_id: str, blood_type: str) -> Dict[str, Any]:
    return {
        "_id": counter_id(hospital_id, blood_type),
        "hospital_id": hospital_id,
        "blood_type": blood_type,
        "quantity": 0,
        "minimum_level": settings.default_minimum_level,
        "critical_level": settings.default_critical_level,
        "thresholds": dict(settings.stock_thresholds),
        "version": 0,
    }


class InventoryLedger:
    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        self.database = database
        self.stock = database.get_collection("blood_stock")
        self.donations = database.get_collection("donations")
        self.bookings = database.get_collection("slot_bookings")
        self.hospitals = database.get_collection("hospitals")

    async def find_counter(self, hospital_id: str, blood_type: str) -> InventoryCounter:
        """Exact id, then a normalized blood-type match, then an unsaved empty counter."""
        document = await self.stock.find_one({"_id": counter_id(hospital_id, blood_type)})
        if document:
            return InventoryCounter(**document)

        wanted = normalize_blood_type(blood_type)
        async for candidate in self.stock.find({"hospital_id": hospital_id}):
            candidate_type = candidate.get("blood_type") or str(candidate["_id"]).split(":")[-1]
            if normalize_blood_type(candidate_type) == wanted:
                logger.info("Stock counter {} matched blood type {} by normalized name", candidate["_id"], blood_type)
                return InventoryCounter(**{**candidate, "blood_type": candidate_type})

        logger.info("No stock counter for {} at hospital {}; using an empty one", blood_type, hospital_id)
        return InventoryCounter(**_default_counter(hospital_id, blood_type), persisted=False)

    async def hospital_summary(self, hospital_id: str) -> Dict[str, Any]:
        hospital = await self.hospitals.find_one(id_filter(hospital_id))
        if not hospital:
            raise RecordNotFound("Hospital not found")
        counters = {}
        async for document in self.stock.find({"hospital_id": hospital_id}):
            counters[document.get("blood_type")] = document
        blood_types = []
        for blood_type in BLOOD_TYPES:
            document = counters.get(blood_type) or {}
            quantity = int(document.get("quantity") or 0)
            blood_types.append(
                {
                    "blood_type": blood_type,
                    "quantity": quantity,
                    "level": stock_level(quantity, document.get("thresholds")),
                }
            )
        return {
            "hospital_id": hospital_id,
            "hospital_name": hospital.get("name") or "Unknown Hospital",
            "total_units": sum(item["quantity"] for item in blood_types),
            "blood_types": blood_types,
        }

    async def add_stock(self, payload: BloodStockCreate, actor: str) -> Dict[str, Any]:
        hospital = await self.hospitals.find_one(id_filter(payload.hospital_id))
        if not hospital:
            raise RecordNotFound("Selected hospital not found")
        blood_type = known_blood_type(payload.blood_type)
        if not blood_type:
            raise ValidationFailed("Blood type is required to add stock")

        now = datetime.utcnow()
        donation = {
            "user_id": payload.user_id,
            "donor_name": payload.donor_name,
            "donor_email": payload.donor_email,
            "donor_phone": payload.donor_phone,
            "blood_type": blood_type,
            "serial_number": payload.serial_number,
            "amount_ml": payload.amount_ml,
            "hospital_id": payload.hospital_id,
            "hospital": hospital.get("name"),
            "donation_date": now,
            "expiry_date": datetime.combine(payload.expiry_date, time.min),
            "status": "stored",
            "used": False,
            "created_at": now,
            "created_by": actor,
        }
        defaults = _default_counter(payload.hospital_id, blood_type)
        async with transaction(self.database) as session:
            result = await self.donations.insert_one(donation, session=session)
            counter = await self.stock.find_one_and_update(
                {"_id": defaults["_id"]},
                {
                    "$inc": {"quantity": 1, "version": 1},
                    "$set": {"last_updated": now},
                    "$setOnInsert": {
                        key: value for key, value in defaults.items() if key not in ("_id", "quantity", "version")
                    },
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
                session=session,
            )
        logger.info(
            "Stock added at hospital {}: {} now {} units (donation {})",
            payload.hospital_id,
            blood_type,
            counter["quantity"],
            result.inserted_id,
        )
        return {"donation_id": str(result.inserted_id), "counter": InventoryCounter(**counter)}

    async def list_donations(
        self,
        hospital_id: str | None = None,
        blood_type: str | None = None,
        used: bool | None = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if hospital_id:
            query["$or"] = [{"hospital_id": hospital_id}, {"used_hospital_id": hospital_id}]
        if blood_type:
            query["blood_type"] = blood_type
        if used is not None:
            query["used"] = used
        now = datetime.utcnow()
        items = []
        async for donation in self.donations.find(query).sort("donation_date", -1).limit(limit):
            expiry = as_datetime(donation.get("expiry_date"))
            status, days = expiry_status(expiry, now)
            items.append(
                {
                    "_id": str(donation["_id"]),
                    "serial_number": donation.get("serial_number") or "",
                    "blood_type": donation.get("blood_type") or "Unknown",
                    "amount_ml": donation.get("amount_ml"),
                    "donor_name": donation.get("donor_name") or "",
                    "hospital_id": donation.get("hospital_id") or donation.get("used_hospital_id"),
                    "expiry_date": expiry,
                    "expiry_status": status,
                    "days_to_expiry": days,
                    "status": donation.get("status") or "stored",
                    "used": bool(donation.get("used", False)),
                }
            )
        return items

    async def mark_as_used(self, registration_id: str, actor: str) -> Dict[str, Any]:
        """Link a stored donation to its use at a hospital and take it out of stock.

        Every precondition is checked before the first write. The donation flag,
        the counter decrement and the registration marker then go out as one
        grouped write; the decrement itself is a conditional ``$inc`` so the
        quantity cannot drop below zero even under concurrent sessions.
        """
        booking = await self.bookings.find_one(id_filter(registration_id))
        if not booking:
            raise RecordNotFound("Registration not found")
        if display_status(booking.get("booking_status")) is not RegistrationStatus.COMPLETED:
            raise TransitionNotAllowed("Only completed registrations can be marked as used")
        if booking.get("blood_used"):
            raise TransitionNotAllowed("Blood from this registration is already marked as used")
        if not booking.get("donation_id"):
            raise RecordNotFound("No donation record is linked to this registration")

        donation = await self.donations.find_one(id_filter(booking["donation_id"]))
        if not donation:
            raise RecordNotFound("Donation record not found")
        if donation.get("used"):
            raise TransitionNotAllowed("Donation is already marked as used")
        donation_status = donation.get("status") or "stored"
        if donation_status != "stored":
            raise TransitionNotAllowed(f"Donation status is '{donation_status}', only stored blood can be used")
        expiry = as_datetime(donation.get("expiry_date"))
        if expiry is not None and expiry <= datetime.utcnow():
            raise ValidationFailed(f"Donation expired on {expiry.date().isoformat()}")
        blood_type = known_blood_type(
            donation.get("blood_type"),
            booking.get("donor_blood_type"),
            booking.get("blood_type"),
        )
        if not blood_type:
            raise ValidationFailed("Blood type is unknown")

        resolution = await resolve_hospital(self.database, booking)
        if not resolution.resolved:
            raise RecordNotFound(
                "Cannot find hospital information for this event. Assign a hospital to the event first."
            )
        hospital_id = resolution.hospital_id
        counter = await self.find_counter(hospital_id, blood_type)
        units = units_to_deduct(donation)

        fresh = await self.stock.find_one({"_id": counter.id})
        current = int(fresh.get("quantity") or 0) if fresh else 0
        if current - units < 0:
            raise InsufficientStock(
                f"Cannot mark as used: blood stock for {blood_type} would go negative. Current stock: {current}"
            )

        now = datetime.utcnow()
        async with transaction(self.database) as session:
            claimed = await self.donations.update_one(
                {"_id": donation["_id"], "used": {"$ne": True}},
                {
                    "$set": {
                        "used": True,
                        "used_at": now,
                        "status": "used",
                        "used_hospital_id": hospital_id,
                        "used_hospital_name": resolution.hospital_name,
                    }
                },
                session=session,
            )
            if claimed.matched_count == 0:
                raise ConcurrentModification("Donation was marked as used by another session")

            updated = await self.stock.find_one_and_update(
                {"_id": counter.id, "quantity": {"$gte": units}},
                {"$inc": {"quantity": -units, "version": 1}, "$set": {"last_updated": now}},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
            if updated is None:
                if session is None:
                    await self._release_claim(donation)
                raise InsufficientStock(
                    f"Cannot mark as used: blood stock for {blood_type} would go negative"
                )

            await self.bookings.update_one(
                {"_id": booking["_id"]},
                {
                    "$set": {
                        "blood_used": True,
                        "used_at": now,
                        "updated_at": now,
                        "last_updated_by": actor,
                    },
                    "$inc": {"version": 1},
                },
                session=session,
            )

        logger.info(
            "Donation {} used at hospital {} ({}): {} stock {} -> {}",
            donation["_id"],
            hospital_id,
            resolution.tier.value,
            blood_type,
            current,
            updated["quantity"],
        )

        await notify_donor(
            self.database,
            booking.get("user_id"),
            "Your Blood Saved a Life!",
            f"Your donated blood ({blood_type}) has been used to save a life at {resolution.hospital_name}. "
            "Thank you for your donation!",
            {
                "record_id": str(booking["_id"]),
                "old_status": "stored",
                "status": "used",
                "event_id": booking.get("event_id"),
                "blood_type": blood_type,
                "hospital_name": resolution.hospital_name,
                "used_date": now.date().isoformat(),
                "donation": {
                    "id": str(donation["_id"]),
                    "serial_number": donation.get("serial_number") or "",
                    "blood_type": blood_type,
                    "used": True,
                    "status": "used",
                    "used_hospital_id": hospital_id,
                    "used_hospital_name": resolution.hospital_name,
                },
            },
            created_by=actor,
        )

        return {
            "registration_id": str(booking["_id"]),
            "donation_id": str(donation["_id"]),
            "hospital_id": hospital_id,
            "hospital_name": resolution.hospital_name,
            "resolution_tier": resolution.tier,
            "blood_type": blood_type,
            "units_deducted": units,
            "new_quantity": updated["quantity"],
        }

    async def _release_claim(self, donation: Dict[str, Any]) -> None:
        await self.donations.update_one(
            {"_id": donation["_id"]},
            {
                "$set": {
                    "used": False,
                    "used_at": None,
                    "status": donation.get("status") or "stored",
                    "used_hospital_id": None,
                    "used_hospital_name": None,
                }
            },
        )
        logger.warning("Released usage claim on donation {} after failed stock update", donation["_id"])
