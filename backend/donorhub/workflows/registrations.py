from __future__ import annotations

import re
from datetime import datetime, time
from typing import Any, Dict, List, Tuple

from bson import ObjectId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database import transaction
from ..errors import ConcurrentModification, RecordNotFound, TransitionNotAllowed
from ..models.registration import (
    RAW_STATUS,
    CompletionRequest,
    RegistrationStatus,
    display_status,
)
from ..schemas.registration import registration_document
from ..utils.documents import id_filter, resolve_id
from ..utils.notifications import notify_donor

# action -> (statuses it may start from, status it leads to)
TRANSITIONS: Dict[str, Tuple[frozenset, RegistrationStatus]] = {
    "approve": (frozenset({RegistrationStatus.PENDING}), RegistrationStatus.APPROVED),
    "reject": (
        frozenset({RegistrationStatus.PENDING, RegistrationStatus.APPROVED}),
        RegistrationStatus.REJECTED,
    ),
    "check_in": (frozenset({RegistrationStatus.APPROVED}), RegistrationStatus.CHECKED_IN),
    "complete": (frozenset({RegistrationStatus.CHECKED_IN}), RegistrationStatus.COMPLETED),
    "cancel": (
        frozenset({RegistrationStatus.PENDING, RegistrationStatus.APPROVED}),
        RegistrationStatus.CANCELLED,
    ),
}


def allowed_actions(status: RegistrationStatus) -> List[str]:
    return [action for action, (sources, _) in TRANSITIONS.items() if status in sources]


class RegistrationWorkflow:
    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        self.database = database
        self.bookings = database.get_collection("slot_bookings")
        self.donations = database.get_collection("donations")
        self.events = database.get_collection("blood_drive_events")

    async def load(self, registration_id: str) -> Dict[str, Any]:
        booking = await self.bookings.find_one(id_filter(registration_id))
        if not booking:
            raise RecordNotFound("Registration not found")
        return booking

    async def get(self, registration_id: str) -> Dict[str, Any]:
        booking = await self.load(registration_id)
        donation = None
        if booking.get("donation_id"):
            donation = await self.donations.find_one(id_filter(booking["donation_id"]))
        return registration_document(booking, donation)

    async def find_page(
        self,
        status: RegistrationStatus | None = None,
        event_id: str | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        clauses: List[Dict[str, Any]] = []
        if status is not None:
            clauses.append(self._status_clause(status))
        if event_id:
            clauses.append({"event_id": event_id})
        if search and search.strip():
            pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
            serial_matches = [
                resolve_id(donation["booking_id"])
                async for donation in self.donations.find({"serial_number": pattern}, {"booking_id": 1})
                if donation.get("booking_id")
            ]
            clauses.append(
                {
                    "$or": [
                        {"donor_name": pattern},
                        {"donor_email": pattern},
                        {"donor_phone": pattern},
                        {"_id": {"$in": serial_matches}},
                    ]
                }
            )
        query: Dict[str, Any] = {"$and": clauses} if len(clauses) > 1 else (clauses[0] if clauses else {})

        total = await self.bookings.count_documents(query)
        cursor = self.bookings.find(query).sort("booked_at", -1).skip((page - 1) * page_size).limit(page_size)
        items = [registration_document(booking) async for booking in cursor]
        return {"items": items, "total": total, "page": page, "page_size": page_size}

    @staticmethod
    def _status_clause(status: RegistrationStatus) -> Dict[str, Any]:
        """Match raw values the same way ``display_status`` reads them."""
        if status is RegistrationStatus.PENDING:
            # anything that is not another known status reads as Pending
            others = "|".join(
                re.escape(raw) for display, raw in RAW_STATUS.items() if display is not RegistrationStatus.PENDING
            )
            return {"booking_status": {"$not": re.compile(rf"^\s*({others})\s*$", re.IGNORECASE)}}
        return {"booking_status": re.compile(rf"^\s*{re.escape(RAW_STATUS[status])}\s*$", re.IGNORECASE)}

    async def stats(self) -> Dict[str, Any]:
        counts = {status: 0 for status in RegistrationStatus}
        total = 0
        async for booking in self.bookings.find({}, {"booking_status": 1}):
            counts[display_status(booking.get("booking_status"))] += 1
            total += 1
        return {"total": total, "by_status": counts}

    def _check_transition(self, booking: Dict[str, Any], action: str, expected_version: int | None) -> RegistrationStatus:
        sources, _ = TRANSITIONS[action]
        current = display_status(booking.get("booking_status"))
        if current not in sources:
            raise TransitionNotAllowed(
                f"Cannot {action.replace('_', ' ')} a registration that is {current.value}"
            )
        if expected_version is not None and expected_version != booking.get("version", 0):
            raise ConcurrentModification("Registration was changed by another session; reload and retry")
        return current

    @staticmethod
    def _guard(booking: Dict[str, Any]) -> Dict[str, Any]:
        """Filter matching the booking only while it is still as it was read."""
        guard: Dict[str, Any] = {"_id": booking["_id"], "booking_status": booking.get("booking_status")}
        if "version" in booking:
            guard["version"] = booking["version"]
        else:
            guard["version"] = {"$exists": False}
        return guard

    async def _write_transition(
        self,
        booking: Dict[str, Any],
        target: RegistrationStatus,
        actor: str,
        extra: Dict[str, Any] | None = None,
    ) -> datetime:
        now = datetime.utcnow()
        update = {
            "$set": {
                "booking_status": RAW_STATUS[target],
                "updated_at": now,
                "last_updated_by": actor,
                **(extra or {}),
            },
            "$inc": {"version": 1},
        }
        result = await self.bookings.update_one(self._guard(booking), update)
        if result.matched_count == 0:
            raise ConcurrentModification("Registration was changed by another session; reload and retry")
        return now

    async def _event_title(self, booking: Dict[str, Any]) -> str:
        if booking.get("event_id"):
            event = await self.events.find_one(id_filter(booking["event_id"]))
            if event and event.get("title"):
                return event["title"]
        return booking.get("event_title") or "the blood drive"

    def _log(self, booking: Dict[str, Any], current: RegistrationStatus, target: RegistrationStatus, actor: str) -> None:
        logger.info(
            "Registration {} moved {} -> {} by {}",
            booking["_id"],
            current.value,
            target.value,
            actor,
        )

    async def approve(self, registration_id: str, actor: str, expected_version: int | None = None) -> Dict[str, Any]:
        booking = await self.load(registration_id)
        current = self._check_transition(booking, "approve", expected_version)
        await self._write_transition(booking, RegistrationStatus.APPROVED, actor)
        self._log(booking, current, RegistrationStatus.APPROVED, actor)

        title = await self._event_title(booking)
        await notify_donor(
            self.database,
            booking.get("user_id"),
            "Registration Approved!",
            f"Your registration for {title} has been approved. Your scheduled time is {booking.get('selected_time') or 'to be confirmed'}.",
            {
                "record_id": str(booking["_id"]),
                "old_status": current.value,
                "status": "approved",
                "event_id": booking.get("event_id"),
                "event_title": title,
                "time_slot": booking.get("selected_time"),
            },
            created_by=actor,
        )
        return await self.get(registration_id)

    async def reject(
        self,
        registration_id: str,
        actor: str,
        reason: str = "",
        expected_version: int | None = None,
    ) -> Dict[str, Any]:
        booking = await self.load(registration_id)
        current = self._check_transition(booking, "reject", expected_version)
        reason = (reason or "").strip()
        await self._write_transition(booking, RegistrationStatus.REJECTED, actor, {"rejection_reason": reason})
        self._log(booking, current, RegistrationStatus.REJECTED, actor)

        title = await self._event_title(booking)
        message = (
            f"Your registration for {title} was rejected. Reason: {reason}"
            if reason
            else f"Your registration for {title} has been rejected."
        )
        await notify_donor(
            self.database,
            booking.get("user_id"),
            "Registration Update",
            message,
            {
                "record_id": str(booking["_id"]),
                "old_status": current.value,
                "status": "rejected",
                "event_id": booking.get("event_id"),
                "event_title": title,
                "reason": reason,
            },
            created_by=actor,
        )
        return await self.get(registration_id)

    async def check_in(self, registration_id: str, actor: str, expected_version: int | None = None) -> Dict[str, Any]:
        booking = await self.load(registration_id)
        current = self._check_transition(booking, "check_in", expected_version)
        now = datetime.utcnow()
        await self._write_transition(booking, RegistrationStatus.CHECKED_IN, actor, {"checked_in_at": now})
        self._log(booking, current, RegistrationStatus.CHECKED_IN, actor)

        title = await self._event_title(booking)
        await notify_donor(
            self.database,
            booking.get("user_id"),
            "Checked In Successfully!",
            f"You have been checked in for your donation at {title}. Thank you for your contribution!",
            {
                "record_id": str(booking["_id"]),
                "old_status": current.value,
                "status": "checked_in",
                "event_id": booking.get("event_id"),
                "event_title": title,
            },
            created_by=actor,
        )
        return await self.get(registration_id)

    async def cancel(self, registration_id: str, actor: str, expected_version: int | None = None) -> Dict[str, Any]:
        booking = await self.load(registration_id)
        current = self._check_transition(booking, "cancel", expected_version)
        now = datetime.utcnow()
        await self._write_transition(booking, RegistrationStatus.CANCELLED, actor, {"cancelled_at": now})
        self._log(booking, current, RegistrationStatus.CANCELLED, actor)

        title = await self._event_title(booking)
        await notify_donor(
            self.database,
            booking.get("user_id"),
            "Registration Cancelled",
            f"Your registration for {title} has been cancelled.",
            {
                "record_id": str(booking["_id"]),
                "old_status": current.value,
                "status": "cancelled",
                "event_id": booking.get("event_id"),
                "event_title": title,
            },
            created_by=actor,
        )
        return await self.get(registration_id)

    async def complete(self, registration_id: str, payload: CompletionRequest, actor: str) -> Dict[str, Any]:
        """Record the collected blood and close the registration.

        The donation record is written first and the registration update is
        guarded on ``donation_id`` being unset, so a registration can only ever
        be linked to one donation. Without a transaction, a donation inserted
        before a losing registration update is deleted again.
        """
        booking = await self.load(registration_id)
        current = self._check_transition(booking, "complete", payload.expected_version)
        if booking.get("donation_id"):
            raise TransitionNotAllowed("A donation record is already linked to this registration")

        now = datetime.utcnow()
        donation_id = ObjectId()
        blood_type = booking.get("donor_blood_type") or booking.get("blood_type") or "Unknown"
        donation = {
            "_id": donation_id,
            "booking_id": str(booking["_id"]),
            "event_id": booking.get("event_id"),
            "user_id": booking.get("user_id"),
            "donor_name": booking.get("donor_name") or "",
            "donor_email": booking.get("donor_email") or "",
            "donor_phone": booking.get("donor_phone") or "",
            "blood_type": blood_type,
            "serial_number": payload.serial_number,
            "amount_ml": payload.amount_ml,
            "donation_date": now,
            "expiry_date": datetime.combine(payload.expiry_date, time.min),
            "status": "stored",
            "used": False,
            "used_at": None,
            "used_hospital_id": None,
            "used_hospital_name": None,
            "created_at": now,
            "created_by": actor,
        }

        guard = {**self._guard(booking), "donation_id": None}
        update = {
            "$set": {
                "booking_status": RAW_STATUS[RegistrationStatus.COMPLETED],
                "donation_id": str(donation_id),
                "completed_at": now,
                "updated_at": now,
                "last_updated_by": actor,
            },
            "$inc": {"version": 1},
        }
        async with transaction(self.database) as session:
            await self.donations.insert_one(donation, session=session)
            result = await self.bookings.update_one(guard, update, session=session)
            if result.matched_count == 0:
                if session is None:
                    await self.donations.delete_one({"_id": donation_id})
                raise ConcurrentModification("Registration was completed or changed by another session")
        self._log(booking, current, RegistrationStatus.COMPLETED, actor)

        title = await self._event_title(booking)
        await notify_donor(
            self.database,
            booking.get("user_id"),
            "Donation Completed!",
            f"Thank you for your blood donation at {title}! Your contribution will save lives.",
            {
                "record_id": str(booking["_id"]),
                "old_status": current.value,
                "status": "completed",
                "event_id": booking.get("event_id"),
                "event_title": title,
                "donation_id": str(donation_id),
                "donation": {
                    "id": str(donation_id),
                    "serial_number": payload.serial_number,
                    "amount_ml": payload.amount_ml,
                    "blood_type": blood_type,
                    "status": "stored",
                },
            },
            created_by=actor,
        )
        return await self.get(registration_id)
