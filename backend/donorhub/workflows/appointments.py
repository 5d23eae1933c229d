from __future__ import annotations

from datetime import datetime, time
from typing import Any, Dict

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..errors import RecordNotFound, TransitionNotAllowed
from ..models.appointment import AppointmentStatus, RescheduleRequest
from ..models.registration import RAW_STATUS, RegistrationStatus
from ..utils.documents import id_filter, ref


def appointment_document(appointment: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "_id": str(appointment["_id"]),
        "user_id": ref(appointment.get("user_id")),
        "hospital_id": ref(appointment.get("hospital_id")),
        "hospital_name": appointment.get("hospital_name") or "Unknown Location",
        "appointment_date": appointment.get("appointment_date"),
        "time_slot": appointment.get("time_slot"),
        "status": (appointment.get("status") or "pending").lower(),
        "booking_id": ref(appointment.get("booking_id")),
        "notes": appointment.get("notes") or "",
    }


class AppointmentDesk:
    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        self.appointments = database.get_collection("appointments")
        self.bookings = database.get_collection("slot_bookings")

    async def _load(self, appointment_id: str) -> Dict[str, Any]:
        appointment = await self.appointments.find_one(id_filter(appointment_id))
        if not appointment:
            raise RecordNotFound("Appointment not found")
        return appointment

    async def find_page(
        self,
        status: AppointmentStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {"status": status} if status else {}
        total = await self.appointments.count_documents(query)
        cursor = (
            self.appointments.find(query)
            .sort("appointment_date", 1)
            .skip((page - 1) * page_size)
            .limit(page_size)
        )
        items = [appointment_document(appointment) async for appointment in cursor]
        return {"items": items, "total": total, "page": page, "page_size": page_size}

    async def confirm(self, appointment_id: str, actor: str) -> Dict[str, Any]:
        """Confirm the appointment and open a pending registration for it."""
        appointment = await self._load(appointment_id)
        if (appointment.get("status") or "pending").lower() not in ("pending", "rescheduled"):
            raise TransitionNotAllowed(f"Cannot confirm an appointment that is {appointment.get('status')}")

        now = datetime.utcnow()
        await self.appointments.update_one(
            {"_id": appointment["_id"]},
            {"$set": {"status": "confirmed", "updated_at": now, "last_updated_by": actor}},
        )
        booking = {
            "event_id": str(appointment["_id"]),
            "event_title": "From appointment",
            "event_location": appointment.get("hospital_name"),
            "hospital_id": ref(appointment.get("hospital_id")),
            "hospital_name": appointment.get("hospital_name"),
            "user_id": ref(appointment.get("user_id")),
            "donor_blood_type": appointment.get("blood_type"),
            "selected_time": appointment.get("time_slot"),
            "booking_date": appointment.get("appointment_date"),
            "booking_status": RAW_STATUS[RegistrationStatus.PENDING],
            "booked_at": now,
            "updated_at": now,
            "donation_id": None,
            "blood_used": None,
            "version": 0,
            "created_by": actor,
        }
        result = await self.bookings.insert_one(booking)
        await self.appointments.update_one(
            {"_id": appointment["_id"]},
            {"$set": {"booking_id": str(result.inserted_id)}},
        )
        logger.info("Appointment {} confirmed by {}; registration {} opened", appointment["_id"], actor, result.inserted_id)
        return appointment_document(await self._load(appointment_id))

    async def cancel(self, appointment_id: str, actor: str) -> Dict[str, Any]:
        appointment = await self._load(appointment_id)
        if (appointment.get("status") or "pending").lower() == "cancelled":
            raise TransitionNotAllowed("Appointment is already cancelled")
        await self.appointments.update_one(
            {"_id": appointment["_id"]},
            {"$set": {"status": "cancelled", "updated_at": datetime.utcnow(), "last_updated_by": actor}},
        )
        logger.info("Appointment {} cancelled by {}", appointment["_id"], actor)
        return appointment_document(await self._load(appointment_id))

    async def reschedule(self, appointment_id: str, payload: RescheduleRequest, actor: str) -> Dict[str, Any]:
        appointment = await self._load(appointment_id)
        if (appointment.get("status") or "pending").lower() == "cancelled":
            raise TransitionNotAllowed("Cannot reschedule a cancelled appointment")
        await self.appointments.update_one(
            {"_id": appointment["_id"]},
            {
                "$set": {
                    "status": "rescheduled",
                    "appointment_date": datetime.combine(payload.appointment_date, time.min),
                    "time_slot": payload.time_slot,
                    "updated_at": datetime.utcnow(),
                    "last_updated_by": actor,
                }
            },
        )
        logger.info("Appointment {} rescheduled to {} {} by {}", appointment["_id"], payload.appointment_date, payload.time_slot, actor)
        return appointment_document(await self._load(appointment_id))
