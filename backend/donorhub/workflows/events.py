from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Dict, List

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..database import transaction
from ..errors import RecordNotFound, ValidationFailed
from ..models.event import EventCreate, EventStatus, EventUpdate
from ..utils.documents import as_datetime, id_filter, ref
from .hospital_resolver import EVENT_HOSPITAL_ID_FIELDS, EVENT_HOSPITAL_NAME_FIELDS, first_field

# The web dashboard stored dates as dd/mm/yyyy and times as "8:00 AM".
LEGACY_DATE_FORMAT = "%d/%m/%Y"
LEGACY_TIME_FORMATS = ("%I:%M %p", "%H:%M")


def event_date(value: Any) -> datetime | None:
    if isinstance(value, str) and "/" in value:
        try:
            return datetime.strptime(value.strip(), LEGACY_DATE_FORMAT)
        except ValueError:
            return None
    return as_datetime(value)


def event_time(value: Any) -> time | None:
    if isinstance(value, time):
        return value
    if not isinstance(value, str):
        return None
    for pattern in LEGACY_TIME_FORMATS:
        try:
            return datetime.strptime(value.strip().upper(), pattern).time()
        except ValueError:
            continue
    return None


def _stored_date(value: date) -> datetime:
    return datetime.combine(value, time.min)


def _stored_time(value: time) -> str:
    return value.strftime("%H:%M")


def bookings_for(event_id: str) -> Dict[str, Any]:
    """Bookings reference their event as ``event_id`` or, from the mobile app, ``eventId``."""
    return {"$or": [{"event_id": event_id}, {"eventId": event_id}]}


def event_document(event: Dict[str, Any], booking_count: int = 0) -> Dict[str, Any]:
    return {
        "_id": str(event["_id"]),
        "title": event.get("title") or "Untitled event",
        "description": event.get("description") or "",
        "start_date": event_date(event.get("start_date") or event.get("startDate")),
        "end_date": event_date(event.get("end_date") or event.get("endDate")),
        "start_time": event.get("start_time") or event.get("startTime"),
        "end_time": event.get("end_time") or event.get("endTime"),
        "location": event.get("location") or "",
        "location_type": event.get("location_type") or event.get("locationType") or "other",
        "location_hospital_id": ref(event.get("location_hospital_id") or event.get("locationHospitalId")),
        "location_hospital_name": event.get("location_hospital_name") or event.get("locationHospitalName"),
        "organizer_name": event.get("organizer_name") or event.get("organizerName") or "",
        "expected_capacity": int(event.get("expected_capacity") or event.get("expectedCapacity") or 0),
        "slot_capacity": int(event.get("slot_capacity") or event.get("slotCapacity") or 0),
        "assigned_hospital_id": ref(first_field(event, EVENT_HOSPITAL_ID_FIELDS)),
        "assigned_hospital_name": first_field(event, EVENT_HOSPITAL_NAME_FIELDS),
        "current_participants": int(event.get("current_participants") or event.get("currentParticipants") or 0),
        "status": (event.get("status") or "active").lower(),
        "booking_count": booking_count,
        "created_at": as_datetime(event.get("created_at") or event.get("createdAt")),
        "created_by": ref(event.get("created_by") or event.get("createdBy")),
    }


class EventPlanner:
    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        self.database = database
        self.events = database.get_collection("blood_drive_events")
        self.bookings = database.get_collection("slot_bookings")
        self.hospitals = database.get_collection("hospitals")

    async def _load(self, event_id: str) -> Dict[str, Any]:
        event = await self.events.find_one(id_filter(event_id))
        if not event:
            raise RecordNotFound("Event not found")
        return event

    async def _hospital(self, hospital_id: str) -> Dict[str, Any]:
        hospital = await self.hospitals.find_one(id_filter(hospital_id))
        if not hospital:
            raise RecordNotFound(f"Hospital {hospital_id} not found")
        return hospital

    async def _document(self, event: Dict[str, Any]) -> Dict[str, Any]:
        count = await self.bookings.count_documents(bookings_for(str(event["_id"])))
        return event_document(event, count)

    async def get(self, event_id: str) -> Dict[str, Any]:
        return await self._document(await self._load(event_id))

    async def list(self, status: EventStatus | None = None) -> List[Dict[str, Any]]:
        events = [event async for event in self.events.find({})]
        documents = [await self._document(event) for event in events]
        if status:
            documents = [document for document in documents if document["status"] == status]
        documents.sort(key=lambda document: (document["start_date"] is None, document["start_date"] or datetime.min))
        return documents

    async def _location_fields(self, location_type: str, hospital_id: str | None, location: str) -> Dict[str, Any]:
        if location_type != "hospital" or not hospital_id:
            return {"location_hospital_id": None, "location_hospital_name": None}
        hospital = await self._hospital(hospital_id)
        return {
            "location_hospital_id": str(hospital["_id"]),
            "location_hospital_name": hospital.get("name"),
            "location": location or hospital.get("name") or "",
        }

    async def create(self, payload: EventCreate, actor: str) -> Dict[str, Any]:
        destination = await self._hospital(payload.assigned_hospital_id)
        event = {
            "title": payload.title,
            "description": payload.description,
            "start_date": _stored_date(payload.start_date),
            "end_date": _stored_date(payload.end_date),
            "start_time": _stored_time(payload.start_time),
            "end_time": _stored_time(payload.end_time),
            "location": payload.location,
            "location_type": payload.location_type,
            "organizer_name": payload.organizer_name,
            "expected_capacity": payload.expected_capacity,
            "slot_capacity": payload.slot_capacity,
            "assigned_hospital_id": str(destination["_id"]),
            "assigned_hospital_name": destination.get("name"),
            "current_participants": 0,
            "status": "active",
            "created_at": datetime.utcnow(),
            "created_by": actor,
        }
        event.update(await self._location_fields(payload.location_type, payload.location_hospital_id, payload.location))
        result = await self.events.insert_one(event)
        logger.info("Event {} '{}' created by {}", result.inserted_id, payload.title, actor)
        return await self.get(str(result.inserted_id))

    async def update(self, event_id: str, payload: EventUpdate, actor: str) -> Dict[str, Any]:
        event = await self._load(event_id)
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return await self._document(event)

        current = event_document(event)
        start = (
            changes.get("start_date") or (current["start_date"] and current["start_date"].date()),
            changes.get("start_time") or event_time(current["start_time"]),
        )
        end = (
            changes.get("end_date") or (current["end_date"] and current["end_date"].date()),
            changes.get("end_time") or event_time(current["end_time"]),
        )
        if None not in start and None not in end and end <= start:
            raise ValidationFailed("Event must end after it starts")

        for field in ("start_date", "end_date"):
            if field in changes:
                changes[field] = _stored_date(changes[field])
        for field in ("start_time", "end_time"):
            if field in changes:
                changes[field] = _stored_time(changes[field])
        if "assigned_hospital_id" in changes:
            destination = await self._hospital(changes["assigned_hospital_id"])
            changes["assigned_hospital_id"] = str(destination["_id"])
            changes["assigned_hospital_name"] = destination.get("name")
        if "location_type" in changes or "location_hospital_id" in changes:
            changes.update(
                await self._location_fields(
                    changes.get("location_type", current["location_type"]),
                    changes.get("location_hospital_id", current["location_hospital_id"]),
                    changes.get("location", current["location"]),
                )
            )

        changes.update({"updated_at": datetime.utcnow(), "last_updated_by": actor})
        await self.events.update_one({"_id": event["_id"]}, {"$set": changes})
        logger.info("Event {} updated by {}: {}", event["_id"], actor, sorted(changes))
        return await self.get(event_id)

    async def assign_hospital(self, event_id: str, hospital_id: str, actor: str) -> Dict[str, Any]:
        """Point the event at the hospital that receives its donated blood."""
        event = await self._load(event_id)
        hospital = await self._hospital(hospital_id)
        await self.events.update_one(
            {"_id": event["_id"]},
            {
                "$set": {
                    "assigned_hospital_id": str(hospital["_id"]),
                    "assigned_hospital_name": hospital.get("name"),
                    "updated_at": datetime.utcnow(),
                    "last_updated_by": actor,
                }
            },
        )
        logger.info("Event {} assigned to hospital {} by {}", event["_id"], hospital["_id"], actor)
        return await self.get(event_id)

    async def delete(self, event_id: str, actor: str) -> Dict[str, Any]:
        """Delete the event together with every booking made against it."""
        event = await self._load(event_id)
        async with transaction(self.database) as session:
            removed = await self.bookings.delete_many(bookings_for(str(event["_id"])), session=session)
            await self.events.delete_one({"_id": event["_id"]}, session=session)
        logger.info("Event {} deleted by {} with {} booking(s)", event["_id"], actor, removed.deleted_count)
        return {"event_id": str(event["_id"]), "deleted_bookings": removed.deleted_count}
