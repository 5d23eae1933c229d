from __future__ import annotations

from typing import Any, Dict, Iterable, List

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..models.inventory import HospitalResolution, ResolutionTier
from ..utils.documents import id_filter

# Events written by different app versions spell the hospital fields differently.
EVENT_HOSPITAL_ID_FIELDS = ("assigned_hospital_id", "hospital_id", "assignedHospitalId", "hospitalId")
EVENT_HOSPITAL_NAME_FIELDS = ("assigned_hospital_name", "hospital_name", "assignedHospitalName", "hospitalName")


def first_field(document: Dict[str, Any], fields: Iterable[str]) -> Any:
    for field in fields:
        value = document.get(field)
        if value:
            return value
    return None


def match_hospital_name(name: str, hospitals: List[Dict[str, Any]]) -> Dict[str, Any] | None:
    """Exact case-insensitive match first, then containment in either direction."""
    wanted = name.strip().lower()
    if not wanted:
        return None
    for hospital in hospitals:
        if (hospital.get("name") or "").strip().lower() == wanted:
            return hospital
    for hospital in hospitals:
        candidate = (hospital.get("name") or "").strip().lower()
        if candidate and (wanted in candidate or candidate in wanted):
            return hospital
    return None


async def resolve_hospital(database: AsyncIOMotorDatabase, booking: Dict[str, Any]) -> HospitalResolution:
    hospitals = database.get_collection("hospitals")
    booking_id = booking.get("_id")

    event = None
    if booking.get("event_id"):
        event = await database.get_collection("blood_drive_events").find_one(id_filter(booking["event_id"]))
    if event is None:
        logger.warning("Registration {} has no readable event; skipping event hospital tiers", booking_id)
    else:
        hospital_id = first_field(event, EVENT_HOSPITAL_ID_FIELDS)
        if hospital_id:
            hospital = await hospitals.find_one(id_filter(hospital_id))
            if hospital:
                logger.info("Hospital for registration {} resolved from event hospital id {}", booking_id, hospital_id)
                return HospitalResolution(hospital, ResolutionTier.EVENT_HOSPITAL_ID)
            logger.warning("Event {} references missing hospital {}", event.get("_id"), hospital_id)

        hospital_name = first_field(event, EVENT_HOSPITAL_NAME_FIELDS)
        if hospital_name:
            hospital = match_hospital_name(hospital_name, [doc async for doc in hospitals.find({})])
            if hospital:
                logger.warning(
                    "Hospital for registration {} inferred from event hospital name '{}' -> {}",
                    booking_id,
                    hospital_name,
                    hospital.get("_id"),
                )
                return HospitalResolution(hospital, ResolutionTier.EVENT_HOSPITAL_NAME)

    if booking.get("hospital_id"):
        hospital = await hospitals.find_one(id_filter(booking["hospital_id"]))
        if hospital:
            logger.warning("Hospital for registration {} inferred from the registration itself", booking_id)
            return HospitalResolution(hospital, ResolutionTier.REGISTRATION_HOSPITAL_ID)

    fallback = [doc async for doc in hospitals.find({}).sort("_id", 1).limit(1)]
    if fallback:
        logger.warning(
            "Hospital for registration {} defaulted to first hospital {}",
            booking_id,
            fallback[0].get("_id"),
        )
        return HospitalResolution(fallback[0], ResolutionTier.FIRST_HOSPITAL)

    logger.error("No hospital could be resolved for registration {}", booking_id)
    return HospitalResolution(None)
