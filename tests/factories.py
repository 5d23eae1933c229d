from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict


async def seed_hospital(database, hospital_id: str = "H1", name: str = "General Hospital") -> Dict[str, Any]:
    document = {"_id": hospital_id, "name": name}
    await database.get_collection("hospitals").insert_one(document)
    return document


async def seed_event(database, event_id: str = "E1", **fields: Any) -> Dict[str, Any]:
    document = {"_id": event_id, "title": "City Blood Drive", **fields}
    await database.get_collection("blood_drive_events").insert_one(document)
    return document


async def seed_booking(
    database,
    booking_id: str = "R1",
    status: str = "pending",
    user_id: str | None = "donor-1",
    **fields: Any,
) -> Dict[str, Any]:
    document = {
        "_id": booking_id,
        "event_id": "E1",
        "user_id": user_id,
        "donor_name": "Aisha Rahman",
        "donor_email": "aisha@example.com",
        "donor_blood_type": "O+",
        "selected_time": "10:30",
        "booked_at": datetime(2026, 10, 1, 9, 0),
        "booking_status": status,
        "version": 0,
        **fields,
    }
    await database.get_collection("slot_bookings").insert_one(document)
    return document


async def seed_counter(database, hospital_id: str = "H1", blood_type: str = "O+", quantity: int = 3, **fields: Any):
    document = {
        "_id": f"{hospital_id}:{blood_type}",
        "hospital_id": hospital_id,
        "blood_type": blood_type,
        "quantity": quantity,
        "minimum_level": 10,
        "critical_level": 5,
        "version": 0,
        **fields,
    }
    await database.get_collection("blood_stock").insert_one(document)
    return document


async def seed_completed_donation(
    database,
    booking_id: str = "R1",
    donation_id: str = "D1",
    blood_type: str = "O+",
    expires_in_days: int = 30,
    **fields: Any,
) -> Dict[str, Any]:
    """A completed registration with its stored, unused donation record."""
    donation = {
        "_id": donation_id,
        "booking_id": booking_id,
        "event_id": "E1",
        "user_id": "donor-1",
        "blood_type": blood_type,
        "serial_number": "DON-001",
        "amount_ml": 450,
        "donation_date": datetime.utcnow(),
        "expiry_date": datetime.utcnow() + timedelta(days=expires_in_days),
        "status": "stored",
        "used": False,
        **fields,
    }
    await database.get_collection("donations").insert_one(donation)
    await seed_booking(database, booking_id, status="completed", donation_id=donation_id)
    return donation
