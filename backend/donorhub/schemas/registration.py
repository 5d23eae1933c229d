from __future__ import annotations

from typing import Any, Dict

from ..models.registration import display_status
from ..utils.documents import as_datetime, ref


def donation_document(donation: Dict[str, Any], fallback_blood_type: str = "Unknown") -> Dict[str, Any]:
    return {
        "id": str(donation.get("_id")),
        "serial_number": donation.get("serial_number") or "",
        "amount_ml": donation.get("amount_ml"),
        "blood_type": donation.get("blood_type") or fallback_blood_type,
        "expiry_date": as_datetime(donation.get("expiry_date")),
        "donation_date": as_datetime(donation.get("donation_date")),
        "status": donation.get("status") or "stored",
        "used": bool(donation.get("used", False)),
        "used_at": as_datetime(donation.get("used_at")),
        "used_hospital_id": ref(donation.get("used_hospital_id")),
        "used_hospital_name": donation.get("used_hospital_name"),
    }


def registration_document(
    booking: Dict[str, Any],
    donation: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    walk_in = not booking.get("user_id") or booking.get("user_id") == "walk_in"
    blood_type = booking.get("donor_blood_type") or booking.get("blood_type") or "Unknown"
    return {
        "_id": str(booking.get("_id")),
        "event_id": ref(booking.get("event_id")),
        "event_title": booking.get("event_title"),
        "user_id": ref(booking.get("user_id")),
        "donor_name": booking.get("donor_name") or ("Walk-in Donor" if walk_in else "Registered Donor"),
        "donor_email": booking.get("donor_email") or "",
        "donor_phone": booking.get("donor_phone") or "",
        "blood_type": blood_type,
        "selected_time": booking.get("selected_time"),
        "booked_at": as_datetime(booking.get("booked_at")),
        "status": display_status(booking.get("booking_status")),
        "rejection_reason": booking.get("rejection_reason"),
        "special_notes": booking.get("special_notes") or "",
        "hospital_id": ref(booking.get("hospital_id")),
        "hospital_name": booking.get("hospital_name"),
        "donation_id": ref(booking.get("donation_id")),
        "donation": donation_document(donation, blood_type) if donation else None,
        "blood_used": bool(booking.get("blood_used", False)),
        "version": booking.get("version", 0),
    }
