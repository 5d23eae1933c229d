from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field, field_validator


class RegistrationStatus(str, Enum):
    REGISTERED = "Registered"
    PENDING = "Pending"
    APPROVED = "Approved"
    CHECKED_IN = "Checked-In"
    COMPLETED = "Completed"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


# Raw ``booking_status`` values as written by the mobile app and this service.
RAW_STATUS = {
    RegistrationStatus.REGISTERED: "registered",
    RegistrationStatus.PENDING: "pending",
    RegistrationStatus.APPROVED: "confirmed",
    RegistrationStatus.CHECKED_IN: "checked_in",
    RegistrationStatus.COMPLETED: "completed",
    RegistrationStatus.REJECTED: "rejected",
    RegistrationStatus.CANCELLED: "cancelled",
}
DISPLAY_STATUS = {raw: display for display, raw in RAW_STATUS.items()}

TERMINAL_STATUSES = {
    RegistrationStatus.COMPLETED,
    RegistrationStatus.REJECTED,
    RegistrationStatus.CANCELLED,
}


def display_status(raw: str | None) -> RegistrationStatus:
    if not raw:
        return RegistrationStatus.PENDING
    return DISPLAY_STATUS.get(raw.strip().lower(), RegistrationStatus.PENDING)


class DonationDetails(BaseModel):
    id: str
    serial_number: str = ""
    amount_ml: int | None = None
    blood_type: str = "Unknown"
    expiry_date: datetime | None = None
    donation_date: datetime | None = None
    status: str = "stored"
    used: bool = False
    used_at: datetime | None = None
    used_hospital_id: str | None = None
    used_hospital_name: str | None = None


class Registration(BaseModel):
    id: str = Field(alias="_id")
    event_id: str | None = None
    event_title: str | None = None
    user_id: str | None = None
    donor_name: str = "Walk-in Donor"
    donor_email: str = ""
    donor_phone: str = ""
    blood_type: str = "Unknown"
    selected_time: str | None = None
    booked_at: datetime | None = None
    status: RegistrationStatus
    rejection_reason: str | None = None
    special_notes: str = ""
    hospital_id: str | None = None
    hospital_name: str | None = None
    donation_id: str | None = None
    donation: DonationDetails | None = None
    blood_used: bool = False
    version: int = 0


class RegistrationPage(BaseModel):
    items: List[Registration]
    total: int
    page: int
    page_size: int


class RegistrationStats(BaseModel):
    total: int
    by_status: Dict[RegistrationStatus, int]


class TransitionRequest(BaseModel):
    expected_version: int | None = None


class RejectRequest(TransitionRequest):
    reason: str = ""


class CompletionRequest(TransitionRequest):
    serial_number: str
    amount_ml: int = Field(gt=0)
    expiry_date: date

    @field_validator("serial_number")
    @classmethod
    def _serial_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("serial_number is required")
        return value
