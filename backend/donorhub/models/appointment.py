from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal

from pydantic import BaseModel, Field


AppointmentStatus = Literal["pending", "confirmed", "cancelled", "rescheduled"]


class Appointment(BaseModel):
    id: str = Field(alias="_id")
    user_id: str | None = None
    hospital_id: str | None = None
    hospital_name: str = "Unknown Location"
    appointment_date: datetime | None = None
    time_slot: str | None = None
    status: AppointmentStatus = "pending"
    booking_id: str | None = None
    notes: str = ""


class AppointmentPage(BaseModel):
    items: List[Appointment]
    total: int
    page: int
    page_size: int


class RescheduleRequest(BaseModel):
    appointment_date: date
    time_slot: str = Field(min_length=1)
