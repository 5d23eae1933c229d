from __future__ import annotations

from datetime import date, datetime, time
from typing import List, Literal

from pydantic import BaseModel, Field, model_validator


EventStatus = Literal["active", "cancelled", "completed"]
LocationType = Literal["hospital", "community", "school", "corporate", "other"]


class Event(BaseModel):
    id: str = Field(alias="_id")
    title: str
    description: str = ""
    start_date: datetime | None = None
    end_date: datetime | None = None
    start_time: str | None = None
    end_time: str | None = None
    location: str = ""
    location_type: str = "other"
    location_hospital_id: str | None = None
    location_hospital_name: str | None = None
    organizer_name: str = ""
    expected_capacity: int = 0
    slot_capacity: int = 0
    assigned_hospital_id: str | None = None
    assigned_hospital_name: str | None = None
    current_participants: int = 0
    status: str = "active"
    booking_count: int = 0
    created_at: datetime | None = None
    created_by: str | None = None


class EventList(BaseModel):
    events: List[Event]


class EventCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    start_date: date
    end_date: date
    start_time: time
    end_time: time
    location: str = ""
    location_type: LocationType = "other"
    location_hospital_id: str | None = None
    organizer_name: str = ""
    expected_capacity: int = Field(default=0, ge=0)
    slot_capacity: int = Field(gt=0)
    assigned_hospital_id: str = Field(min_length=1)

    @model_validator(mode="after")
    def check_window(self) -> "EventCreate":
        if (self.end_date, self.end_time) <= (self.start_date, self.start_time):
            raise ValueError("Event must end after it starts")
        return self


class EventUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    location: str | None = None
    location_type: LocationType | None = None
    location_hospital_id: str | None = None
    organizer_name: str | None = None
    expected_capacity: int | None = Field(default=None, ge=0)
    slot_capacity: int | None = Field(default=None, gt=0)
    assigned_hospital_id: str | None = Field(default=None, min_length=1)
    status: EventStatus | None = None


class HospitalAssignment(BaseModel):
    hospital_id: str = Field(min_length=1)


class EventDeletion(BaseModel):
    event_id: str
    deleted_bookings: int
