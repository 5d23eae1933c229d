from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field


BLOOD_TYPES = ["O-", "O+", "A-", "A+", "B-", "B+", "AB-", "AB+"]


class StockLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ExpiryStatus(str, Enum):
    EXPIRED = "Expired"
    CRITICAL = "Critical"
    URGENT = "Urgent"
    WARNING = "Warning"
    GOOD = "Good"
    UNKNOWN = "Unknown"


class ResolutionTier(str, Enum):
    EVENT_HOSPITAL_ID = "event_hospital_id"
    EVENT_HOSPITAL_NAME = "event_hospital_name"
    REGISTRATION_HOSPITAL_ID = "registration_hospital_id"
    FIRST_HOSPITAL = "first_hospital"


@dataclass
class HospitalResolution:
    """Outcome of locating the hospital behind a registration.

    ``confident`` is only true for the event's explicit hospital id; every other
    tier is a best guess over inconsistent upstream data.
    """

    hospital: Dict[str, Any] | None
    tier: ResolutionTier | None = None

    @property
    def resolved(self) -> bool:
        return self.hospital is not None

    @property
    def confident(self) -> bool:
        return self.tier is ResolutionTier.EVENT_HOSPITAL_ID

    @property
    def hospital_id(self) -> str | None:
        return str(self.hospital["_id"]) if self.hospital else None

    @property
    def hospital_name(self) -> str:
        if not self.hospital:
            return "Unknown Hospital"
        return self.hospital.get("name") or "Unknown Hospital"


class InventoryCounter(BaseModel):
    id: str = Field(alias="_id")
    hospital_id: str
    blood_type: str
    quantity: int = 0
    minimum_level: int = 10
    critical_level: int = 5
    thresholds: Dict[str, int] = {}
    version: int = 0
    last_updated: datetime | None = None
    persisted: bool = True


class BloodTypeStock(BaseModel):
    blood_type: str
    quantity: int
    level: StockLevel


class HospitalStockSummary(BaseModel):
    hospital_id: str
    hospital_name: str
    total_units: int
    blood_types: List[BloodTypeStock]


class BloodStockCreate(BaseModel):
    hospital_id: str
    user_id: str | None = None
    donor_name: str = ""
    donor_email: str = ""
    donor_phone: str = ""
    blood_type: str
    serial_number: str = Field(min_length=1)
    amount_ml: int = Field(default=450, gt=0)
    expiry_date: date


class StoredDonation(BaseModel):
    id: str = Field(alias="_id")
    serial_number: str = ""
    blood_type: str = "Unknown"
    amount_ml: int | None = None
    donor_name: str = ""
    hospital_id: str | None = None
    expiry_date: datetime | None = None
    expiry_status: ExpiryStatus
    days_to_expiry: int | None = None
    status: str = "stored"
    used: bool = False


class MarkUsedResult(BaseModel):
    registration_id: str
    donation_id: str
    hospital_id: str
    hospital_name: str
    resolution_tier: ResolutionTier
    blood_type: str
    units_deducted: int
    new_quantity: int
