from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal

from pydantic import BaseModel, Field


BloodRequestStatus = Literal["pending", "approved", "rejected"]
Urgency = Literal["low", "medium", "high", "critical"]


class BloodRequest(BaseModel):
    id: str = Field(alias="_id")
    request_code: str
    patient_name: str = "N/A"
    blood_type: str = "N/A"
    urgency: str = "medium"
    status: str = "pending"
    location: str = "N/A"
    requester_name: str = "N/A"
    user_id: str | None = None
    reason: str = "No reason provided"
    rejection_reason: str = ""
    admin_notes: str = ""
    created_at: datetime | None = None


class BloodRequestList(BaseModel):
    requests: List[BloodRequest]
    counts: Dict[str, int]


class BloodRequestDecision(BaseModel):
    status: Literal["approved", "rejected"]
    reason: str = ""
    admin_notes: str | None = None


class UrgencyUpdate(BaseModel):
    urgency: Urgency


class BloodRequestOutcome(BaseModel):
    request: BloodRequest
    donors_alerted: int = 0
