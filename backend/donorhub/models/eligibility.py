from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal

from pydantic import BaseModel, Field, field_validator


class EligibilityOutcome(str, Enum):
    ELIGIBLE = "Eligible"
    TEMPORARILY_DEFERRED = "Temporarily Deferred"
    PERMANENTLY_INELIGIBLE = "Permanently Ineligible"


# Stored ``admin_decision`` values.
DECISION_CODES = {
    EligibilityOutcome.ELIGIBLE: "approved",
    EligibilityOutcome.TEMPORARILY_DEFERRED: "deferred",
    EligibilityOutcome.PERMANENTLY_INELIGIBLE: "rejected",
}
OUTCOMES_BY_CODE = {code: outcome for outcome, code in DECISION_CODES.items()}

PENDING_REVIEW = "Pending Review"

EligibilityView = Literal["pending", "all"]


class EligibilityRequest(BaseModel):
    id: str = Field(alias="_id")
    user_id: str | None = None
    donor_name: str = "Unknown"
    answers: Dict[str, bool] = {}
    concerning_answers: List[str] = []
    submitted_date: datetime | None = None
    display_status: str = PENDING_REVIEW
    admin_notes: str = ""
    decision_date: datetime | None = None
    decided_by: str | None = None
    archived: bool = False


class EligibilityList(BaseModel):
    requests: List[EligibilityRequest]


class EligibilityDecision(BaseModel):
    status: EligibilityOutcome
    notes: str

    @field_validator("notes")
    @classmethod
    def _notes_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("notes are required for an eligibility decision")
        return value
