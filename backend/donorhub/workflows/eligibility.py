from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..errors import RecordNotFound
from ..models.eligibility import (
    DECISION_CODES,
    OUTCOMES_BY_CODE,
    PENDING_REVIEW,
    EligibilityDecision,
    EligibilityOutcome,
    EligibilityView,
)
from ..utils.documents import id_filter
from ..utils.notifications import notify_donor

POSITIVE_QUESTION = "are you feeling well today"


def concerning_answers(answers: Dict[str, Any]) -> List[str]:
    """Questions whose answer warrants a closer look.

    "Are you feeling well today?" is concerning when answered false; every
    other question is concerning when answered true.
    """
    concerning = []
    for question, answer in answers.items():
        positive = POSITIVE_QUESTION in question.lower()
        if (not positive and answer is True) or (positive and answer is False):
            concerning.append(question if len(question) <= 50 else question[:47] + "...")
    return concerning


def eligibility_display_status(request: Dict[str, Any]) -> str:
    decision = request.get("admin_decision")
    if decision:
        outcome = OUTCOMES_BY_CODE.get(decision)
        return outcome.value if outcome else "Unknown"
    return request.get("display_status") or PENDING_REVIEW


def decision_message(outcome: EligibilityOutcome, notes: str) -> str:
    if outcome is EligibilityOutcome.ELIGIBLE:
        return f"Your eligibility status has been approved. Reason: {notes}"
    if outcome is EligibilityOutcome.TEMPORARILY_DEFERRED:
        return f"Your eligibility is temporarily deferred. Reason: {notes}"
    return f"Your eligibility status: Permanently Ineligible. Reason: {notes}"


class EligibilityReview:
    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        self.database = database
        self.requests = database.get_collection("eligibility_requests")
        self.profiles = database.get_collection("donor_profiles")

    async def _document(self, request: Dict[str, Any]) -> Dict[str, Any]:
        user_id = request.get("user_id")
        profile = await self.profiles.find_one(id_filter(user_id)) if user_id else None
        answers = request.get("answers") or {}
        return {
            "_id": str(request["_id"]),
            "user_id": user_id,
            "donor_name": (profile or {}).get("full_name") or request.get("user_name") or "Unknown",
            "answers": answers,
            "concerning_answers": concerning_answers(answers),
            "submitted_date": request.get("submitted_date"),
            "display_status": eligibility_display_status(request),
            "admin_notes": request.get("admin_notes") or "",
            "decision_date": request.get("decision_date"),
            "decided_by": request.get("decided_by"),
            "archived": bool(request.get("archived", False)),
        }

    async def list(self, view: EligibilityView = "pending") -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"archived": {"$ne": True}}
        if view == "pending":
            query["admin_decision"] = {"$nin": list(DECISION_CODES.values())}
        items = []
        async for request in self.requests.find(query).sort("submitted_date", -1):
            document = await self._document(request)
            if view == "pending" and document["display_status"] != PENDING_REVIEW:
                continue
            items.append(document)
        return items

    async def decide(self, request_id: str, decision: EligibilityDecision, actor: str) -> Dict[str, Any]:
        """Store the staff decision, then tell the donor.

        The decision write and the notification are independent; a lost
        notification leaves the decision in place.
        """
        request = await self.requests.find_one(id_filter(request_id))
        if not request:
            raise RecordNotFound("Eligibility request not found")

        await self.requests.update_one(
            {"_id": request["_id"]},
            {
                "$set": {
                    "admin_decision": DECISION_CODES[decision.status],
                    "admin_notes": decision.notes,
                    "decision_date": datetime.utcnow(),
                    "decided_by": actor,
                }
            },
        )
        logger.info("Eligibility request {} decided as {} by {}", request["_id"], decision.status.value, actor)

        await notify_donor(
            self.database,
            request.get("user_id"),
            "Eligibility Status Updated",
            decision_message(decision.status, decision.notes),
            {
                "eligibility_id": str(request["_id"]),
                "old_status": eligibility_display_status(request),
                "status": decision.status.value,
                "notes": decision.notes,
            },
            notification_type="eligibility_update",
            created_by=actor,
        )
        updated = await self.requests.find_one({"_id": request["_id"]})
        return await self._document(updated)

    async def archive(self, request_id: str, actor: str) -> None:
        result = await self.requests.update_one(
            id_filter(request_id),
            {"$set": {"archived": True, "archived_at": datetime.utcnow(), "archived_by": actor}},
        )
        if result.matched_count == 0:
            raise RecordNotFound("Eligibility request not found")
        logger.info("Eligibility request {} archived by {}", request_id, actor)
