from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from ..errors import ConcurrentModification, RecordNotFound, TransitionNotAllowed
from ..models.blood_request import BloodRequestDecision, BloodRequestStatus, Urgency
from ..utils.documents import as_datetime, id_filter, ref
from ..utils.notifications import notify_donor


def request_code(request: Dict[str, Any]) -> str:
    """Short reference shown to staff, e.g. ``BR-65F2-2026``."""
    created = as_datetime(request.get("created_at")) or datetime.utcnow()
    return f"BR-{str(request['_id'])[:4].upper()}-{created.year}"


def request_document(request: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "_id": str(request["_id"]),
        "request_code": request_code(request),
        "patient_name": request.get("patient_name") or "N/A",
        "blood_type": request.get("blood_group") or request.get("blood_type") or "N/A",
        "urgency": (request.get("urgency") or "medium").lower(),
        "status": (request.get("status") or "pending").strip().lower(),
        "location": request.get("patient_location") or "N/A",
        "requester_name": request.get("requester_name") or "N/A",
        "user_id": ref(request.get("user_id")),
        "reason": request.get("reasons") or "No reason provided",
        "rejection_reason": request.get("rejection_reason") or "",
        "admin_notes": request.get("admin_notes") or "",
        "created_at": as_datetime(request.get("created_at")),
    }


def _matches(document: Dict[str, Any], search: str) -> bool:
    term = search.strip().lower()
    fields = ("patient_name", "request_code", "requester_name", "location")
    return any(term in (document.get(field) or "").lower() for field in fields)


class BloodRequestDesk:
    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        self.database = database
        self.requests = database.get_collection("blood_requests")
        self.profiles = database.get_collection("donor_profiles")

    async def _load(self, request_id: str) -> Dict[str, Any]:
        request = await self.requests.find_one(id_filter(request_id))
        if not request:
            raise RecordNotFound("Blood request not found")
        return request

    async def list(
        self,
        status: BloodRequestStatus | None = None,
        blood_type: str | None = None,
        urgency: Urgency | None = None,
        search: str | None = None,
    ) -> Dict[str, Any]:
        cursor = self.requests.find({}).sort("created_at", -1)
        everything = [request_document(request) async for request in cursor]
        counts = {
            "total": len(everything),
            "pending": sum(1 for item in everything if item["status"] == "pending"),
            "approved": sum(1 for item in everything if item["status"] == "approved"),
            "rejected": sum(1 for item in everything if item["status"] == "rejected"),
            "critical": sum(1 for item in everything if item["urgency"] == "critical"),
        }
        items = everything
        if status:
            items = [item for item in items if item["status"] == status]
        if blood_type:
            items = [item for item in items if item["blood_type"] == blood_type]
        if urgency:
            items = [item for item in items if item["urgency"] == urgency]
        if search and search.strip():
            items = [item for item in items if _matches(item, search)]
        return {"requests": items, "counts": counts}

    async def get(self, request_id: str) -> Dict[str, Any]:
        return request_document(await self._load(request_id))

    async def set_urgency(self, request_id: str, urgency: Urgency, actor: str) -> Dict[str, Any]:
        request = await self._load(request_id)
        await self.requests.update_one(
            {"_id": request["_id"]},
            {"$set": {"urgency": urgency.capitalize(), "updated_at": datetime.utcnow(), "last_updated_by": actor}},
        )
        logger.info("Blood request {} urgency set to {} by {}", request["_id"], urgency, actor)
        return await self.get(request_id)

    async def decide(self, request_id: str, payload: BloodRequestDecision, actor: str) -> Dict[str, Any]:
        """Approve or reject a pending request and tell the people it concerns.

        The requester always hears the outcome. An approval also alerts every
        donor whose profile carries the requested blood type.
        """
        request = await self._load(request_id)
        raw_status = request.get("status")
        if (raw_status or "pending").strip().lower() != "pending":
            raise TransitionNotAllowed(f"Cannot {payload.status[:-1]} a request that is {raw_status}")

        changes: Dict[str, Any] = {
            "status": payload.status,
            "updated_at": datetime.utcnow(),
            "last_updated_by": actor,
        }
        if payload.status == "rejected" and payload.reason:
            changes["rejection_reason"] = payload.reason
        if payload.admin_notes is not None:
            changes["admin_notes"] = payload.admin_notes
        result = await self.requests.update_one({"_id": request["_id"], "status": raw_status}, {"$set": changes})
        if result.modified_count == 0:
            raise ConcurrentModification("Blood request was decided by another session")
        logger.info("Blood request {} {} by {}", request["_id"], payload.status, actor)

        decided = await self.get(request_id)
        await self._notify_requester(decided, payload, actor)
        alerted = 0
        if payload.status == "approved":
            alerted = await self._alert_donors(decided, actor)
        return {"request": decided, "donors_alerted": alerted}

    async def _notify_requester(self, request: Dict[str, Any], payload: BloodRequestDecision, actor: str) -> None:
        message = f"Your blood request has been {payload.status}."
        if payload.reason:
            message += f" Reason: {payload.reason}"
        if payload.status == "approved":
            notes = payload.reason or "Your blood request has been approved."
        else:
            notes = payload.reason or "Blood request has been processed."
        await notify_donor(
            self.database,
            request["user_id"],
            f"Blood Request {payload.status.capitalize()}",
            message,
            {
                "category": "blood_request",
                "request_id": request["_id"],
                "status": payload.status,
                "reason": payload.reason,
                "blood_type": request["blood_type"],
                "location": request["location"],
                "patient_name": request["patient_name"],
                "notes": notes,
            },
            notification_type="blood_request_status",
            created_by=actor,
        )

    async def _alert_donors(self, request: Dict[str, Any], actor: str) -> int:
        blood_type = request["blood_type"]
        cursor = self.profiles.find({"$or": [{"blood_group": blood_type}, {"blood_type": blood_type}]})
        alerted = 0
        async for profile in cursor:
            donor_id = ref(profile.get("user_id") or profile["_id"])
            if donor_id == request["user_id"]:
                continue
            notification_id = await notify_donor(
                self.database,
                donor_id,
                "Urgent Blood Request",
                f"Urgent: {blood_type} blood needed at {request['location']}. Patient: {request['patient_name']}.",
                {
                    "category": "blood_request",
                    "request_id": request["_id"],
                    "blood_type": blood_type,
                    "location": request["location"],
                    "patient_name": request["patient_name"],
                    "urgency": request["urgency"],
                },
                notification_type="blood_request_alert",
                created_by=actor,
            )
            if notification_id:
                alerted += 1
        logger.info("Blood request {} alerted {} matching donor(s)", request["_id"], alerted)
        return alerted
