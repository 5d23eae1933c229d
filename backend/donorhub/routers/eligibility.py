from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..database import get_database
from ..models.eligibility import EligibilityDecision, EligibilityList, EligibilityRequest, EligibilityView
from ..models.user import UserPublic
from ..routers.auth import require_roles
from ..utils.logging import store_unavailable
from ..utils.notifications import broadcast
from ..workflows.eligibility import EligibilityReview

router = APIRouter(prefix="/eligibility", tags=["eligibility"])
StaffUser = Annotated[UserPublic, Depends(require_roles("admin", "staff"))]


async def get_review(database: AsyncIOMotorDatabase = Depends(get_database)) -> EligibilityReview:
    return EligibilityReview(database)


@router.get("/", response_model=EligibilityList)
async def list_requests(
    _: StaffUser,
    view: EligibilityView = "pending",
    review: EligibilityReview = Depends(get_review),
) -> EligibilityList:
    try:
        items = await review.list(view)
    except PyMongoError as exc:
        raise store_unavailable("list_eligibility_requests", exc) from exc
    return EligibilityList(requests=[EligibilityRequest(**item) for item in items])


@router.post("/{request_id}/decision", response_model=EligibilityRequest)
async def decide_request(
    user: StaffUser,
    request_id: str,
    payload: EligibilityDecision,
    review: EligibilityReview = Depends(get_review),
) -> EligibilityRequest:
    try:
        decided = await review.decide(request_id, payload, user.id)
    except PyMongoError as exc:
        raise store_unavailable("decide_eligibility_request", exc) from exc
    await broadcast(
        router.manager,
        "eligibility_updated",
        {"eligibility_id": decided["_id"], "status": decided["display_status"]},
    )
    return EligibilityRequest(**decided)


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def archive_request(
    user: StaffUser,
    request_id: str,
    review: EligibilityReview = Depends(get_review),
) -> None:
    try:
        await review.archive(request_id, user.id)
    except PyMongoError as exc:
        raise store_unavailable("archive_eligibility_request", exc) from exc


def init_router(manager) -> None:
    router.manager = manager
