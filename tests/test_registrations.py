from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from pymongo.errors import PyMongoError

from donorhub import main
from donorhub.database import get_database
from donorhub.errors import ConcurrentModification
from donorhub.models.registration import CompletionRequest, RegistrationStatus
from donorhub.routers import registrations as registrations_router
from donorhub.workflows.registrations import RegistrationWorkflow, allowed_actions

from .factories import seed_booking, seed_completed_donation, seed_event


async def _notifications(database, user_id="donor-1"):
    return [doc async for doc in database.get_collection("notifications").find({"user_id": user_id})]


async def test_approve_pending_registration(client, database, hub):
    await seed_event(database)
    await seed_booking(database, status="pending")

    response = await client.post("/registrations/R1/approve")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "Approved"
    assert body["version"] == 1
    stored = await database.get_collection("slot_bookings").find_one({"_id": "R1"})
    assert stored["booking_status"] == "confirmed"
    assert stored["last_updated_by"] == "staff-1"
    [notification] = await _notifications(database)
    assert "10:30" in notification["message"]
    assert notification["data"]["old_status"] == "Pending"
    assert notification["data"]["status"] == "approved"
    assert hub.events == [("registration_updated", {"registration_id": "R1", "status": "Approved", "version": 1})]


async def test_approve_refused_outside_pending(client, database):
    await seed_booking(database, status="checked_in")

    response = await client.post("/registrations/R1/approve")

    assert response.status_code == 409
    stored = await database.get_collection("slot_bookings").find_one({"_id": "R1"})
    assert stored["booking_status"] == "checked_in"
    assert stored["version"] == 0
    assert await _notifications(database) == []


async def test_self_registered_donor_has_no_staff_transitions(client, database):
    await seed_booking(database, status="registered")

    assert allowed_actions(RegistrationStatus.REGISTERED) == []
    for action in ("approve", "reject", "check-in", "cancel"):
        response = await client.post(f"/registrations/R1/{action}")
        assert response.status_code == 409


async def test_reject_stores_reason_and_tells_donor(client, database):
    await seed_event(database)
    await seed_booking(database, status="confirmed")

    response = await client.post("/registrations/R1/reject", json={"reason": "Low haemoglobin"})

    assert response.status_code == 200
    assert response.json()["status"] == "Rejected"
    assert response.json()["rejection_reason"] == "Low haemoglobin"
    [notification] = await _notifications(database)
    assert notification["message"].endswith("Reason: Low haemoglobin")
    assert notification["data"]["reason"] == "Low haemoglobin"


async def test_reject_without_reason(client, database):
    await seed_event(database)
    await seed_booking(database, status="pending")

    response = await client.post("/registrations/R1/reject")

    assert response.status_code == 200
    [notification] = await _notifications(database)
    assert notification["message"] == "Your registration for City Blood Drive has been rejected."


async def test_check_in_stamps_time(client, database):
    await seed_booking(database, status="confirmed")

    response = await client.post("/registrations/R1/check-in")

    assert response.status_code == 200
    assert response.json()["status"] == "Checked-In"
    stored = await database.get_collection("slot_bookings").find_one({"_id": "R1"})
    assert stored["checked_in_at"] is not None


async def test_check_in_requires_approval(client, database):
    await seed_booking(database, status="pending")

    response = await client.post("/registrations/R1/check-in")

    assert response.status_code == 409
    assert "Pending" in response.json()["detail"]


async def test_complete_checked_in_registration(client, database):
    await seed_event(database)
    await seed_booking(database, status="checked_in")

    response = await client.post(
        "/registrations/R1/complete",
        json={"serial_number": "DON-001", "amount_ml": "450", "expiry_date": "2025-06-01"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "Completed"
    assert body["donation"]["serial_number"] == "DON-001"
    donations = [doc async for doc in database.get_collection("donations").find({})]
    assert len(donations) == 1
    assert donations[0]["booking_id"] == "R1"
    assert donations[0]["amount_ml"] == 450
    assert donations[0]["status"] == "stored"
    assert donations[0]["used"] is False
    assert body["donation_id"] == str(donations[0]["_id"])
    [notification] = await _notifications(database)
    assert notification["data"]["donation"]["serial_number"] == "DON-001"
    assert notification["data"]["donation_id"] == str(donations[0]["_id"])


async def test_complete_requires_all_fields(client, database):
    await seed_booking(database, status="checked_in")

    missing = await client.post("/registrations/R1/complete", json={"serial_number": "DON-001"})
    blank = await client.post(
        "/registrations/R1/complete",
        json={"serial_number": "  ", "amount_ml": 450, "expiry_date": "2027-01-01"},
    )

    assert missing.status_code == 422
    assert blank.status_code == 422
    assert await database.get_collection("donations").count_documents({}) == 0


async def test_complete_twice_is_refused(client, database):
    await seed_booking(database, status="checked_in")
    payload = {"serial_number": "DON-001", "amount_ml": 450, "expiry_date": "2027-01-01"}

    first = await client.post("/registrations/R1/complete", json=payload)
    second = await client.post("/registrations/R1/complete", json=payload)

    assert first.status_code == 200
    assert second.status_code == 409
    assert await database.get_collection("donations").count_documents({}) == 1


async def test_cancel_only_before_check_in(client, database):
    await seed_booking(database, "R1", status="confirmed")
    await seed_booking(database, "R2", status="completed")

    cancelled = await client.post("/registrations/R1/cancel")
    refused = await client.post("/registrations/R2/cancel")

    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "Cancelled"
    assert refused.status_code == 409


async def test_walk_in_gets_no_notification(client, database):
    await seed_booking(database, status="pending", user_id="walk_in")

    response = await client.post("/registrations/R1/approve")

    assert response.status_code == 200
    assert await database.get_collection("notifications").count_documents({}) == 0


async def test_stale_expected_version_is_rejected(client, database):
    await seed_booking(database, status="pending", version=3)

    response = await client.post("/registrations/R1/approve", json={"expected_version": 2})

    assert response.status_code == 409
    stored = await database.get_collection("slot_bookings").find_one({"_id": "R1"})
    assert stored["booking_status"] == "pending"


async def test_unknown_registration(client):
    response = await client.post("/registrations/missing/approve")

    assert response.status_code == 404


async def test_write_guard_detects_concurrent_change(database):
    await seed_booking(database, status="pending")
    workflow = RegistrationWorkflow(database)
    snapshot = await workflow.load("R1")
    await database.get_collection("slot_bookings").update_one(
        {"_id": "R1"}, {"$set": {"booking_status": "cancelled"}, "$inc": {"version": 1}}
    )

    with pytest.raises(ConcurrentModification):
        await workflow._write_transition(snapshot, RegistrationStatus.APPROVED, "staff-1")

    stored = await database.get_collection("slot_bookings").find_one({"_id": "R1"})
    assert stored["booking_status"] == "cancelled"


async def test_complete_losing_race_removes_its_donation(database, monkeypatch):
    await seed_booking(database, status="checked_in")
    workflow = RegistrationWorkflow(database)
    snapshot = await workflow.load("R1")
    await database.get_collection("slot_bookings").update_one(
        {"_id": "R1"}, {"$set": {"booking_status": "completed", "donation_id": "other"}, "$inc": {"version": 1}}
    )
    monkeypatch.setattr(workflow, "load", AsyncMock(return_value=snapshot))

    with pytest.raises(ConcurrentModification):
        await workflow.complete(
            "R1",
            CompletionRequest(serial_number="DON-002", amount_ml=450, expiry_date="2027-01-01"),
            "staff-1",
        )

    assert await database.get_collection("donations").count_documents({}) == 0


class _BrokenNotifications:
    """Database view whose notification collection rejects every write."""

    def __init__(self, database) -> None:
        self._database = database

    def get_collection(self, name):
        if name == "notifications":
            collection = AsyncMock()
            collection.insert_one.side_effect = PyMongoError("permission denied")
            return collection
        return self._database.get_collection(name)


async def test_notification_failure_keeps_transition(database):
    await seed_booking(database, status="confirmed")
    workflow = RegistrationWorkflow(_BrokenNotifications(database))

    registration = await workflow.check_in("R1", "staff-1")

    assert registration["status"] is RegistrationStatus.CHECKED_IN
    stored = await database.get_collection("slot_bookings").find_one({"_id": "R1"})
    assert stored["booking_status"] == "checked_in"


async def test_list_filters_and_paginates(client, database):
    await seed_booking(database, "R1", status="pending", donor_name="Aisha Rahman")
    await seed_booking(database, "R2", status="Pending", donor_name="Ben Ong")
    await seed_booking(database, "R3", status="confirmed", donor_name="Chen Wei")
    await seed_booking(database, "R4", status="confirmed", donor_name="Aisha Karim", event_id="E2")

    pending = await client.get("/registrations/", params={"status": "Pending"})
    searched = await client.get("/registrations/", params={"search": "karim"})
    paged = await client.get("/registrations/", params={"page": 2, "page_size": 3})
    by_event = await client.get("/registrations/", params={"event_id": "E2"})

    assert pending.json()["total"] == 2
    assert [item["_id"] for item in searched.json()["items"]] == ["R4"]
    assert paged.json()["total"] == 4
    assert len(paged.json()["items"]) == 1
    assert [item["_id"] for item in by_event.json()["items"]] == ["R4"]


async def test_stats_count_every_status(client, database):
    await seed_booking(database, "R1", status="pending")
    await seed_booking(database, "R2", status="confirmed")
    await seed_booking(database, "R3", status="confirmed")
    await seed_booking(database, "R4", status="something-else")

    response = await client.get("/registrations/stats")

    body = response.json()
    assert body["total"] == 4
    assert body["by_status"]["Approved"] == 2
    assert body["by_status"]["Pending"] == 2
    assert body["by_status"]["Completed"] == 0


async def test_search_matches_donation_serial(client, database):
    await seed_completed_donation(database, "R1", "D1")
    await seed_booking(database, "R2", status="pending")

    response = await client.get("/registrations/", params={"search": "don-001"})

    assert [item["_id"] for item in response.json()["items"]] == ["R1"]


async def test_pending_filter_matches_stats(client, database):
    await seed_booking(database, "R1", status="pending")
    await seed_booking(database, "R2", status="")
    await seed_booking(database, "R3", status="in_review")
    await seed_booking(database, "R4", status=None)
    await seed_booking(database, "R5", status=" Confirmed ")

    stats = await client.get("/registrations/stats")
    pending = await client.get("/registrations/", params={"status": "Pending"})
    approved = await client.get("/registrations/", params={"status": "Approved"})

    assert stats.json()["by_status"]["Pending"] == 4
    assert pending.json()["total"] == 4
    assert {item["_id"] for item in pending.json()["items"]} == {"R1", "R2", "R3", "R4"}
    assert [item["_id"] for item in approved.json()["items"]] == ["R5"]


class _UnreachableBookings:
    def __init__(self, database) -> None:
        self._database = database

    def get_collection(self, name):
        if name == "slot_bookings":
            collection = AsyncMock()
            collection.find_one.side_effect = PyMongoError("server selection timeout")
            return collection
        return self._database.get_collection(name)


async def test_get_registration_store_outage(client, database):
    main.app.dependency_overrides[get_database] = lambda: _UnreachableBookings(database)

    response = await client.get("/registrations/R1")

    assert response.status_code == 503


class _DeadHub:
    async def notify(self, event, payload):
        raise ConnectionError("socket closed")


async def test_failed_live_update_keeps_transition(client, database):
    await seed_booking(database, status="pending")
    registrations_router.init_router(_DeadHub())

    response = await client.post("/registrations/R1/approve")

    assert response.status_code == 200
    stored = await database.get_collection("slot_bookings").find_one({"_id": "R1"})
    assert stored["booking_status"] == "confirmed"
