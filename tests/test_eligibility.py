from __future__ import annotations

from datetime import datetime

from donorhub.models.eligibility import EligibilityOutcome
from donorhub.workflows.eligibility import concerning_answers, decision_message


async def _seed_requests(database):
    requests = database.get_collection("eligibility_requests")
    await requests.insert_many(
        [
            {
                "_id": "Q1",
                "user_id": "donor-1",
                "answers": {"Are you feeling well today?": False, "Have you had a tattoo in the last 6 months?": False},
                "submitted_date": datetime(2026, 10, 10),
            },
            {
                "_id": "Q2",
                "user_id": "donor-2",
                "answers": {},
                "admin_decision": "deferred",
                "admin_notes": "Recent travel",
                "submitted_date": datetime(2026, 10, 9),
            },
            {"_id": "Q3", "user_id": "donor-3", "archived": True, "submitted_date": datetime(2026, 10, 8)},
        ]
    )
    await database.get_collection("donor_profiles").insert_one({"_id": "donor-1", "full_name": "Aisha Rahman"})


def test_concerning_answers_flags_unwell_and_yes_answers():
    answers = {
        "Are you feeling well today?": False,
        "Have you taken antibiotics in the last week?": True,
        "Have you donated blood in the last three months or travelled abroad recently?": True,
        "Are you pregnant?": False,
    }

    assert concerning_answers(answers) == [
        "Are you feeling well today?",
        "Have you taken antibiotics in the last week?",
        "Have you donated blood in the last three months...",
    ]


def test_decision_messages():
    assert decision_message(EligibilityOutcome.ELIGIBLE, "All clear") == (
        "Your eligibility status has been approved. Reason: All clear"
    )
    assert "temporarily deferred" in decision_message(EligibilityOutcome.TEMPORARILY_DEFERRED, "Low iron")
    assert "Permanently Ineligible" in decision_message(EligibilityOutcome.PERMANENTLY_INELIGIBLE, "History")


async def test_pending_view_hides_decided_and_archived(client, database):
    await _seed_requests(database)

    pending = await client.get("/eligibility/")
    everything = await client.get("/eligibility/", params={"view": "all"})

    [request] = pending.json()["requests"]
    assert request["_id"] == "Q1"
    assert request["donor_name"] == "Aisha Rahman"
    assert request["display_status"] == "Pending Review"
    assert request["concerning_answers"] == ["Are you feeling well today?"]
    statuses = {item["_id"]: item["display_status"] for item in everything.json()["requests"]}
    assert statuses == {"Q1": "Pending Review", "Q2": "Temporarily Deferred"}


async def test_decision_is_stored_and_sent(client, database, hub):
    await _seed_requests(database)

    response = await client.post(
        "/eligibility/Q1/decision", json={"status": "Temporarily Deferred", "notes": " Feeling unwell "}
    )

    assert response.status_code == 200
    assert response.json()["display_status"] == "Temporarily Deferred"
    stored = await database.get_collection("eligibility_requests").find_one({"_id": "Q1"})
    assert stored["admin_decision"] == "deferred"
    assert stored["admin_notes"] == "Feeling unwell"
    assert stored["decided_by"] == "staff-1"
    notification = await database.get_collection("notifications").find_one({"user_id": "donor-1"})
    assert notification["type"] == "eligibility_update"
    assert notification["message"] == "Your eligibility is temporarily deferred. Reason: Feeling unwell"
    assert notification["data"]["old_status"] == "Pending Review"
    assert hub.events == [("eligibility_updated", {"eligibility_id": "Q1", "status": "Temporarily Deferred"})]


async def test_decision_requires_notes(client, database):
    await _seed_requests(database)

    response = await client.post("/eligibility/Q1/decision", json={"status": "Eligible", "notes": "  "})

    assert response.status_code == 422
    stored = await database.get_collection("eligibility_requests").find_one({"_id": "Q1"})
    assert "admin_decision" not in stored


async def test_decision_for_unknown_request(client):
    response = await client.post("/eligibility/nope/decision", json={"status": "Eligible", "notes": "ok"})

    assert response.status_code == 404


async def test_archive_hides_request(client, database):
    await _seed_requests(database)

    archived = await client.delete("/eligibility/Q1")
    missing = await client.delete("/eligibility/nope")
    pending = await client.get("/eligibility/")

    assert archived.status_code == 204
    assert missing.status_code == 404
    assert pending.json()["requests"] == []
