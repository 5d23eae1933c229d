from __future__ import annotations

from donorhub.models.inventory import ResolutionTier
from donorhub.workflows.hospital_resolver import match_hospital_name, resolve_hospital

from .factories import seed_booking, seed_event, seed_hospital


async def test_event_hospital_id_wins(database):
    await seed_hospital(database, "H1", "General Hospital")
    await seed_hospital(database, "H2", "Hospital Sultanah Aminah")
    await seed_event(database, assigned_hospital_id="H2", hospital_name="General Hospital")
    booking = await seed_booking(database, hospital_id="H1")

    resolution = await resolve_hospital(database, booking)

    assert resolution.hospital_id == "H2"
    assert resolution.tier is ResolutionTier.EVENT_HOSPITAL_ID
    assert resolution.confident


async def test_camel_case_event_fields(database):
    await seed_hospital(database, "H2", "Hospital Sultanah Aminah")
    await seed_event(database, hospitalId="H2")
    booking = await seed_booking(database)

    resolution = await resolve_hospital(database, booking)

    assert resolution.hospital_id == "H2"


async def test_event_hospital_name_match(database):
    await seed_hospital(database, "H1", "General Hospital")
    await seed_hospital(database, "H2", "Hospital Sultanah Aminah")
    await seed_event(database, assigned_hospital_id="gone", assigned_hospital_name="sultanah aminah")
    booking = await seed_booking(database)

    resolution = await resolve_hospital(database, booking)

    assert resolution.hospital_id == "H2"
    assert resolution.tier is ResolutionTier.EVENT_HOSPITAL_NAME
    assert not resolution.confident


async def test_registration_hospital_when_event_is_missing(database):
    await seed_hospital(database, "H1", "General Hospital")
    await seed_hospital(database, "H2", "Hospital Sultanah Aminah")
    booking = await seed_booking(database, event_id="walk-in-desk", hospital_id="H2")

    resolution = await resolve_hospital(database, booking)

    assert resolution.hospital_id == "H2"
    assert resolution.tier is ResolutionTier.REGISTRATION_HOSPITAL_ID


async def test_first_hospital_as_last_resort(database):
    await seed_hospital(database, "H2", "Hospital Sultanah Aminah")
    await seed_hospital(database, "H1", "General Hospital")
    await seed_event(database)
    booking = await seed_booking(database)

    resolution = await resolve_hospital(database, booking)

    assert resolution.hospital_id == "H1"
    assert resolution.tier is ResolutionTier.FIRST_HOSPITAL


async def test_unresolved_without_hospitals(database):
    await seed_event(database)
    booking = await seed_booking(database)

    resolution = await resolve_hospital(database, booking)

    assert not resolution.resolved
    assert resolution.hospital_id is None
    assert resolution.hospital_name == "Unknown Hospital"


def test_name_match_prefers_exact():
    hospitals = [
        {"_id": "H1", "name": "General Hospital Annex"},
        {"_id": "H2", "name": "General Hospital"},
    ]

    assert match_hospital_name("general hospital", hospitals)["_id"] == "H2"
    assert match_hospital_name("Annex", hospitals)["_id"] == "H1"
    assert match_hospital_name("   ", hospitals) is None
    assert match_hospital_name("Clinic", hospitals) is None
