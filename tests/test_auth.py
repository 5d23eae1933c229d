from __future__ import annotations

from donorhub.database import settings
from donorhub.utils.security import create_access_token, decode_token


async def _register_and_login(client, role="staff"):
    await client.post(
        "/auth/register",
        json={"email": f"{role}@hospital.org", "password": "donate-safely", "name": "Nurse Lim", "role": role},
    )
    response = await client.post(
        "/auth/login", data={"username": f"{role}@hospital.org", "password": "donate-safely"}
    )
    return response


async def test_register_and_login(anonymous_client, database):
    response = await _register_and_login(anonymous_client)

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["role"] == "staff"
    assert decode_token(body["access_token"])["sub"] == body["user"]["_id"]
    stored = await database.get_collection("users").find_one({"email": "staff@hospital.org"})
    assert stored["password"] != "donate-safely"


async def test_duplicate_email_is_rejected(anonymous_client):
    await _register_and_login(anonymous_client)

    response = await anonymous_client.post(
        "/auth/register",
        json={"email": "staff@hospital.org", "password": "another-pass", "name": "Someone Else"},
    )

    assert response.status_code == 400


async def test_wrong_password(anonymous_client):
    await _register_and_login(anonymous_client)

    response = await anonymous_client.post(
        "/auth/login", data={"username": "staff@hospital.org", "password": "not-the-password"}
    )

    assert response.status_code == 401


async def test_token_grants_staff_access(anonymous_client):
    token = (await _register_and_login(anonymous_client)).json()["access_token"]
    headers = {"Authorization": f"Bearer {token}"}

    stats = await anonymous_client.get("/registrations/stats", headers=headers)
    report = await anonymous_client.get("/reports/summary", headers=headers)

    assert stats.status_code == 200
    assert report.status_code == 403


async def test_admin_token_reads_reports(anonymous_client):
    token = (await _register_and_login(anonymous_client, role="admin")).json()["access_token"]

    response = await anonymous_client.get("/reports/summary", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200


async def test_missing_or_bad_token(anonymous_client):
    missing = await anonymous_client.get("/registrations/stats")
    garbage = await anonymous_client.get("/registrations/stats", headers={"Authorization": "Bearer nonsense"})
    unknown = await anonymous_client.get(
        "/registrations/stats",
        headers={"Authorization": f"Bearer {create_access_token('65f0c0ffee0000000000beef')}"},
    )

    assert missing.status_code == 401
    assert garbage.status_code == 401
    assert unknown.status_code == 404


async def test_demo_admin_when_enabled(anonymous_client, database, monkeypatch):
    monkeypatch.setattr(settings, "auto_authorize_demo", True)

    response = await anonymous_client.get("/reports/summary")

    assert response.status_code == 200
    demo = await database.get_collection("users").find_one({"email": settings.demo_user_email})
    assert demo["role"] == "admin"
