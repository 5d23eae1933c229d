from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from donorhub import main
from donorhub.database import get_database, settings
from donorhub.models.user import UserPublic
from donorhub.routers import appointments, blood_requests, eligibility, events, inventory, registrations
from donorhub.routers.auth import get_current_user

LIVE_ROUTERS = (registrations, inventory, eligibility, appointments, events, blood_requests)


class RecordingHub:
    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((event, payload))


@pytest.fixture(autouse=True)
def standalone_store(monkeypatch):
    monkeypatch.setattr(settings, "mongo_use_transactions", False)
    monkeypatch.setattr(settings, "inventory_decrement_policy", "unit")
    monkeypatch.setattr(settings, "sms_notifications_enabled", False)


@pytest.fixture
def database():
    return AsyncMongoMockClient()["donorhub_test"]


@pytest.fixture
def hub():
    recording = RecordingHub()
    for module in LIVE_ROUTERS:
        module.init_router(recording)
    yield recording
    for module in LIVE_ROUTERS:
        module.init_router(main.hub)


def _staff(role: str) -> UserPublic:
    return UserPublic(
        **{
            "_id": f"{role}-1",
            "email": f"{role}@donorhub.org",
            "name": f"Shift {role.title()}",
            "role": role,
            "created_at": datetime(2026, 1, 5),
        }
    )


@pytest.fixture
def staff() -> UserPublic:
    return _staff("staff")


@pytest.fixture
def admin() -> UserPublic:
    return _staff("admin")


async def _client(database, user: UserPublic | None):
    main.app.dependency_overrides[get_database] = lambda: database
    if user is not None:
        main.app.dependency_overrides[get_current_user] = lambda: user
    return AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


@pytest.fixture
async def client(database, staff, hub):
    async with await _client(database, staff) as http:
        yield http
    main.app.dependency_overrides.clear()


@pytest.fixture
async def admin_client(database, admin, hub):
    async with await _client(database, admin) as http:
        yield http
    main.app.dependency_overrides.clear()


@pytest.fixture
async def anonymous_client(database, hub, monkeypatch):
    monkeypatch.setattr(settings, "auto_authorize_demo", False)
    async with await _client(database, None) as http:
        yield http
    main.app.dependency_overrides.clear()
