from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, Literal

import motor.motor_asyncio
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo.errors import ConfigurationError
from pymongo.uri_parser import parse_uri


BASE_DIR = Path(__file__).resolve().parents[1]
ENV_FILES = [BASE_DIR / ".env.local", BASE_DIR / ".env"]


class Settings(BaseSettings):
    mongodb_url: str = "mongodb://localhost:27017/donorhub"
    mongo_server_timeout_ms: int = 2000
    mongo_connect_timeout_ms: int = 2000
    mongo_socket_timeout_ms: int = 2000
    mongo_use_transactions: bool = True
    jwt_secret: str = "supersecret"
    jwt_algorithm: str = "HS256"
    jwt_expires_min: int = 60
    auto_authorize_demo: bool = True
    demo_user_email: str = "admin@donorhub.org"
    demo_user_name: str = "Demo Administrator"
    demo_user_password: str = "admin1234"
    twilio_sid: str | None = None
    twilio_token: str | None = None
    twilio_phone: str | None = None
    sms_notifications_enabled: bool = False
    inventory_decrement_policy: Literal["unit", "volume"] = "unit"
    unit_volume_ml: int = 450
    default_minimum_level: int = 10
    default_critical_level: int = 5
    stock_thresholds: Dict[str, int] = {"low": 10, "medium": 30, "high": 50}
    expiry_warning_days: Dict[str, int] = {"critical": 3, "urgent": 7, "warning": 14}

    model_config = SettingsConfigDict(
        env_file=[str(path) for path in ENV_FILES],
        case_sensitive=False,
        env_prefix="",
    )


def get_settings() -> Settings:
    return Settings()


settings = get_settings()
FALLBACK_MONGO_URL = "mongodb://localhost:27017/donorhub"


def _create_client(uri: str) -> motor.motor_asyncio.AsyncIOMotorClient:
    connect_kwargs = {
        "serverSelectionTimeoutMS": settings.mongo_server_timeout_ms,
        "connectTimeoutMS": settings.mongo_connect_timeout_ms,
        "socketTimeoutMS": settings.mongo_socket_timeout_ms,
    }
    try:
        return motor.motor_asyncio.AsyncIOMotorClient(uri, **connect_kwargs)
    except ConfigurationError as exc:
        if uri == FALLBACK_MONGO_URL:
            raise
        logger.warning(
            "MongoDB DNS resolution failed for {} ({}). Falling back to local Mongo at {}.",
            uri,
            exc,
            FALLBACK_MONGO_URL,
        )
        return motor.motor_asyncio.AsyncIOMotorClient(FALLBACK_MONGO_URL, **connect_kwargs)


client = _create_client(settings.mongodb_url)


def _resolve_database_name(uri: str | None) -> str:
    if uri:
        try:
            parsed = parse_uri(uri)
            if parsed.get("database"):
                return parsed["database"]
        except Exception as exc:  # pragma: no cover - malformed URI
            logger.warning("Unable to parse Mongo URI {} ({}). Using fallback database name.", uri, exc)
    return "donorhub"


database_name = _resolve_database_name(settings.mongodb_url)
db = client.get_database(database_name)


async def get_database() -> AsyncIOMotorDatabase:
    return db


@asynccontextmanager
async def transaction(database: AsyncIOMotorDatabase) -> AsyncIterator[AsyncIOMotorClientSession | None]:
    """Run a grouped write inside a MongoDB transaction.

    Yields ``None`` when transactions are disabled (standalone servers); callers
    then pass ``session=None`` to every write and handle compensation themselves.
    Leaving the block with an exception aborts the transaction.
    """
    if not settings.mongo_use_transactions:
        yield None
        return
    async with await database.client.start_session() as session:
        async with session.start_transaction():
            yield session
