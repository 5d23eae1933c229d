from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from twilio.rest import Client

from ..database import settings
from ..utils.documents import id_filter

# Donor references that never map to an account with a message feed.
NO_FEED_DONORS = {"manual_entry", "walk_in", "unknown"}


@dataclass
class SmsNotification:
    to: str
    body: str


def normalize_phone_number(phone: str) -> str:
    """
    Normalize phone number to E.164 format for Twilio.
    Removes dashes, spaces, parentheses, and ensures proper formatting.

    Examples:
        "+60-12-345 6789" -> "+60123456789"
        "(012) 345-6789" -> "+0123456789"
    """
    if not phone:
        return phone

    if phone.startswith('+'):
        normalized = '+' + re.sub(r'\D', '', phone[1:])
    else:
        normalized = '+' + re.sub(r'\D', '', phone)

    logger.debug("Normalized phone number: {} -> {}", phone, normalized)
    return normalized


class SmsService:
    def __init__(self) -> None:
        if not settings.twilio_sid or not settings.twilio_token:
            logger.warning("Twilio credentials missing; SMS notifications will be mocked.")
            self.client: Optional[Client] = None
        else:
            self.client = Client(settings.twilio_sid, settings.twilio_token)
        self.sender_phone = settings.twilio_phone or "+1234567890"

    async def send_sms(self, message: SmsNotification) -> None:
        normalized_phone = normalize_phone_number(message.to)

        if self.client is None:
            logger.info("Mock SMS: {} -> {}", normalized_phone, message.body)
            return
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(
                None,
                lambda: self.client.messages.create(
                    to=normalized_phone,
                    from_=self.sender_phone,
                    body=message.body,
                ),
            )
            logger.info("SMS sent to {} (normalized from {})", normalized_phone, message.to)
        except Exception as exc:
            logger.warning("SMS delivery failed for {} (normalized: {}): {}", message.to, normalized_phone, exc)


sms_service = SmsService()


async def _donor_phone(database: AsyncIOMotorDatabase, user_id: str) -> str | None:
    profile = await database.get_collection("donor_profiles").find_one(id_filter(user_id))
    if not profile:
        return None
    return profile.get("phone") or profile.get("phone_number")


async def notify_donor(
    database: AsyncIOMotorDatabase,
    user_id: str | None,
    title: str,
    message: str,
    data: Dict[str, Any] | None = None,
    notification_type: str = "donation_status_update",
    created_by: str | None = None,
) -> str | None:
    """Append a message to the donor's notification feed.

    Delivery is at-most-once: walk-ins and unknown donors are skipped, and a
    failed write is logged and dropped so the transition that triggered it
    stands. Returns the notification id, or ``None`` when nothing was written.
    """
    if not user_id or user_id in NO_FEED_DONORS:
        return None

    document = {
        "user_id": user_id,
        "type": notification_type,
        "title": title,
        "message": message,
        "data": data or {},
        "read": False,
        "created_at": datetime.utcnow(),
        "created_by": created_by,
    }
    try:
        result = await database.get_collection("notifications").insert_one(document)
    except Exception as exc:
        logger.warning("Notification for donor {} dropped ({}): {}", user_id, title, exc)
        return None

    if settings.sms_notifications_enabled:
        try:
            phone = await _donor_phone(database, user_id)
            if phone:
                await sms_service.send_sms(SmsNotification(to=phone, body=f"{title}: {message}"))
        except Exception as exc:
            logger.warning("SMS mirror for donor {} skipped: {}", user_id, exc)

    return str(result.inserted_id)


async def broadcast(manager, event: str, payload: Dict[str, Any]) -> None:
    """Push a committed change to live dashboards; a failed push is logged only."""
    try:
        await manager.notify(event, payload)
    except Exception as exc:
        logger.warning("Live update {} not delivered: {}", event, exc)
