from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from bson import ObjectId
from bson.errors import InvalidId


def resolve_id(document_id: Any) -> Any:
    if isinstance(document_id, ObjectId):
        return document_id
    try:
        return ObjectId(document_id)
    except (InvalidId, TypeError):
        return document_id


def id_filter(document_id: Any) -> Dict[str, Any]:
    return {"_id": resolve_id(document_id)}


def serialize_id(document: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize MongoDB document for JSON compatibility."""
    if "_id" in document:
        document["_id"] = str(document["_id"])
    return document


def as_datetime(value: Any) -> datetime | None:
    """Coerce a stored date to a naive UTC datetime.

    The mobile app writes ISO strings from ``toISOString`` (``...Z``); offsets
    are folded into UTC so values compare with ``datetime.utcnow()``.
    """
    if isinstance(value, str) and value:
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def ref(value: Any) -> str | None:
    return str(value) if value is not None else None
