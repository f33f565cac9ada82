"""Common helper functions for persistence modules."""

import json
import uuid
from datetime import UTC, datetime
from typing import Any


def now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def generate_id() -> str:
    """Generate a unique ID (UUID4 hex)."""
    return uuid.uuid4().hex


def as_utc(value: datetime | None) -> datetime | None:
    """Re-attach UTC to timestamps read back from SQLite (which drops tzinfo)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def load_json(value: str | None) -> Any:
    return None if value is None else json.loads(value)
