"""Data models for stored messages.

A Record holds the sealed text and its consumption policy. It never holds
key material; keys live in the KeyVault under the same id.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Set

from pydantic import BaseModel, Field, field_validator

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Record(BaseModel):
    """Persisted entry describing a message's ciphertext and consumption policy."""

    id: str = Field(..., description="Opaque high-entropy token, immutable")
    ciphertext: str = Field(..., description="base64url(salt || nonce || ciphertext+tag)")
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: Optional[datetime] = Field(None, description="Absolute expiry time, if any")
    max_views: Optional[int] = Field(None, ge=0, description="View limit, if any")
    current_views: int = Field(default=0, ge=0)
    owner_id: Optional[str] = None
    shared_with: Set[str] = Field(default_factory=set)

    @field_validator("created_at", "expires_at")
    @classmethod
    def ensure_aware(cls, v):
        """Treat naive timestamps as UTC."""
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def is_consumed(self, now: Optional[datetime] = None) -> bool:
        """True once either limit has been reached."""
        return is_consumed(self, now)

    def remaining_views(self) -> Optional[int]:
        """Views left before the view limit triggers, or None if unlimited."""
        if self.max_views is None:
            return None
        return max(self.max_views - self.current_views, 0)


def is_consumed(record: Record, now: Optional[datetime] = None) -> bool:
    """Pure consumption predicate.

    A record is consumed iff the view limit is reached or the expiry time has
    passed. Both limits may be set; either one is sufficient.
    """
    if record.max_views is not None and record.current_views >= record.max_views:
        return True
    if record.expires_at is not None:
        current = now or utc_now()
        if current > record.expires_at:
            return True
    return False


class ExpirationPreset(str, Enum):
    """Consumption policies offered when composing a message."""

    VIEW_ONCE = "view1"
    VIEW_THREE = "view3"
    ONE_HOUR = "1h"
    ONE_DAY = "1d"
    SEVEN_DAYS = "7d"

    def apply(self, now: datetime) -> tuple[Optional[datetime], Optional[int]]:
        """Return ``(expires_at, max_views)`` for this preset."""
        if self is ExpirationPreset.VIEW_ONCE:
            return None, 1
        if self is ExpirationPreset.VIEW_THREE:
            return None, 3
        return now + _PRESET_DURATIONS[self], None


_PRESET_DURATIONS = {
    ExpirationPreset.ONE_HOUR: timedelta(hours=1),
    ExpirationPreset.ONE_DAY: timedelta(days=1),
    ExpirationPreset.SEVEN_DAYS: timedelta(days=7),
}


def describe_expiry(record: Record) -> Optional[str]:
    """User-facing text describing when a just-viewed record disappears.

    The view limit takes precedence over the expiry time. Call this with the
    record as it stands after the view was counted.
    """
    if record.max_views is not None:
        remaining = record.max_views - record.current_views
        if remaining <= 0:
            return "This message will be deleted after this view."
        plural = "s" if remaining != 1 else ""
        return f"This message will be deleted after {remaining} more view{plural}."
    if record.expires_at is not None:
        return f"This message will expire on {record.expires_at.isoformat()}."
    return None
