"""
Timestamp helpers

Every timestamp compared by the sync engine goes through ``ensure_utc`` so
that values read back from SQLite (which drops tzinfo) compare cleanly with
API timestamps.
"""

from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO timestamp string"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)

    try:
        return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (ValueError, AttributeError):
        return None


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    value = ensure_utc(value)
    return value.isoformat() if value else None
