"""
Plan identifiers and UTC timestamps.

Plan ids are ULID-style strings: 26 characters of Crockford base32 whose
first ten characters encode the creation time in milliseconds, so ids sort
in creation order.

Tags:
    timestamps, ulid, utc, datetime, migration-spine
"""

import secrets
import time
from datetime import UTC, datetime

# Crockford base32 alphabet
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def generate_ulid() -> str:
    """Generate a time-sortable 26-character identifier."""
    timestamp_ms = int(time.time() * 1000)
    random_part = "".join(secrets.choice(_ENCODING) for _ in range(16))
    return _encode_base32(timestamp_ms, 10) + random_part


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to ISO 8601 string."""
    if dt is None:
        return None
    return dt.isoformat()


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to a timezone-aware datetime (naive input is taken as UTC)."""
    if s is None:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from storage."""
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=UTC)


def _encode_base32(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        value, remainder = divmod(value, 32)
        chars.append(_ENCODING[remainder])
    return "".join(reversed(chars))
