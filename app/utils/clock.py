"""
Time helpers. Timestamps are stored as naive UTC.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching what the store round-trips."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_millis(moment: datetime) -> int:
    """Milliseconds since the epoch for a naive UTC datetime."""
    return int(moment.replace(tzinfo=timezone.utc).timestamp() * 1000)
