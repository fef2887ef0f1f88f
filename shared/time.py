from datetime import date, datetime, timedelta, timezone
from typing import Optional

# --- Internal override for testing ---
_current_time_override: Optional[datetime] = None


# === Time Access ===

def utcnow() -> datetime:
    return _current_time_override or datetime.now(timezone.utc)


def set_fake_utcnow(fake_time: datetime) -> None:
    global _current_time_override
    if fake_time.tzinfo is None:
        fake_time = fake_time.replace(tzinfo=timezone.utc)
    _current_time_override = fake_time


def advance_fake_utcnow(delta: timedelta) -> datetime:
    """Move the fake clock forward (starts from the real time if none is set)."""
    set_fake_utcnow(utcnow() + delta)
    return utcnow()


def clear_fake_utcnow() -> None:
    global _current_time_override
    _current_time_override = None


def today() -> date:
    return utcnow().date()


# === Normalization ===

def ensure_aware_utc(dt: datetime) -> datetime:
    """Normalize any datetime to aware UTC (naive => assume UTC)."""
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# === Time Checks ===

def is_past(dt: datetime) -> bool:
    return ensure_aware_utc(dt) < utcnow()


def seconds_since(dt: datetime) -> float:
    return (utcnow() - ensure_aware_utc(dt)).total_seconds()
