from __future__ import annotations
import uuid
from datetime import datetime, timezone, timedelta

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def iso_now() -> str:
    return utc_now().isoformat()

def generate_id(prefix: str) -> str:
    """Generates a unique ID with the given prefix."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"

def generate_correlation_id() -> str:
    return f"corr_{uuid.uuid4().hex}"

def expires_after(duration_ms: int, *, now: datetime | None = None) -> datetime:
    return (now or utc_now()) + timedelta(milliseconds=duration_ms)

def as_utc(value: datetime) -> datetime:
    """Mongo may hand back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

def isoformat_or_none(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None
