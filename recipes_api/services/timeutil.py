from __future__ import annotations

from typing import Optional
from datetime import datetime, timezone


def now_utc() -> datetime:
    """Fecha/hora actual en UTC con tzinfo (aware)."""
    return datetime.now(timezone.utc)


def as_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """Convierte un datetime a UTC-aware. Si viene naive (SQLite), asumimos UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def age_days(then: datetime, now: datetime) -> float:
    return (as_aware(now) - as_aware(then)).total_seconds() / 86400.0
