"""
APTIS Exam Platform - Time Guard
Elapsed/remaining time of an attempt against the exam duration
"""
from dataclasses import dataclass
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as SQLite returns them) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_minutes(start: datetime, now: datetime) -> float:
    """Fractional minutes between start and now, never rounded."""
    return (as_utc(now) - as_utc(start)).total_seconds() / 60


def remaining_minutes(duration_minutes: float, elapsed: float) -> float:
    return max(0.0, duration_minutes - elapsed)


def is_expired(duration_minutes: float, elapsed: float) -> bool:
    # Exclusive boundary: exactly `duration_minutes` is still in time
    return elapsed > duration_minutes


@dataclass(frozen=True)
class TimeStatus:
    """Snapshot of an attempt's clock."""
    elapsed_minutes: float
    remaining_minutes: float
    is_expired: bool


def time_status(start: datetime, duration_minutes: float, now: datetime) -> TimeStatus:
    elapsed = elapsed_minutes(start, now)
    return TimeStatus(
        elapsed_minutes=elapsed,
        remaining_minutes=remaining_minutes(duration_minutes, elapsed),
        is_expired=is_expired(duration_minutes, elapsed),
    )
