"""
Next-run calculation for scrape schedules.

All arithmetic is UTC. The returned datetime always has minutes, seconds and
microseconds zeroed and is strictly after ``now``.

Weekday numbering follows the dashboard convention: Sunday = 0 ... Saturday = 6.
"""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from app.models import Frequency


def _utc(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def _weekday(dt: datetime) -> int:
    """Day of week with Sunday = 0."""
    return (dt.weekday() + 1) % 7


def compute_next_run(
    frequency: Frequency | str,
    preferred_hour: int,
    preferred_days: Iterable[int] | None = None,
    now: datetime | None = None,
) -> datetime:
    if not 0 <= preferred_hour <= 23:
        raise ValueError(f"preferred_hour must be within 0..23, got {preferred_hour}")
    days = sorted(set(preferred_days or ()))
    if any(not 0 <= d <= 6 for d in days):
        raise ValueError(f"preferred_days must be within 0..6, got {days}")

    frequency = Frequency(frequency)
    now = _utc(now)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    at_preferred_hour = midnight + timedelta(hours=preferred_hour)

    if frequency is Frequency.hourly:
        return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)

    if frequency is Frequency.every_6_hours:
        block = now.hour // 6
        target = midnight + timedelta(hours=(block + 1) * 6)
        if target <= now:
            target += timedelta(hours=6)
        return target

    if frequency is Frequency.every_12_hours:
        if now.hour < preferred_hour:
            return at_preferred_hour
        if now.hour < preferred_hour + 12:
            # ph + 12 may land on the next calendar day
            return midnight + timedelta(hours=preferred_hour + 12)
        return at_preferred_hour + timedelta(days=1)

    if frequency is Frequency.daily:
        if now.hour >= preferred_hour:
            return at_preferred_hour + timedelta(days=1)
        return at_preferred_hour

    # weekly
    if not days:
        return at_preferred_hour + timedelta(days=7)

    today = _weekday(now)
    later = [d for d in days if d > today]
    if later:
        return at_preferred_hour + timedelta(days=later[0] - today)
    if today == days[-1] and now.hour < preferred_hour:
        return at_preferred_hour
    return at_preferred_hour + timedelta(days=7 - today + days[0])
