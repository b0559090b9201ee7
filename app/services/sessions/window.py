"""Messaging-window arithmetic.

All inputs and outputs are timezone-aware UTC datetimes. The business
timezone only matters for calendar-day boundaries.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from app.core.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def window_length(hours: int | None = None) -> timedelta:
    """Rolling window applied to session_expires_at."""
    if hours is None:
        hours = settings.session_window_total_hours
    return timedelta(hours=hours)


def sweep_bounds(
    now: datetime,
    upper_hours: int,
    lower_days: int,
) -> tuple[datetime, datetime]:
    """Return (upper, lower) for the renewal sweep.

    upper: sessions expiring at or before this are "about to expire".
    lower: sessions that expired at or before this are too stale to renew.
    """
    return now + timedelta(hours=upper_hours), now - timedelta(days=lower_days)


def day_bounds(now: datetime, tz_name: str | None = None) -> tuple[datetime, datetime]:
    """UTC [start, end) of the calendar day containing `now` in the business timezone."""
    tz = ZoneInfo(tz_name or settings.business_timezone)
    local_day = now.astimezone(tz).date()
    start_local = datetime.combine(local_day, time.min, tzinfo=tz)
    end_local = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=tz)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)
