# app/utils/timeutils.py
"""
UTC helpers. Every timestamp is stored UTC; SQLite hands them back naive,
so anything read from the DB goes through ensure_utc() before comparison.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from app.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-ish camera timestamp. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip().replace("Z", "+00:00")
    if " " in text and "T" not in text:
        text = text.replace(" ", "T", 1)
    return ensure_utc(datetime.fromisoformat(text))


def billing_date(moment: datetime, tz_name: Optional[str] = None) -> date:
    """Calendar day of `moment` in the billing time zone."""
    return ensure_utc(moment).astimezone(ZoneInfo(tz_name or settings.BILLING_TIMEZONE)).date()


def billing_day_bounds(moment: datetime, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """UTC [start, end) of the billing calendar day containing `moment`."""
    tz = ZoneInfo(tz_name or settings.BILLING_TIMEZONE)
    local_day = billing_date(moment, tz_name)
    start = datetime.combine(local_day, time.min, tzinfo=tz)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
