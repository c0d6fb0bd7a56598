"""
Time helpers.

All timestamps are stored as naive UTC. Calendar decisions (local midnight,
the rollover date) are taken in the configured operating timezone.
"""

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from floatledger.app.core.config import settings

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_timezone(name: Optional[str] = None) -> tzinfo:
    name = name or settings.timezone
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def to_local(moment: datetime, tz: tzinfo) -> datetime:
    return moment.replace(tzinfo=timezone.utc).astimezone(tz)


def to_utc(moment: datetime) -> datetime:
    """Normalize an aware or naive-UTC datetime to naive UTC."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def local_date(moment: datetime, tz: tzinfo) -> date:
    return to_local(moment, tz).date()


def local_midnight(moment: datetime, tz: tzinfo, days_back: int = 0) -> datetime:
    """
    Local midnight of the day containing ``moment``, shifted back ``days_back``
    calendar days, returned as naive UTC.
    """
    day = local_date(moment, tz) - timedelta(days=days_back)
    midnight = datetime(day.year, day.month, day.day, tzinfo=tz)
    return to_utc(midnight)


def next_local_midnight(moment: datetime, tz: tzinfo) -> datetime:
    day = local_date(moment, tz) + timedelta(days=1)
    return to_utc(datetime(day.year, day.month, day.day, tzinfo=tz))
