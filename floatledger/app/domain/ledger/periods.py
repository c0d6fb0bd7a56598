"""
Dashboard date ranges.

Boundaries are computed in the operating timezone and returned as naive
UTC instants, inclusive on both ends.
"""

import enum
from datetime import datetime, timedelta, tzinfo
from typing import Optional

from pydantic import BaseModel

from floatledger.app.core.clock import local_midnight, local_timezone, to_local, to_utc
from floatledger.app.core.config import settings
from floatledger.app.core.exceptions import ValidationError
from floatledger.app.schemas.dashboard import DateRangeView


class Period(str, enum.Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"
    CUSTOM = "custom"


class DateRange(BaseModel):
    period: Period
    start: Optional[datetime] = None
    end: datetime

    def view(self) -> DateRangeView:
        return DateRangeView(period=self.period.value, start=self.start, end=self.end)


def _start_of_local(moment: datetime, tz: tzinfo, **fields) -> datetime:
    local = to_local(moment, tz).replace(hour=0, minute=0, second=0, microsecond=0, **fields)
    return to_utc(datetime(local.year, local.month, local.day, tzinfo=tz))


def resolve_period(
    period: Period,
    now: datetime,
    tz: Optional[tzinfo] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    max_age_days: Optional[int] = None,
) -> DateRange:
    """
    Turn a named period into a concrete instant range.

    Raises:
        ValidationError: If a custom range is incomplete, inverted, in the
            future or older than the allowed history
    """
    tz = tz or local_timezone()

    if period == Period.TODAY:
        return DateRange(period=period, start=local_midnight(now, tz), end=now)

    if period == Period.YESTERDAY:
        return DateRange(
            period=period,
            start=local_midnight(now, tz, days_back=1),
            end=local_midnight(now, tz) - timedelta(microseconds=1),
        )

    if period == Period.WEEK:
        return DateRange(period=period, start=local_midnight(now, tz, days_back=7), end=now)

    if period == Period.MONTH:
        return DateRange(period=period, start=_start_of_local(now, tz, day=1), end=now)

    if period == Period.YEAR:
        return DateRange(period=period, start=_start_of_local(now, tz, month=1, day=1), end=now)

    if period == Period.ALL:
        return DateRange(period=period, start=None, end=now)

    return _custom_range(now, start, end, max_age_days)


def _custom_range(
    now: datetime,
    start: Optional[datetime],
    end: Optional[datetime],
    max_age_days: Optional[int],
) -> DateRange:
    if start is None or end is None:
        raise ValidationError("A custom range needs both a start and an end date")

    start, end = to_utc(start), to_utc(end)
    max_age_days = max_age_days if max_age_days is not None else settings.custom_range_max_age_days

    if start > end:
        raise ValidationError(
            "Start date must be before end date",
            details={"start": start.isoformat(), "end": end.isoformat()}
        )
    if end > now:
        raise ValidationError("End date cannot be in the future", details={"end": end.isoformat()})
    if start < now - timedelta(days=max_age_days):
        raise ValidationError(
            f"Start date cannot be older than {max_age_days} days",
            details={"start": start.isoformat()}
        )

    return DateRange(period=Period.CUSTOM, start=start, end=end)
