"""Calendar-aware billing period arithmetic.

Synopsis:
Advances a period boundary by one billing interval. Month steps clamp to the
last day of the target month (Jan 31 + 1 month = Feb 28/29) and keep the
time of day.
"""
from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from ...models.plan import BillingInterval
from ...utils.timezone_utils import TimezoneUtils
from .errors import InvalidTimeRange


def add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def advance(start: datetime, interval: str, count: int = 1) -> datetime:
    """Return the end of ``count`` intervals starting at ``start``."""
    start = TimezoneUtils.ensure_timezone_aware(start)
    if interval == BillingInterval.MONTHLY:
        return add_months(start, count)
    if interval == BillingInterval.YEARLY:
        return add_months(start, 12 * count)
    raise InvalidTimeRange(f"Unsupported billing interval: {interval!r}")


def period_for(start: datetime, interval: str) -> tuple[datetime, datetime]:
    start = TimezoneUtils.ensure_timezone_aware(start)
    return start, advance(start, interval)


def extend_by_days(end: datetime, days: int) -> datetime:
    if days < 0:
        raise InvalidTimeRange("Cannot extend a period by a negative number of days.")
    return TimezoneUtils.ensure_timezone_aware(end) + timedelta(days=days)
