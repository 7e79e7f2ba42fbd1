from datetime import datetime, timezone

import pytest

from brewstock.services.billing import periods
from brewstock.services.billing.errors import InvalidTimeRange


def test_monthly_period_keeps_day_and_time():
    start = datetime(2026, 3, 15, 9, 30, tzinfo=timezone.utc)
    assert periods.advance(start, 'MONTHLY') == datetime(2026, 4, 15, 9, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize('start,expected', [
    (datetime(2026, 1, 31, tzinfo=timezone.utc), datetime(2026, 2, 28, tzinfo=timezone.utc)),
    (datetime(2028, 1, 31, tzinfo=timezone.utc), datetime(2028, 2, 29, tzinfo=timezone.utc)),
    (datetime(2026, 12, 31, tzinfo=timezone.utc), datetime(2027, 1, 31, tzinfo=timezone.utc)),
])
def test_monthly_period_clamps_to_month_end(start, expected):
    assert periods.advance(start, 'MONTHLY') == expected


def test_yearly_period_handles_leap_day():
    start = datetime(2028, 2, 29, tzinfo=timezone.utc)
    assert periods.advance(start, 'YEARLY') == datetime(2029, 2, 28, tzinfo=timezone.utc)


def test_unknown_interval_is_rejected():
    with pytest.raises(InvalidTimeRange):
        periods.advance(datetime(2026, 1, 1, tzinfo=timezone.utc), 'WEEKLY')


def test_extend_by_days_rejects_negative_values():
    end = datetime(2026, 1, 31, tzinfo=timezone.utc)
    assert periods.extend_by_days(end, 3) == datetime(2026, 2, 3, tzinfo=timezone.utc)
    with pytest.raises(InvalidTimeRange):
        periods.extend_by_days(end, -1)
