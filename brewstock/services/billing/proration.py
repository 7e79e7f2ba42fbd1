"""Mid-cycle proration.

Synopsis:
Pure calculation of what a tenant owes when switching plans part-way through a
billing period. Daily rates stay unrounded Decimals; only ``correct_charge``
is rounded (half-up) to integer minor units at the end.

Glossary:
- Unused value: Remaining worth of the current plan for the rest of the period.
- Correct charge: New-plan prorated cost minus unused value (may be negative).
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from ...utils.timezone_utils import TimezoneUtils
from .errors import InvalidTimeRange, InvalidUpgradeRequest
from .reasons import UPGRADE_END_OF_PERIOD, UPGRADE_IMMEDIATE

_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class ProrationResult:
    unused_value: Decimal
    new_plan_prorated: Decimal
    correct_charge: int
    remaining_days: int
    total_days: int


def _ceil_days(later: datetime, earlier: datetime) -> int:
    return math.ceil((later - earlier).total_seconds() / _SECONDS_PER_DAY)


def daily_rate(price, total_days: int) -> Decimal:
    return Decimal(int(price)) / Decimal(total_days)


def calculate(current_plan, new_plan, period_start: datetime, period_end: datetime, now: datetime) -> ProrationResult:
    period_start = TimezoneUtils.ensure_timezone_aware(period_start)
    period_end = TimezoneUtils.ensure_timezone_aware(period_end)
    now = TimezoneUtils.ensure_timezone_aware(now)

    if period_end <= period_start:
        raise InvalidTimeRange("Billing period must end after it starts.")
    if now < period_start or now > period_end:
        raise InvalidTimeRange(
            f"Proration time {now.isoformat()} is outside the period "
            f"[{period_start.isoformat()}, {period_end.isoformat()}]."
        )

    total_days = _ceil_days(period_end, period_start)
    remaining_days = _ceil_days(period_end, now)

    unused_value = daily_rate(current_plan.price, total_days) * remaining_days
    new_plan_prorated = daily_rate(new_plan.price, total_days) * remaining_days
    correct_charge = (new_plan_prorated - unused_value).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    return ProrationResult(
        unused_value=unused_value,
        new_plan_prorated=new_plan_prorated,
        correct_charge=int(correct_charge),
        remaining_days=remaining_days,
        total_days=total_days,
    )


def quote_amount(current_plan, new_plan, period_start, period_end, now, upgrade_option: str) -> int:
    """Amount the tenant is asked to pay at checkout."""
    if upgrade_option == UPGRADE_END_OF_PERIOD:
        return int(new_plan.price)
    if upgrade_option != UPGRADE_IMMEDIATE:
        raise InvalidUpgradeRequest(f"Unknown upgrade option: {upgrade_option!r}")
    result = calculate(current_plan, new_plan, period_start, period_end, now)
    return max(result.correct_charge, 0)
