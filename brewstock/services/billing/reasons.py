"""Typed transaction reasons.

Every Transaction carries exactly one reason in its ``metadata`` column. The
``kind`` key selects the variant; unknown kinds are rejected on parse.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Optional, Union

from .errors import UnknownReasonError

UPGRADE_IMMEDIATE = "immediate"
UPGRADE_END_OF_PERIOD = "end_of_period"
UPGRADE_OPTIONS = (UPGRADE_IMMEDIATE, UPGRADE_END_OF_PERIOD)


@dataclass(frozen=True)
class UpgradeRequest:
    plan_id: int
    upgrade_option: str
    previous_plan_id: Optional[int] = None
    quoted_amount: Optional[int] = None
    kind: str = "upgrade_request"


@dataclass(frozen=True)
class NewSubscription:
    plan_id: int
    kind: str = "new_subscription"


@dataclass(frozen=True)
class ImmediateUpgrade:
    plan_id: int
    previous_plan_id: int
    correct_charge: int
    unused_value: str
    new_plan_prorated: str
    remaining_days: int
    total_days: int
    kind: str = "immediate_upgrade"


@dataclass(frozen=True)
class ScheduledUpgrade:
    plan_id: int
    previous_plan_id: int
    scheduled_for: str
    activated_at: Optional[str] = None
    released_at: Optional[str] = None
    kind: str = "scheduled_upgrade"


@dataclass(frozen=True)
class OverchargeCompensation:
    original_transaction_id: Optional[int]
    amount_charged: int
    correct_charge: int
    credit_amount: int
    kind: str = "overcharge_compensation"


@dataclass(frozen=True)
class PeriodExtension:
    amount: int
    days_added: int
    new_period_end: str
    kind: str = "period_extension"


TransactionReason = Union[
    UpgradeRequest,
    NewSubscription,
    ImmediateUpgrade,
    ScheduledUpgrade,
    OverchargeCompensation,
    PeriodExtension,
]

_REASON_TYPES = {
    cls.kind: cls
    for cls in (
        UpgradeRequest,
        NewSubscription,
        ImmediateUpgrade,
        ScheduledUpgrade,
        OverchargeCompensation,
        PeriodExtension,
    )
}


def reason_to_dict(reason: TransactionReason) -> dict:
    return asdict(reason)


def parse_reason(data: Optional[dict]) -> TransactionReason:
    if not data or "kind" not in data:
        raise UnknownReasonError("Transaction metadata has no reason kind.")
    cls = _REASON_TYPES.get(data["kind"])
    if cls is None:
        raise UnknownReasonError(f"Unknown transaction reason kind: {data['kind']!r}")
    allowed = {f.name for f in fields(cls)}
    try:
        return cls(**{k: v for k, v in data.items() if k in allowed})
    except TypeError as exc:
        raise UnknownReasonError(f"Malformed {data['kind']} reason: {exc}") from exc
