"""Subscription Record Manager

Synopsis:
Owns every state transition of a Subscription row. Functions mutate and flush
inside the caller's unit of work; committing is the caller's job.

Glossary:
- Intended plan: Plan paid for with end-of-period timing, awaiting promotion.
- Tiling: A promoted period starts exactly where the previous one ended.
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from ...extensions import db
from ...models import Subscription, SubscriptionStatus
from ...utils.timezone_utils import TimezoneUtils
from .. import activity_logger
from . import periods
from .errors import AlreadyScheduled, ConcurrentModification, NotDue, SubscriptionNotFound
from .plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)


# --- Row access ---
# Purpose: Load a subscription with a row lock where the dialect supports it.
def load_for_update(subscription_id: int) -> Subscription:
    stmt = select(Subscription).where(Subscription.id == subscription_id).with_for_update()
    subscription = db.session.execute(stmt).scalar_one_or_none()
    if subscription is None:
        raise SubscriptionNotFound(f"Subscription {subscription_id} does not exist.")
    return subscription


def find_for_tenant(tenant_id: int, *, lock: bool = False) -> Subscription | None:
    stmt = select(Subscription).where(Subscription.tenant_id == tenant_id)
    if lock:
        stmt = stmt.with_for_update()
    return db.session.execute(stmt).scalar_one_or_none()


def _flush(subscription: Subscription) -> Subscription:
    try:
        db.session.flush()
    except StaleDataError as exc:
        raise ConcurrentModification(
            f"Subscription {subscription.id} was modified concurrently."
        ) from exc
    return subscription


def _snapshot(subscription: Subscription) -> dict:
    return {
        "subscription_id": subscription.id,
        "plan_id": subscription.plan_id,
        "status": subscription.status,
        "current_period_start": TimezoneUtils.format_for_api(subscription.current_period_start),
        "current_period_end": TimezoneUtils.format_for_api(subscription.current_period_end),
        "intended_plan_id": subscription.intended_plan_id,
    }


def _start_period(subscription: Subscription, plan_id: int, start: datetime) -> None:
    plan = PlanCatalog.get_plan(plan_id)
    period_start, period_end = periods.period_for(start, plan.interval)
    subscription.plan_id = plan.id
    subscription.current_period_start = period_start
    subscription.current_period_end = period_end
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.intended_plan_id = None


# --- Immediate activation ---
# Purpose: Switch plan now and start a fresh period at ``now``.
def activate_immediate(subscription_id: int, new_plan_id: int, now: datetime) -> Subscription:
    subscription = load_for_update(subscription_id)
    previous_plan_id = subscription.plan_id
    _start_period(subscription, new_plan_id, TimezoneUtils.ensure_timezone_aware(now))
    activity_logger.record(
        subscription.tenant_id,
        "subscription.activated",
        {**_snapshot(subscription), "previous_plan_id": previous_plan_id},
    )
    logger.info("Subscription %s activated on plan %s", subscription.id, new_plan_id)
    return _flush(subscription)


# --- Deferred scheduling ---
# Purpose: Record the plan to activate when the current period ends.
def schedule_deferred(subscription_id: int, new_plan_id: int) -> Subscription:
    subscription = load_for_update(subscription_id)
    plan = PlanCatalog.get_plan(new_plan_id)

    if subscription.intended_plan_id == plan.id:
        return subscription
    if subscription.intended_plan_id is not None:
        raise AlreadyScheduled(
            f"Subscription {subscription.id} already has plan {subscription.intended_plan_id} scheduled."
        )

    subscription.intended_plan_id = plan.id
    activity_logger.record(subscription.tenant_id, "subscription.scheduled", _snapshot(subscription))
    logger.info("Subscription %s scheduled to move to plan %s", subscription.id, plan.id)
    return _flush(subscription)


# --- Promotion ---
# Purpose: Activate the intended plan once the current period has ended.
def promote_scheduled(subscription_id: int, now: datetime) -> Subscription:
    subscription = load_for_update(subscription_id)
    now = TimezoneUtils.ensure_timezone_aware(now)

    if subscription.intended_plan_id is None:
        raise NotDue(f"Subscription {subscription.id} has no scheduled plan.")
    if subscription.period_end > now:
        raise NotDue(
            f"Subscription {subscription.id} period ends at {subscription.period_end.isoformat()}."
        )

    previous_plan_id = subscription.plan_id
    promoted_plan_id = subscription.intended_plan_id
    _start_period(subscription, promoted_plan_id, subscription.period_end)
    activity_logger.record(
        subscription.tenant_id,
        "subscription.promoted",
        {**_snapshot(subscription), "previous_plan_id": previous_plan_id},
    )
    logger.info("Subscription %s promoted to plan %s", subscription.id, promoted_plan_id)
    return _flush(subscription)


# --- New tenant activation ---
# Purpose: Create (or activate a never-activated) subscription for a tenant.
def create_active(tenant_id: int, plan_id: int, now: datetime) -> Subscription:
    subscription = find_for_tenant(tenant_id, lock=True)
    if subscription is None:
        subscription = Subscription(tenant_id=tenant_id, status=SubscriptionStatus.PENDING_CHECKOUT)
        db.session.add(subscription)

    _start_period(subscription, plan_id, TimezoneUtils.ensure_timezone_aware(now))
    _flush(subscription)
    activity_logger.record(tenant_id, "subscription.created", _snapshot(subscription))
    logger.info("Tenant %s subscribed to plan %s", tenant_id, plan_id)
    return subscription


def clear_scheduled(subscription_id: int) -> Subscription:
    subscription = load_for_update(subscription_id)
    if subscription.intended_plan_id is None:
        return subscription
    cleared_plan_id = subscription.intended_plan_id
    subscription.intended_plan_id = None
    activity_logger.record(
        subscription.tenant_id,
        "subscription.schedule_cleared",
        {**_snapshot(subscription), "cleared_plan_id": cleared_plan_id},
    )
    return _flush(subscription)


def cancel(subscription_id: int) -> Subscription:
    subscription = load_for_update(subscription_id)
    if subscription.status == SubscriptionStatus.CANCELLED:
        return subscription
    subscription.status = SubscriptionStatus.CANCELLED
    subscription.intended_plan_id = None
    activity_logger.record(subscription.tenant_id, "subscription.cancelled", _snapshot(subscription))
    logger.info("Subscription %s cancelled", subscription.id)
    return _flush(subscription)


def expire(subscription_id: int) -> Subscription:
    subscription = load_for_update(subscription_id)
    if subscription.status == SubscriptionStatus.EXPIRED:
        return subscription
    subscription.status = SubscriptionStatus.EXPIRED
    subscription.intended_plan_id = None
    activity_logger.record(subscription.tenant_id, "subscription.expired", _snapshot(subscription))
    logger.info("Subscription %s expired", subscription.id)
    return _flush(subscription)


def extend_period(subscription_id: int, days: int) -> Subscription:
    subscription = load_for_update(subscription_id)
    previous_end = subscription.period_end
    subscription.current_period_end = periods.extend_by_days(previous_end, days)
    activity_logger.record(
        subscription.tenant_id,
        "subscription.extended",
        {
            **_snapshot(subscription),
            "days_added": days,
            "previous_period_end": TimezoneUtils.format_for_api(previous_end),
        },
    )
    return _flush(subscription)
