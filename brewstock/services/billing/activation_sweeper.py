"""Scheduled Activation Sweeper

Synopsis:
Periodic task that promotes due end-of-period plan changes and expires paid
subscriptions that lapsed beyond the grace window. Each subscription is
committed on its own; a failing row is logged and skipped.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from flask import current_app
from sqlalchemy import select

from ...extensions import db
from ...models import Subscription, SubscriptionPlan, SubscriptionStatus, Transaction, TransactionStatus
from ...utils.timezone_utils import TimezoneUtils
from . import subscription_manager
from .errors import BillingError, NotDue, PlanNotFound
from .reasons import ScheduledUpgrade, reason_to_dict

logger = logging.getLogger(__name__)


def _due_subscription_ids(now: datetime, limit: Optional[int]) -> List[int]:
    stmt = (
        select(Subscription.id)
        .where(
            Subscription.intended_plan_id.isnot(None),
            Subscription.current_period_end <= now,
        )
        .order_by(Subscription.current_period_end.asc(), Subscription.id.asc())
    )
    if limit:
        stmt = stmt.limit(limit)
    return list(db.session.execute(stmt).scalars().all())


def _settle_scheduled_transactions(subscription: Subscription, plan_id: int, now: datetime) -> int:
    transactions = Transaction.query.filter_by(
        tenant_id=subscription.tenant_id,
        plan_id=plan_id,
        status=TransactionStatus.SCHEDULED,
    ).all()
    for transaction in transactions:
        details = dict(transaction.details or {})
        transaction.status = TransactionStatus.PAID
        transaction.details = reason_to_dict(
            ScheduledUpgrade(
                plan_id=plan_id,
                previous_plan_id=details.get("previous_plan_id"),
                scheduled_for=details.get("scheduled_for") or TimezoneUtils.format_for_api(now),
                activated_at=TimezoneUtils.format_for_api(now),
            )
        )
    return len(transactions)


def _promote_and_settle(subscription: Subscription, now: datetime) -> None:
    plan_id = subscription.intended_plan_id
    subscription_manager.promote_scheduled(subscription.id, now)
    settled = _settle_scheduled_transactions(subscription, plan_id, now)
    logger.info(
        "Promoted subscription %s to plan %s (%s scheduled transactions settled)",
        subscription.id, plan_id, settled,
    )


def promote_due(subscription: Optional[Subscription], now: datetime) -> bool:
    """Promote a due scheduled change inside the caller's unit of work.

    Used by the billing paths that read a subscription the sweeper has not
    reached yet. Returns False when nothing is due.
    """
    if subscription is None or subscription.intended_plan_id is None:
        return False
    if subscription.period_end > TimezoneUtils.ensure_timezone_aware(now):
        return False
    _promote_and_settle(subscription, now)
    return True


def _promote_one(subscription_id: int, now: datetime) -> bool:
    subscription = subscription_manager.load_for_update(subscription_id)
    _promote_and_settle(subscription, now)
    db.session.commit()
    return True


class ScheduledActivationSweeper:

    @staticmethod
    def run_once(now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
        """Promote every due scheduled change. Returns the number promoted."""
        now = TimezoneUtils.ensure_timezone_aware(now) or TimezoneUtils.utc_now()
        promoted = 0
        for subscription_id in _due_subscription_ids(now, limit):
            try:
                if _promote_one(subscription_id, now):
                    promoted += 1
            except NotDue:
                db.session.rollback()
                logger.info("Subscription %s no longer due; skipped", subscription_id)
            except PlanNotFound:
                db.session.rollback()
                logger.error("Scheduled plan for subscription %s is missing; skipped", subscription_id)
            except Exception:
                db.session.rollback()
                logger.exception("Failed to promote subscription %s", subscription_id)
        if promoted:
            logger.info("Activated %s scheduled upgrades", promoted)
        return promoted

    @staticmethod
    def expire_lapsed(now: Optional[datetime] = None) -> int:
        """Expire paid ACTIVE subscriptions past their period end plus grace."""
        now = TimezoneUtils.ensure_timezone_aware(now) or TimezoneUtils.utc_now()
        grace_days = int(current_app.config.get("SUBSCRIPTION_GRACE_DAYS", 7))
        cutoff = now - timedelta(days=grace_days)

        stmt = (
            select(Subscription.id)
            .join(SubscriptionPlan, SubscriptionPlan.id == Subscription.plan_id)
            .where(
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.intended_plan_id.is_(None),
                Subscription.current_period_end < cutoff,
                SubscriptionPlan.price > 0,
            )
        )
        expired = 0
        for subscription_id in db.session.execute(stmt).scalars().all():
            try:
                subscription_manager.expire(subscription_id)
                db.session.commit()
                expired += 1
            except BillingError:
                db.session.rollback()
                logger.exception("Failed to expire subscription %s", subscription_id)
        if expired:
            logger.info("Expired %s lapsed subscriptions", expired)
        return expired


run_once = ScheduledActivationSweeper.run_once
expire_lapsed = ScheduledActivationSweeper.expire_lapsed
