from datetime import datetime, timezone

import pytest
from sqlalchemy.orm.exc import StaleDataError

from brewstock.extensions import db
from brewstock.models import ActivityLog, Subscription, SubscriptionStatus
from brewstock.services.billing import subscription_manager
from brewstock.services.billing.errors import (
    AlreadyScheduled,
    ConcurrentModification,
    NotDue,
    PlanNotFound,
    SubscriptionNotFound,
)

from .conftest import MID_PERIOD, PERIOD_END


def _events(tenant):
    return [entry.event_type for entry in ActivityLog.query.filter_by(tenant_id=tenant.id).order_by(ActivityLog.id)]


def test_activate_immediate_starts_fresh_period(starter_subscription, plans, tenant):
    subscription = subscription_manager.activate_immediate(starter_subscription.id, plans['professional'].id, MID_PERIOD)
    db.session.commit()

    assert subscription.plan_id == plans['professional'].id
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.period_start == MID_PERIOD
    assert subscription.period_end == datetime(2026, 2, 8, tzinfo=timezone.utc)
    assert subscription.intended_plan_id is None
    assert _events(tenant) == ['subscription.activated']


def test_activate_immediate_clears_scheduled_plan(starter_subscription, plans):
    subscription_manager.schedule_deferred(starter_subscription.id, plans['professional'].id)
    subscription = subscription_manager.activate_immediate(starter_subscription.id, plans['free'].id, MID_PERIOD)

    assert subscription.intended_plan_id is None


def test_schedule_deferred_sets_only_intended_plan(starter_subscription, plans):
    subscription = subscription_manager.schedule_deferred(starter_subscription.id, plans['professional'].id)
    db.session.commit()

    assert subscription.plan_id == plans['starter'].id
    assert subscription.intended_plan_id == plans['professional'].id
    assert subscription.period_end == PERIOD_END


def test_schedule_deferred_same_plan_is_noop(starter_subscription, plans, tenant):
    subscription_manager.schedule_deferred(starter_subscription.id, plans['professional'].id)
    subscription_manager.schedule_deferred(starter_subscription.id, plans['professional'].id)
    db.session.commit()

    assert _events(tenant) == ['subscription.scheduled']


def test_schedule_deferred_rejects_different_plan(starter_subscription, plans):
    subscription_manager.schedule_deferred(starter_subscription.id, plans['professional'].id)

    with pytest.raises(AlreadyScheduled):
        subscription_manager.schedule_deferred(starter_subscription.id, plans['free'].id)


def test_clear_then_reschedule(starter_subscription, plans):
    subscription_manager.schedule_deferred(starter_subscription.id, plans['professional'].id)
    subscription_manager.clear_scheduled(starter_subscription.id)
    subscription = subscription_manager.schedule_deferred(starter_subscription.id, plans['free'].id)

    assert subscription.intended_plan_id == plans['free'].id


def test_schedule_unknown_plan(starter_subscription):
    with pytest.raises(PlanNotFound):
        subscription_manager.schedule_deferred(starter_subscription.id, 9999)


def test_promote_requires_due_period(starter_subscription, plans):
    subscription_manager.schedule_deferred(starter_subscription.id, plans['professional'].id)

    with pytest.raises(NotDue):
        subscription_manager.promote_scheduled(starter_subscription.id, MID_PERIOD)


def test_promote_requires_scheduled_plan(starter_subscription):
    with pytest.raises(NotDue):
        subscription_manager.promote_scheduled(starter_subscription.id, PERIOD_END)


def test_consecutive_promotions_tile_periods(starter_subscription, plans):
    subscription_manager.schedule_deferred(starter_subscription.id, plans['professional'].id)
    first = subscription_manager.promote_scheduled(starter_subscription.id, datetime(2026, 2, 3, tzinfo=timezone.utc))
    first_end = first.period_end

    assert first.period_start == PERIOD_END
    assert first.plan_id == plans['professional'].id
    assert first.intended_plan_id is None

    subscription_manager.schedule_deferred(starter_subscription.id, plans['starter'].id)
    second = subscription_manager.promote_scheduled(starter_subscription.id, datetime(2026, 4, 1, tzinfo=timezone.utc))

    assert second.period_start == first_end
    assert second.period_end > second.period_start


def test_create_active_for_new_tenant(tenant, plans):
    subscription = subscription_manager.create_active(tenant.id, plans['starter'].id, MID_PERIOD)
    db.session.commit()

    assert subscription.id is not None
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert Subscription.query.filter_by(tenant_id=tenant.id).count() == 1
    assert _events(tenant) == ['subscription.created']


def test_cancel_and_expire(starter_subscription, plans):
    subscription_manager.schedule_deferred(starter_subscription.id, plans['professional'].id)
    cancelled = subscription_manager.cancel(starter_subscription.id)

    assert cancelled.status == SubscriptionStatus.CANCELLED
    assert cancelled.intended_plan_id is None

    expired = subscription_manager.expire(starter_subscription.id)
    assert expired.status == SubscriptionStatus.EXPIRED


def test_extend_period(starter_subscription):
    subscription = subscription_manager.extend_period(starter_subscription.id, 5)

    assert subscription.period_end == datetime(2026, 2, 5, tzinfo=timezone.utc)


def test_missing_subscription(app_context):
    with pytest.raises(SubscriptionNotFound):
        subscription_manager.cancel(12345)


def test_version_counter_increments(starter_subscription, plans):
    version = starter_subscription.version_id
    subscription_manager.schedule_deferred(starter_subscription.id, plans['professional'].id)
    db.session.commit()

    assert starter_subscription.version_id == version + 1


def test_stale_write_surfaces_as_concurrent_modification(starter_subscription, plans, monkeypatch):
    def _stale_flush(*args, **kwargs):
        raise StaleDataError('version mismatch')

    monkeypatch.setattr(db.session, 'flush', _stale_flush)

    with pytest.raises(ConcurrentModification):
        subscription_manager.extend_period(starter_subscription.id, 1)
