import pytest

from brewstock.extensions import cache, db
from brewstock.models import SubscriptionPlan
from brewstock.services.billing.errors import PlanImmutableError, PlanNotFound
from brewstock.services.billing.plan_catalog import PlanCatalog


def test_get_plan_returns_snapshot(plans):
    snapshot = PlanCatalog.get_plan(plans['starter'].id)

    assert snapshot.key == 'starter'
    assert snapshot.price == 160000
    assert snapshot.currency == 'IDR'


def test_get_plan_accepts_string_ids(plans):
    assert PlanCatalog.get_plan(str(plans['free'].id)).key == 'free'


def test_get_plan_missing(app_context):
    with pytest.raises(PlanNotFound):
        PlanCatalog.get_plan(9999)
    with pytest.raises(PlanNotFound):
        PlanCatalog.get_plan('abc')


def test_get_plan_by_key(plans):
    assert PlanCatalog.get_plan_by_key('professional').id == plans['professional'].id
    with pytest.raises(PlanNotFound):
        PlanCatalog.get_plan_by_key('platinum')


def test_list_active_plans_excludes_retired(plans):
    keys = [plan.key for plan in PlanCatalog.list_active_plans()]

    assert keys == ['free', 'starter', 'professional']


def test_unreferenced_plan_can_be_repriced(plans):
    plan = db.session.get(SubscriptionPlan, plans['professional'].id)
    plan.price = 250000
    db.session.commit()

    assert db.session.get(SubscriptionPlan, plan.id).price == 250000


def test_referenced_plan_pricing_is_frozen(starter_subscription, plans):
    plan = db.session.get(SubscriptionPlan, plans['starter'].id)
    plan.price = 1

    with pytest.raises(PlanImmutableError):
        db.session.commit()
    db.session.rollback()

    assert db.session.get(SubscriptionPlan, plans['starter'].id).price == 160000


def test_referenced_plan_allows_cosmetic_edits(starter_subscription, plans):
    plan = db.session.get(SubscriptionPlan, plans['starter'].id)
    plan.name = 'Starter Roast'
    db.session.commit()

    assert db.session.get(SubscriptionPlan, plan.id).name == 'Starter Roast'


def test_snapshot_is_cached(app, plans):
    app.config['CACHE_TYPE'] = 'SimpleCache'
    cache.init_app(app)
    try:
        plan_id = plans['starter'].id
        PlanCatalog.get_plan(plan_id)
        assert cache.get(PlanCatalog.cache_key(plan_id)) is not None

        PlanCatalog.invalidate(plan_id)
        assert cache.get(PlanCatalog.cache_key(plan_id)) is None
    finally:
        app.config['CACHE_TYPE'] = 'NullCache'
        cache.init_app(app)
