"""
Pytest configuration and shared fixtures for BrewStock billing tests.
"""
import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from brewstock import create_app
from brewstock.extensions import db
from brewstock.models import (
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
    Tenant,
    Transaction,
    TransactionStatus,
    User,
    UserRole,
)
from brewstock.services.billing.reasons import UpgradeRequest, reason_to_dict

PERIOD_START = datetime(2026, 1, 1, tzinfo=timezone.utc)
PERIOD_END = datetime(2026, 1, 31, tzinfo=timezone.utc)
# 23 of 30 days remain
MID_PERIOD = datetime(2026, 1, 8, tzinfo=timezone.utc)


@pytest.fixture(scope='function')
def app():
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp()

    app = create_app({
        'TESTING': True,
        'DATABASE_URL': f'sqlite:///{db_path}',
        'WTF_CSRF_ENABLED': False,
        'SECRET_KEY': 'test-secret-key',
        'CACHE_TYPE': 'NullCache',
        'RATELIMIT_ENABLED': False,
        'PAYMENT_PROVIDER': 'midtrans',
        'MIDTRANS_SERVER_KEY': 'SB-Mid-server-test',
        'STRIPE_SECRET_KEY': 'sk_test_fake',
        'STRIPE_WEBHOOK_SECRET': 'whsec_test_fake',
        'CRON_SECRET': 'cron-test-secret',
        'BILLING_LOCK_BACKOFF_MS': 0,
    })

    with app.app_context():
        db.create_all()
        _create_test_data()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()

    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def app_context(app):
    with app.app_context():
        yield


@pytest.fixture
def tenant(app_context):
    return Tenant.query.filter_by(slug='coffee-central').first()


@pytest.fixture
def plans(app_context):
    return {plan.key: plan for plan in SubscriptionPlan.query.all()}


@pytest.fixture
def starter_subscription(tenant, plans):
    """Tenant on Starter for [Jan 1, Jan 31)."""
    subscription = Subscription(
        tenant_id=tenant.id,
        plan_id=plans['starter'].id,
        status=SubscriptionStatus.ACTIVE,
        current_period_start=PERIOD_START,
        current_period_end=PERIOD_END,
    )
    db.session.add(subscription)
    db.session.commit()
    return subscription


def login(client, user):
    with client.session_transaction() as sess:
        sess['_user_id'] = str(user.id)
        sess['_fresh'] = True


def make_pending_transaction(tenant, plan, amount, upgrade_option='immediate', order_id=None):
    transaction = Transaction(
        tenant_id=tenant.id,
        plan_id=plan.id,
        order_id=order_id or f'SUB-TEST-{plan.key}-{amount}',
        amount=amount,
        currency=plan.currency,
        status=TransactionStatus.PENDING,
        billing_cycle=plan.interval,
        details=reason_to_dict(UpgradeRequest(plan_id=plan.id, upgrade_option=upgrade_option)),
    )
    db.session.add(transaction)
    db.session.commit()
    return transaction


def active_period_around(now):
    start = now - timedelta(days=7)
    return start, start + timedelta(days=30)


def _create_test_data():
    tenant = Tenant(name='Coffee Central', slug='coffee-central')
    db.session.add(tenant)
    db.session.flush()

    db.session.add_all([
        User(tenant_id=tenant.id, email='owner@coffee.test', name='Owner', role=UserRole.ADMIN),
        User(tenant_id=tenant.id, email='barista@coffee.test', name='Barista', role=UserRole.MEMBER),
    ])
    db.session.add_all([
        SubscriptionPlan(key='free', name='Free', price=0, currency='IDR', interval='MONTHLY', max_users=1),
        SubscriptionPlan(key='starter', name='Starter', price=160000, currency='IDR', interval='MONTHLY', max_users=5),
        SubscriptionPlan(key='professional', name='Professional', price=235000, currency='IDR', interval='MONTHLY', max_users=20),
        SubscriptionPlan(key='retired', name='Retired', price=99000, currency='IDR', interval='MONTHLY', is_active=False),
    ])
    db.session.commit()
