from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from brewstock.extensions import db
from brewstock.models import (
    AccountCredit,
    ActivityLog,
    CreditStatus,
    Subscription,
    SubscriptionStatus,
    Transaction,
    TransactionStatus,
)
from brewstock.services.billing.activation_sweeper import run_once
from brewstock.services.billing.errors import (
    AlreadyScheduled,
    ConcurrentModification,
    InvalidTimeRange,
    InvalidUpgradeRequest,
    PaymentGatewayError,
    PlanNotFound,
    SubscriptionNotFound,
)
from brewstock.services.billing.upgrade_orchestrator import UpgradeOrchestrator, UpgradeOutcome
from brewstock.services.payments import CheckoutSession

from .conftest import MID_PERIOD, PERIOD_END, PERIOD_START, make_pending_transaction

CREATE_CHECKOUT = 'brewstock.services.payments.midtrans_gateway.MidtransGateway.create_checkout'
BEFORE_PERIOD = datetime(2025, 12, 25, tzinfo=timezone.utc)
AFTER_PERIOD = PERIOD_END + timedelta(hours=1)


def test_immediate_upgrade_with_exact_charge(starter_subscription, plans, tenant):
    transaction = make_pending_transaction(tenant, plans['professional'], 57500)

    result = UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    assert result.outcome == UpgradeOutcome.IMMEDIATE_APPLIED
    assert result.correct_charge == 57500
    assert result.credit_id is None

    subscription = db.session.get(Subscription, starter_subscription.id)
    assert subscription.plan_id == plans['professional'].id
    assert subscription.period_start == MID_PERIOD

    transaction = db.session.get(Transaction, transaction.id)
    assert transaction.status == TransactionStatus.PAID
    assert transaction.details['kind'] == 'immediate_upgrade'
    assert transaction.details['remaining_days'] == 23
    assert AccountCredit.query.count() == 0


def test_overcharge_is_compensated(starter_subscription, plans, tenant):
    transaction = make_pending_transaction(tenant, plans['professional'], 196985)

    result = UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    credits = AccountCredit.query.filter_by(tenant_id=tenant.id).all()
    assert len(credits) == 1
    assert credits[0].amount == 139485
    assert credits[0].status == CreditStatus.ACTIVE
    assert result.credit_id == credits[0].id

    refunds = Transaction.query.filter_by(status=TransactionStatus.REFUND_PENDING).all()
    assert len(refunds) == 1
    assert refunds[0].amount == -139485
    assert refunds[0].related_transaction_id == transaction.id
    assert refunds[0].details['kind'] == 'overcharge_compensation'


def test_small_overcharge_within_threshold_is_ignored(starter_subscription, plans, tenant):
    transaction = make_pending_transaction(tenant, plans['professional'], 58500)

    UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    assert AccountCredit.query.count() == 0


def test_undercharge_is_recorded_as_policy_gap(starter_subscription, plans, tenant):
    transaction = make_pending_transaction(tenant, plans['professional'], 10000)

    result = UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    assert result.outcome == UpgradeOutcome.IMMEDIATE_APPLIED
    assert AccountCredit.query.count() == 0
    gap = ActivityLog.query.filter_by(event_type='billing.policy_gap').one()
    assert gap.payload['difference'] == 10000 - 57500


def test_negative_correct_charge_is_never_compensated(starter_subscription, plans, tenant):
    transaction = make_pending_transaction(tenant, plans['free'], 0)

    result = UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    assert result.correct_charge < 0
    assert AccountCredit.query.count() == 0
    assert ActivityLog.query.filter_by(event_type='billing.policy_gap').count() == 1


def test_end_of_period_upgrade_is_scheduled(starter_subscription, plans, tenant):
    transaction = make_pending_transaction(tenant, plans['professional'], 235000, 'end_of_period')

    result = UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    assert result.outcome == UpgradeOutcome.DEFERRED_SCHEDULED
    subscription = db.session.get(Subscription, starter_subscription.id)
    assert subscription.plan_id == plans['starter'].id
    assert subscription.intended_plan_id == plans['professional'].id

    transaction = db.session.get(Transaction, transaction.id)
    assert transaction.status == TransactionStatus.SCHEDULED
    assert transaction.details['scheduled_for'] == PERIOD_END.isoformat()


def test_new_tenant_bypasses_proration(tenant, plans):
    transaction = make_pending_transaction(tenant, plans['starter'], 160000)

    result = UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    assert result.outcome == UpgradeOutcome.ACTIVATED
    subscription = Subscription.query.filter_by(tenant_id=tenant.id).one()
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.plan_id == plans['starter'].id
    assert db.session.get(Transaction, transaction.id).details['kind'] == 'new_subscription'


def test_pending_checkout_subscription_is_activated_directly(tenant, plans):
    db.session.add(Subscription(
        tenant_id=tenant.id,
        plan_id=plans['free'].id,
        status=SubscriptionStatus.PENDING_CHECKOUT,
        current_period_start=datetime(2025, 12, 1, tzinfo=timezone.utc),
        current_period_end=datetime(2026, 1, 1, tzinfo=timezone.utc),
    ))
    db.session.commit()
    transaction = make_pending_transaction(tenant, plans['professional'], 235000)

    result = UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    assert result.outcome == UpgradeOutcome.ACTIVATED
    subscription = Subscription.query.filter_by(tenant_id=tenant.id).one()
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.period_start == MID_PERIOD


def test_replay_is_idempotent(starter_subscription, plans, tenant):
    transaction = make_pending_transaction(tenant, plans['professional'], 196985)

    first = UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)
    version = db.session.get(Subscription, starter_subscription.id).version_id
    second = UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    assert first.outcome == UpgradeOutcome.IMMEDIATE_APPLIED
    assert second.outcome == UpgradeOutcome.NOOP
    assert db.session.get(Subscription, starter_subscription.id).version_id == version
    assert AccountCredit.query.count() == 1


def test_failure_leaves_no_partial_state(starter_subscription, plans, tenant):
    transaction = make_pending_transaction(tenant, plans['professional'], 196985)

    with patch(
        'brewstock.services.billing.upgrade_orchestrator.CompensationLedger.compensate',
        side_effect=RuntimeError('ledger down'),
    ):
        with pytest.raises(RuntimeError):
            UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    subscription = db.session.get(Subscription, starter_subscription.id)
    assert subscription.plan_id == plans['starter'].id
    assert subscription.period_end == PERIOD_END
    assert db.session.get(Transaction, transaction.id).status == TransactionStatus.PENDING


def test_payment_before_period_start_is_rejected(starter_subscription, plans, tenant):
    version = starter_subscription.version_id
    transaction = make_pending_transaction(tenant, plans['professional'], 57500)

    with pytest.raises(InvalidTimeRange):
        UpgradeOrchestrator.apply_paid_transaction(
            transaction.id, BEFORE_PERIOD, gateway_payload={'transaction_status': 'settlement'}
        )

    subscription = db.session.get(Subscription, starter_subscription.id)
    assert subscription.plan_id == plans['starter'].id
    assert subscription.period_start == PERIOD_START
    assert subscription.period_end == PERIOD_END
    assert subscription.version_id == version

    transaction = db.session.get(Transaction, transaction.id)
    assert transaction.status == TransactionStatus.PENDING
    assert transaction.paid_at is None
    assert transaction.gateway_payload is None
    assert ActivityLog.query.filter_by(event_type='billing.payment_applied').count() == 0


def test_concurrent_modification_is_retried(starter_subscription, plans, tenant):
    transaction = make_pending_transaction(tenant, plans['professional'], 57500)

    from brewstock.services.billing import upgrade_orchestrator

    real_apply = upgrade_orchestrator._apply_once
    calls = []

    def _flaky(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise ConcurrentModification('lost the race')
        return real_apply(*args, **kwargs)

    with patch.object(upgrade_orchestrator, '_apply_once', side_effect=_flaky):
        result = UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    assert len(calls) == 2
    assert result.outcome == UpgradeOutcome.IMMEDIATE_APPLIED


def test_concurrent_modification_gives_up_after_retries(app, starter_subscription, plans, tenant):
    app.config['BILLING_LOCK_RETRIES'] = 2
    transaction = make_pending_transaction(tenant, plans['professional'], 57500)

    from brewstock.services.billing import upgrade_orchestrator

    with patch.object(upgrade_orchestrator, '_apply_once', side_effect=ConcurrentModification('busy')) as mocked:
        with pytest.raises(ConcurrentModification):
            UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    assert mocked.call_count == 3


def test_mark_payment_failed(starter_subscription, plans, tenant):
    transaction = make_pending_transaction(tenant, plans['professional'], 57500)

    result = UpgradeOrchestrator.mark_payment_failed(transaction.id, TransactionStatus.EXPIRED)
    again = UpgradeOrchestrator.mark_payment_failed(transaction.id, TransactionStatus.FAILED)

    assert result.outcome == UpgradeOutcome.FAILED
    assert again.outcome == UpgradeOutcome.NOOP
    assert db.session.get(Transaction, transaction.id).status == TransactionStatus.EXPIRED
    assert db.session.get(Subscription, starter_subscription.id).plan_id == plans['starter'].id


def test_mark_payment_failed_rejects_non_failure_status(starter_subscription, plans, tenant):
    transaction = make_pending_transaction(tenant, plans['professional'], 57500)

    with pytest.raises(InvalidUpgradeRequest):
        UpgradeOrchestrator.mark_payment_failed(transaction.id, TransactionStatus.PAID)


# --- request_upgrade ---

def test_request_immediate_upgrade_quotes_prorated_amount(starter_subscription, plans, tenant):
    checkout = CheckoutSession(provider='midtrans', token='snap-token', redirect_url='https://pay.test/snap')
    with patch(CREATE_CHECKOUT, return_value=checkout) as mocked:
        result = UpgradeOrchestrator.request_upgrade(tenant.id, plans['professional'].id, 'immediate', MID_PERIOD)

    mocked.assert_called_once()
    assert result.checkout.token == 'snap-token'
    transaction = db.session.get(Transaction, result.transaction.id)
    assert transaction.amount == 57500
    assert transaction.status == TransactionStatus.PENDING
    assert transaction.details == {
        'kind': 'upgrade_request',
        'plan_id': plans['professional'].id,
        'upgrade_option': 'immediate',
        'previous_plan_id': plans['starter'].id,
        'quoted_amount': 57500,
    }
    # Pending checkout must not touch the subscription
    subscription = db.session.get(Subscription, starter_subscription.id)
    assert subscription.plan_id == plans['starter'].id
    assert subscription.intended_plan_id is None


def test_request_end_of_period_quotes_full_price(starter_subscription, plans, tenant):
    checkout = CheckoutSession(provider='midtrans', token='t', redirect_url=None)
    with patch(CREATE_CHECKOUT, return_value=checkout):
        result = UpgradeOrchestrator.request_upgrade(tenant.id, plans['professional'].id, 'end_of_period', MID_PERIOD)

    assert result.transaction.amount == 235000


def test_request_zero_amount_applies_without_checkout(starter_subscription, plans, tenant):
    with patch(CREATE_CHECKOUT) as mocked:
        result = UpgradeOrchestrator.request_upgrade(tenant.id, plans['free'].id, 'immediate', MID_PERIOD)

    mocked.assert_not_called()
    assert result.checkout is None
    assert result.applied.outcome == UpgradeOutcome.IMMEDIATE_APPLIED
    assert db.session.get(Subscription, starter_subscription.id).plan_id == plans['free'].id


def test_request_gateway_failure_marks_transaction_failed(starter_subscription, plans, tenant):
    with patch(CREATE_CHECKOUT, side_effect=PaymentGatewayError('snap down')):
        with pytest.raises(PaymentGatewayError):
            UpgradeOrchestrator.request_upgrade(tenant.id, plans['professional'].id, 'immediate', MID_PERIOD)

    transaction = Transaction.query.filter_by(tenant_id=tenant.id).one()
    assert transaction.status == TransactionStatus.FAILED


@pytest.mark.parametrize('plan_key,option,error', [
    ('starter', 'immediate', InvalidUpgradeRequest),
    ('retired', 'immediate', InvalidUpgradeRequest),
    ('professional', 'someday', InvalidUpgradeRequest),
])
def test_request_validation(starter_subscription, plans, tenant, plan_key, option, error):
    with pytest.raises(error):
        UpgradeOrchestrator.request_upgrade(tenant.id, plans[plan_key].id, option, MID_PERIOD)
    assert Transaction.query.count() == 0


def test_request_unknown_plan(starter_subscription, tenant):
    with pytest.raises(PlanNotFound):
        UpgradeOrchestrator.request_upgrade(tenant.id, 424242, 'immediate', MID_PERIOD)


def test_request_conflicting_schedule(starter_subscription, plans, tenant):
    starter_subscription.intended_plan_id = plans['free'].id
    db.session.commit()

    with pytest.raises(AlreadyScheduled):
        UpgradeOrchestrator.request_upgrade(tenant.id, plans['professional'].id, 'end_of_period', MID_PERIOD)


# --- scheduled changes ---

def _schedule_professional(tenant, plans):
    transaction = make_pending_transaction(tenant, plans['professional'], 235000, 'end_of_period')
    UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)
    return transaction


def test_lapsed_schedule_is_promoted_before_new_payment(starter_subscription, plans, tenant):
    scheduled = _schedule_professional(tenant, plans)
    renewal = make_pending_transaction(tenant, plans['starter'], 160000, order_id='SUB-RENEWAL')

    result = UpgradeOrchestrator.apply_paid_transaction(renewal.id, AFTER_PERIOD)

    assert result.outcome == UpgradeOutcome.IMMEDIATE_APPLIED
    scheduled = db.session.get(Transaction, scheduled.id)
    assert scheduled.status == TransactionStatus.PAID
    assert scheduled.details['activated_at'] is not None

    promoted = ActivityLog.query.filter_by(event_type='subscription.promoted').one()
    assert promoted.payload['plan_id'] == plans['professional'].id
    renewal = db.session.get(Transaction, renewal.id)
    assert renewal.details['previous_plan_id'] == plans['professional'].id
    assert AccountCredit.query.count() == 0

    assert run_once(PERIOD_END + timedelta(days=40)) == 0
    assert Transaction.query.filter_by(status=TransactionStatus.SCHEDULED).count() == 0


def test_request_after_lapse_quotes_against_promoted_plan(starter_subscription, plans, tenant):
    scheduled = _schedule_professional(tenant, plans)
    checkout = CheckoutSession(provider='midtrans', token='t', redirect_url=None)

    with patch(CREATE_CHECKOUT, return_value=checkout):
        result = UpgradeOrchestrator.request_upgrade(tenant.id, plans['starter'].id, 'end_of_period', AFTER_PERIOD)

    assert result.transaction.amount == 160000
    assert result.transaction.details['previous_plan_id'] == plans['professional'].id

    subscription = db.session.get(Subscription, starter_subscription.id)
    assert subscription.plan_id == plans['professional'].id
    assert subscription.period_start == PERIOD_END
    assert subscription.intended_plan_id is None
    assert db.session.get(Transaction, scheduled.id).status == TransactionStatus.PAID


def test_clear_scheduled_change_credits_the_payment(starter_subscription, plans, tenant):
    scheduled = _schedule_professional(tenant, plans)

    subscription = UpgradeOrchestrator.clear_scheduled_change(tenant.id)

    assert subscription.plan_id == plans['starter'].id
    assert subscription.intended_plan_id is None

    scheduled = db.session.get(Transaction, scheduled.id)
    assert scheduled.status == TransactionStatus.CANCELLED
    assert scheduled.details['released_at'] is not None

    credit = AccountCredit.query.filter_by(tenant_id=tenant.id).one()
    assert credit.amount == 235000
    assert credit.reason == 'scheduled_change_cleared'
    assert credit.source_transaction_id == scheduled.id
    refund = Transaction.query.filter_by(status=TransactionStatus.REFUND_PENDING).one()
    assert refund.amount == -235000
    assert refund.related_transaction_id == scheduled.id

    assert run_once(PERIOD_END + timedelta(days=1)) == 0


def test_clear_without_schedule_is_a_noop(starter_subscription, tenant):
    subscription = UpgradeOrchestrator.clear_scheduled_change(tenant.id)

    assert subscription.intended_plan_id is None
    assert AccountCredit.query.count() == 0


def test_clear_without_subscription(tenant):
    with pytest.raises(SubscriptionNotFound):
        UpgradeOrchestrator.clear_scheduled_change(tenant.id)


def test_cleared_schedule_allows_a_different_plan(starter_subscription, plans, tenant):
    _schedule_professional(tenant, plans)
    UpgradeOrchestrator.clear_scheduled_change(tenant.id)

    with patch(CREATE_CHECKOUT) as mocked:
        result = UpgradeOrchestrator.request_upgrade(tenant.id, plans['free'].id, 'end_of_period', MID_PERIOD)

    mocked.assert_not_called()
    assert result.applied.outcome == UpgradeOutcome.DEFERRED_SCHEDULED
    assert db.session.get(Subscription, starter_subscription.id).intended_plan_id == plans['free'].id


def test_cancel_releases_scheduled_payment(starter_subscription, plans, tenant):
    scheduled = _schedule_professional(tenant, plans)

    subscription = UpgradeOrchestrator.cancel_subscription(tenant.id)

    assert subscription.status == SubscriptionStatus.CANCELLED
    assert db.session.get(Transaction, scheduled.id).status == TransactionStatus.CANCELLED
    credit = AccountCredit.query.filter_by(tenant_id=tenant.id).one()
    assert credit.amount == 235000
    assert credit.reason == 'subscription_cancelled'


def test_immediate_upgrade_releases_pending_schedule(starter_subscription, plans, tenant):
    scheduled = _schedule_professional(tenant, plans)
    transaction = make_pending_transaction(tenant, plans['professional'], 57500)

    result = UpgradeOrchestrator.apply_paid_transaction(transaction.id, MID_PERIOD)

    assert result.outcome == UpgradeOutcome.IMMEDIATE_APPLIED
    assert result.credit_id is None
    subscription = db.session.get(Subscription, starter_subscription.id)
    assert subscription.plan_id == plans['professional'].id
    assert subscription.intended_plan_id is None

    assert db.session.get(Transaction, scheduled.id).status == TransactionStatus.CANCELLED
    credit = AccountCredit.query.filter_by(tenant_id=tenant.id).one()
    assert credit.amount == 235000
    assert credit.reason == 'scheduled_change_replaced'


def test_conflicting_schedule_at_apply_is_recorded(starter_subscription, plans, tenant):
    _schedule_professional(tenant, plans)
    second = make_pending_transaction(tenant, plans['free'], 0, 'end_of_period')

    with pytest.raises(AlreadyScheduled):
        UpgradeOrchestrator.apply_paid_transaction(second.id, MID_PERIOD)

    assert db.session.get(Transaction, second.id).status == TransactionStatus.PENDING
    assert db.session.get(Subscription, starter_subscription.id).intended_plan_id == plans['professional'].id

    gap = ActivityLog.query.filter_by(event_type='billing.policy_gap').one()
    assert gap.payload['cause'] == 'already_scheduled'
    assert gap.payload['transaction_id'] == second.id
    assert gap.payload['difference'] is None
