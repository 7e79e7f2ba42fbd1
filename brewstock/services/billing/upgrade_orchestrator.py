"""Upgrade Orchestrator

Synopsis:
Turns a paid plan-change transaction into a subscription change. Immediate
upgrades are prorated and applied now; end-of-period upgrades are scheduled
for the sweeper. Each application runs in one database transaction and is
idempotent on the transaction's terminal status.

Glossary:
- Overcharge: Amount paid minus the prorated correct charge, when positive.
- Policy gap: Undercharge, negative correct charge, or a captured payment that
  cannot be applied; recorded, never compensated.
- Release: Crediting back a paid scheduled change that is cleared or replaced.
- Fresh activation: Tenant has no active period to prorate against.
"""
from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from ...extensions import db
from ...models import Subscription, SubscriptionStatus, Transaction, TransactionStatus
from ...utils.timezone_utils import TimezoneUtils
from .. import activity_logger
from ..payments import CheckoutSession, get_gateway
from . import activation_sweeper, proration, subscription_manager
from .compensation_ledger import CompensationLedger
from .errors import (
    AlreadyScheduled,
    ConcurrentModification,
    InvalidUpgradeRequest,
    PaymentGatewayError,
    SubscriptionNotFound,
    TransactionNotFound,
)
from .plan_catalog import PlanCatalog, PlanSnapshot
from .reasons import (
    UPGRADE_END_OF_PERIOD,
    UPGRADE_IMMEDIATE,
    UPGRADE_OPTIONS,
    ImmediateUpgrade,
    NewSubscription,
    ScheduledUpgrade,
    UpgradeRequest,
    reason_to_dict,
)

logger = logging.getLogger(__name__)


class UpgradeOutcome:
    NOOP = "NOOP"
    ACTIVATED = "ACTIVATED"
    IMMEDIATE_APPLIED = "IMMEDIATE_APPLIED"
    DEFERRED_SCHEDULED = "DEFERRED_SCHEDULED"
    FAILED = "FAILED"


@dataclass
class ApplyResult:
    outcome: str
    transaction_id: int
    subscription_id: Optional[int] = None
    correct_charge: Optional[int] = None
    credit_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "transaction_id": self.transaction_id,
            "subscription_id": self.subscription_id,
            "correct_charge": self.correct_charge,
            "credit_id": self.credit_id,
        }


@dataclass
class UpgradeRequestResult:
    transaction: Transaction
    checkout: Optional[CheckoutSession]
    applied: Optional[ApplyResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction": self.transaction.to_dict(),
            "checkout": self.checkout.to_dict() if self.checkout else None,
            "applied": self.applied.to_dict() if self.applied else None,
        }


def generate_order_id(prefix: str = "SUB") -> str:
    timestamp = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"{prefix}-{timestamp}-{suffix}"


def _needs_fresh_activation(subscription: Optional[Subscription], now: datetime) -> bool:
    if subscription is None or subscription.status != SubscriptionStatus.ACTIVE:
        return True
    return subscription.period_end <= now


# --- Retry wrapper ---
# Purpose: Commit a unit of work, retrying on optimistic-lock conflicts.
def _run_in_transaction(operation, *args, **kwargs):
    retries = max(int(current_app.config.get("BILLING_LOCK_RETRIES", 3)), 0)
    backoff = max(int(current_app.config.get("BILLING_LOCK_BACKOFF_MS", 50)), 0) / 1000.0
    attempt = 0
    while True:
        try:
            result = operation(*args, **kwargs)
            db.session.commit()
            return result
        except (ConcurrentModification, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= retries:
                if isinstance(exc, StaleDataError):
                    raise ConcurrentModification(str(exc)) from exc
                raise
            attempt += 1
            logger.info("Billing write conflict; retry %s/%s", attempt, retries)
            time.sleep(backoff * attempt)
        except Exception:
            db.session.rollback()
            raise


def _load_transaction(transaction_id: int) -> Transaction:
    stmt = select(Transaction).where(Transaction.id == transaction_id).with_for_update()
    transaction = db.session.execute(stmt).scalar_one_or_none()
    if transaction is None:
        raise TransactionNotFound(f"Transaction {transaction_id} does not exist.")
    return transaction


def _requested_option(transaction: Transaction) -> str:
    reason = transaction.reason()
    if isinstance(reason, UpgradeRequest):
        return reason.upgrade_option
    if isinstance(reason, NewSubscription):
        return UPGRADE_IMMEDIATE
    raise InvalidUpgradeRequest(
        f"Transaction {transaction.order_id} ({reason.kind}) is not a plan purchase."
    )


def _mark_paid(transaction: Transaction, status: str, now: datetime, reason) -> None:
    transaction.status = status
    transaction.paid_at = now
    transaction.details = reason_to_dict(reason)


def _record_policy_gap(transaction: Transaction, correct_charge: Optional[int], **extra) -> None:
    difference = None if correct_charge is None else int(transaction.amount) - correct_charge
    logger.warning(
        "Uncompensated billing difference on %s: charged %s, correct %s",
        transaction.order_id, transaction.amount, correct_charge,
    )
    activity_logger.record(
        transaction.tenant_id,
        "billing.policy_gap",
        {
            "transaction_id": transaction.id,
            "amount_charged": int(transaction.amount),
            "correct_charge": correct_charge,
            "difference": difference,
            **extra,
        },
    )


def _release_scheduled_plan(tenant_id: int, scheduled_plan_id: Optional[int], reason: str) -> None:
    # Clearing intended_plan_id must not strand the payment that bought it
    if scheduled_plan_id is not None:
        CompensationLedger.release_scheduled(tenant_id, scheduled_plan_id, reason)


# --- Apply: fresh activation ---
def _apply_fresh(transaction: Transaction, plan: PlanSnapshot, now: datetime) -> ApplyResult:
    existing = subscription_manager.find_for_tenant(transaction.tenant_id)
    if existing is not None:
        _release_scheduled_plan(transaction.tenant_id, existing.intended_plan_id, "scheduled_change_replaced")
    subscription = subscription_manager.create_active(transaction.tenant_id, plan.id, now)
    _mark_paid(transaction, TransactionStatus.PAID, now, NewSubscription(plan_id=plan.id))
    return ApplyResult(UpgradeOutcome.ACTIVATED, transaction.id, subscription.id)


# --- Apply: immediate upgrade ---
def _apply_immediate(transaction: Transaction, subscription: Subscription, plan: PlanSnapshot, now: datetime) -> ApplyResult:
    current_plan = PlanCatalog.get_plan(subscription.plan_id)
    result = proration.calculate(current_plan, plan, subscription.period_start, subscription.period_end, now)

    _release_scheduled_plan(transaction.tenant_id, subscription.intended_plan_id, "scheduled_change_replaced")
    subscription_manager.activate_immediate(subscription.id, plan.id, now)
    _mark_paid(
        transaction,
        TransactionStatus.PAID,
        now,
        ImmediateUpgrade(
            plan_id=plan.id,
            previous_plan_id=current_plan.id,
            correct_charge=result.correct_charge,
            unused_value=str(result.unused_value),
            new_plan_prorated=str(result.new_plan_prorated),
            remaining_days=result.remaining_days,
            total_days=result.total_days,
        ),
    )

    outcome = ApplyResult(UpgradeOutcome.IMMEDIATE_APPLIED, transaction.id, subscription.id, result.correct_charge)
    difference = int(transaction.amount) - result.correct_charge
    threshold = int(current_app.config.get("OVERCHARGE_THRESHOLD", 1000))

    if result.correct_charge < 0 or (abs(difference) > threshold and difference < 0):
        _record_policy_gap(transaction, result.correct_charge)
    elif abs(difference) > threshold:
        credit = CompensationLedger.compensate(
            transaction.tenant_id,
            difference,
            "overcharge_compensation",
            {
                "original_transaction_id": transaction.id,
                "amount_charged": int(transaction.amount),
                "correct_charge": result.correct_charge,
                "plan_id": plan.id,
                "currency": transaction.currency,
            },
        )
        db.session.flush()
        outcome.credit_id = credit.id
    return outcome


# --- Apply: end-of-period upgrade ---
def _apply_deferred(transaction: Transaction, subscription: Subscription, plan: PlanSnapshot, now: datetime) -> ApplyResult:
    previous_plan_id = subscription.plan_id
    subscription_manager.schedule_deferred(subscription.id, plan.id)
    _mark_paid(
        transaction,
        TransactionStatus.SCHEDULED,
        now,
        ScheduledUpgrade(
            plan_id=plan.id,
            previous_plan_id=previous_plan_id,
            scheduled_for=TimezoneUtils.format_for_api(subscription.period_end),
        ),
    )
    return ApplyResult(UpgradeOutcome.DEFERRED_SCHEDULED, transaction.id, subscription.id)


def _apply_once(transaction_id: int, now: datetime, gateway_payload: Optional[dict], gateway_reference: Optional[str]) -> ApplyResult:
    transaction = _load_transaction(transaction_id)
    if transaction.is_terminal:
        logger.info("Transaction %s already %s; nothing to apply", transaction.order_id, transaction.status)
        return ApplyResult(UpgradeOutcome.NOOP, transaction.id)

    if gateway_payload is not None:
        transaction.gateway_payload = gateway_payload
    if gateway_reference:
        transaction.gateway_reference = gateway_reference

    option = _requested_option(transaction)
    plan = PlanCatalog.get_plan(transaction.plan_id)
    subscription = subscription_manager.find_for_tenant(transaction.tenant_id, lock=True)
    activation_sweeper.promote_due(subscription, now)

    if _needs_fresh_activation(subscription, now):
        result = _apply_fresh(transaction, plan, now)
    elif option == UPGRADE_IMMEDIATE:
        result = _apply_immediate(transaction, subscription, plan, now)
    else:
        result = _apply_deferred(transaction, subscription, plan, now)

    activity_logger.record(
        transaction.tenant_id,
        "billing.payment_applied",
        {"order_id": transaction.order_id, **result.to_dict()},
    )
    return result


# --- UpgradeOrchestrator ---
# Purpose: Public entry points for plan purchases.
# Inputs: Tenant/plan identity for requests; transaction id for applications.
# Outputs: Pending transaction + checkout, or an ApplyResult.
class UpgradeOrchestrator:

    @staticmethod
    def request_upgrade(
        tenant_id: int,
        plan_id,
        upgrade_option: str,
        now: Optional[datetime] = None,
        *,
        customer_email: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> UpgradeRequestResult:
        now = TimezoneUtils.ensure_timezone_aware(now) or TimezoneUtils.utc_now()
        if upgrade_option not in UPGRADE_OPTIONS:
            raise InvalidUpgradeRequest(f"upgradeOption must be one of {', '.join(UPGRADE_OPTIONS)}.")

        plan = PlanCatalog.get_plan(plan_id)
        if not plan.is_active:
            raise InvalidUpgradeRequest(f"Plan {plan.key} is not available.")

        subscription = subscription_manager.find_for_tenant(tenant_id)
        if activation_sweeper.promote_due(subscription, now):
            db.session.commit()
        previous_plan_id = None
        if _needs_fresh_activation(subscription, now):
            amount = plan.price
        else:
            previous_plan_id = subscription.plan_id
            if subscription.plan_id == plan.id:
                raise InvalidUpgradeRequest("Tenant is already on this plan.")
            if (
                upgrade_option == UPGRADE_END_OF_PERIOD
                and subscription.intended_plan_id is not None
                and subscription.intended_plan_id != plan.id
            ):
                raise AlreadyScheduled("Another plan change is already scheduled; clear it first.")
            current_plan = PlanCatalog.get_plan(subscription.plan_id)
            amount = proration.quote_amount(
                current_plan, plan, subscription.period_start, subscription.period_end, now, upgrade_option
            )

        transaction = Transaction(
            tenant_id=tenant_id,
            plan_id=plan.id,
            order_id=generate_order_id(),
            amount=amount,
            currency=plan.currency,
            status=TransactionStatus.PENDING,
            billing_cycle=plan.interval,
            details=reason_to_dict(
                UpgradeRequest(
                    plan_id=plan.id,
                    upgrade_option=upgrade_option,
                    previous_plan_id=previous_plan_id,
                    quoted_amount=amount,
                )
            ),
        )
        db.session.add(transaction)
        activity_logger.record(
            tenant_id,
            "billing.upgrade_requested",
            {"order_id": transaction.order_id, "plan_id": plan.id, "upgrade_option": upgrade_option, "amount": amount},
        )
        db.session.commit()
        logger.info("Upgrade requested: tenant %s -> plan %s (%s, %s)", tenant_id, plan.id, upgrade_option, amount)

        if amount <= 0:
            applied = UpgradeOrchestrator.apply_paid_transaction(transaction.id, now)
            return UpgradeRequestResult(transaction=transaction, checkout=None, applied=applied)

        try:
            checkout = get_gateway(provider).create_checkout(
                transaction, customer_email=customer_email, item_name=plan.name
            )
        except PaymentGatewayError:
            transaction.status = TransactionStatus.FAILED
            db.session.commit()
            raise

        if checkout.reference and checkout.reference != transaction.order_id:
            transaction.gateway_reference = checkout.reference
            db.session.commit()
        return UpgradeRequestResult(transaction=transaction, checkout=checkout)

    @staticmethod
    def apply_paid_transaction(
        transaction_id: int,
        now: Optional[datetime] = None,
        *,
        gateway_payload: Optional[dict] = None,
        gateway_reference: Optional[str] = None,
    ) -> ApplyResult:
        now = TimezoneUtils.ensure_timezone_aware(now) or TimezoneUtils.utc_now()
        try:
            return _run_in_transaction(_apply_once, transaction_id, now, gateway_payload, gateway_reference)
        except AlreadyScheduled as exc:
            # Captured payment that cannot be applied; stays PENDING for manual review
            transaction = db.session.get(Transaction, transaction_id)
            if transaction is not None:
                _record_policy_gap(transaction, None, cause="already_scheduled", detail=str(exc))
                db.session.commit()
            raise

    @staticmethod
    def clear_scheduled_change(tenant_id: int) -> Subscription:
        """Drop a pending end-of-period change and credit back what was paid for it."""

        def _clear(tenant_id: int) -> Subscription:
            subscription = subscription_manager.find_for_tenant(tenant_id, lock=True)
            if subscription is None:
                raise SubscriptionNotFound(f"Tenant {tenant_id} has no subscription.")
            _release_scheduled_plan(tenant_id, subscription.intended_plan_id, "scheduled_change_cleared")
            return subscription_manager.clear_scheduled(subscription.id)

        return _run_in_transaction(_clear, tenant_id)

    @staticmethod
    def cancel_subscription(tenant_id: int) -> Subscription:
        def _cancel(tenant_id: int) -> Subscription:
            subscription = subscription_manager.find_for_tenant(tenant_id, lock=True)
            if subscription is None:
                raise SubscriptionNotFound(f"Tenant {tenant_id} has no subscription.")
            _release_scheduled_plan(tenant_id, subscription.intended_plan_id, "subscription_cancelled")
            return subscription_manager.cancel(subscription.id)

        return _run_in_transaction(_cancel, tenant_id)

    @staticmethod
    def mark_payment_failed(
        transaction_id: int,
        status: str = TransactionStatus.FAILED,
        *,
        gateway_payload: Optional[dict] = None,
    ) -> ApplyResult:
        if status not in TransactionStatus.FAILURES:
            raise InvalidUpgradeRequest(f"{status} is not a payment failure status.")

        def _mark(transaction_id: int) -> ApplyResult:
            transaction = _load_transaction(transaction_id)
            if transaction.is_terminal:
                return ApplyResult(UpgradeOutcome.NOOP, transaction.id)
            transaction.status = status
            if gateway_payload is not None:
                transaction.gateway_payload = gateway_payload
            activity_logger.record(
                transaction.tenant_id,
                "billing.payment_failed",
                {"order_id": transaction.order_id, "status": status},
            )
            logger.info("Transaction %s marked %s", transaction.order_id, status)
            return ApplyResult(UpgradeOutcome.FAILED, transaction.id)

        return _run_in_transaction(_mark, transaction_id)


request_upgrade = UpgradeOrchestrator.request_upgrade
apply_paid_transaction = UpgradeOrchestrator.apply_paid_transaction
mark_payment_failed = UpgradeOrchestrator.mark_payment_failed
clear_scheduled_change = UpgradeOrchestrator.clear_scheduled_change
cancel_subscription = UpgradeOrchestrator.cancel_subscription
