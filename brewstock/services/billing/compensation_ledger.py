"""Compensation Ledger

Synopsis:
Records overcharge compensation as an account credit plus a negative,
refund-pending transaction, and converts monetary value into extra service
days. Paid end-of-period purchases that are cleared before promotion are
released back as credit. Rows join the caller's unit of work; nothing here
commits.
"""
from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from flask import current_app

from ...extensions import db
from ...models import AccountCredit, CreditStatus, Transaction, TransactionStatus
from ...utils.timezone_utils import TimezoneUtils
from .. import activity_logger
from . import subscription_manager
from .errors import InvalidCompensation
from .reasons import OverchargeCompensation, PeriodExtension, ScheduledUpgrade, reason_to_dict

logger = logging.getLogger(__name__)

EXTENSION_DAYS_BASIS = 30


def _order_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:20]}"


class CompensationLedger:
    """Issues credits and refund rows for billing corrections."""

    @staticmethod
    def compensate(
        tenant_id: int,
        amount: int,
        reason: str = "overcharge_compensation",
        metadata: Optional[dict] = None,
    ) -> AccountCredit:
        if amount is None or int(amount) <= 0:
            raise InvalidCompensation("Compensation amount must be positive.")
        amount = int(amount)
        metadata = dict(metadata or {})
        currency = metadata.get("currency") or current_app.config.get("DEFAULT_CURRENCY", "IDR")
        original_transaction_id = metadata.get("original_transaction_id")
        now = TimezoneUtils.utc_now()

        refund = Transaction(
            tenant_id=tenant_id,
            plan_id=metadata.get("plan_id"),
            order_id=_order_id("refund"),
            amount=-amount,
            currency=currency,
            status=TransactionStatus.REFUND_PENDING,
            related_transaction_id=original_transaction_id,
            details=reason_to_dict(
                OverchargeCompensation(
                    original_transaction_id=original_transaction_id,
                    amount_charged=int(metadata.get("amount_charged", 0)),
                    correct_charge=int(metadata.get("correct_charge", 0)),
                    credit_amount=amount,
                )
            ),
        )
        db.session.add(refund)
        db.session.flush()

        credit = AccountCredit(
            tenant_id=tenant_id,
            amount=amount,
            currency=currency,
            reason=reason,
            status=CreditStatus.ACTIVE,
            source_transaction_id=original_transaction_id,
            details={**metadata, "refund_transaction_id": refund.id},
            expires_at=now + timedelta(days=current_app.config.get("CREDIT_EXPIRY_DAYS", 365)),
        )
        db.session.add(credit)
        activity_logger.record(
            tenant_id,
            "billing.compensation_issued",
            {
                "amount": amount,
                "currency": currency,
                "original_transaction_id": original_transaction_id,
                "refund_transaction_id": refund.id,
            },
        )
        logger.info("Issued %s %s credit to tenant %s", amount, currency, tenant_id)
        return credit

    @staticmethod
    def release_scheduled(tenant_id: int, plan_id: int, reason: str = "scheduled_change_released") -> List[AccountCredit]:
        """Cancel paid end-of-period purchases of ``plan_id`` and credit them back in full."""
        now = TimezoneUtils.utc_now()
        transactions = Transaction.query.filter_by(
            tenant_id=tenant_id,
            plan_id=plan_id,
            status=TransactionStatus.SCHEDULED,
        ).all()

        credits = []
        for transaction in transactions:
            details = dict(transaction.details or {})
            transaction.status = TransactionStatus.CANCELLED
            transaction.details = reason_to_dict(
                ScheduledUpgrade(
                    plan_id=plan_id,
                    previous_plan_id=details.get("previous_plan_id"),
                    scheduled_for=details.get("scheduled_for") or TimezoneUtils.format_for_api(now),
                    released_at=TimezoneUtils.format_for_api(now),
                )
            )
            if int(transaction.amount) > 0:
                credits.append(
                    CompensationLedger.compensate(
                        tenant_id,
                        int(transaction.amount),
                        reason,
                        {
                            "original_transaction_id": transaction.id,
                            "amount_charged": int(transaction.amount),
                            "correct_charge": 0,
                            "plan_id": plan_id,
                            "currency": transaction.currency,
                        },
                    )
                )
            logger.info("Released scheduled transaction %s for tenant %s", transaction.order_id, tenant_id)
        return credits

    @staticmethod
    def extension_days_for(amount: int, price: int) -> int:
        if price is None or int(price) <= 0:
            raise InvalidCompensation("Cannot convert value into days for a free plan.")
        daily = Decimal(int(price)) / Decimal(EXTENSION_DAYS_BASIS)
        return int((Decimal(int(amount)) / daily).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @staticmethod
    def extend_for_value(subscription_id: int, amount: int) -> Transaction:
        if amount is None or int(amount) <= 0:
            raise InvalidCompensation("Extension value must be positive.")

        subscription = subscription_manager.load_for_update(subscription_id)
        days = CompensationLedger.extension_days_for(amount, subscription.plan.price)
        subscription = subscription_manager.extend_period(subscription.id, days)

        adjustment = Transaction(
            tenant_id=subscription.tenant_id,
            plan_id=subscription.plan_id,
            order_id=_order_id("extend"),
            amount=0,
            currency=subscription.plan.currency,
            status=TransactionStatus.PAID,
            paid_at=TimezoneUtils.utc_now(),
            details=reason_to_dict(
                PeriodExtension(
                    amount=int(amount),
                    days_added=days,
                    new_period_end=TimezoneUtils.format_for_api(subscription.current_period_end),
                )
            ),
        )
        db.session.add(adjustment)
        db.session.flush()
        logger.info("Extended subscription %s by %s days", subscription.id, days)
        return adjustment


compensate = CompensationLedger.compensate
extend_for_value = CompensationLedger.extend_for_value
release_scheduled = CompensationLedger.release_scheduled
