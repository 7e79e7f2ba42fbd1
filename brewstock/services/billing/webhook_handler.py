"""Payment Webhook Handler

Synopsis:
Entry point for gateway callbacks. Verifies authenticity, resolves the
transaction by order id and dispatches to the orchestrator. The HTTP status
it returns tells the gateway whether to redeliver.

Glossary:
- Terminal redelivery: Callback for a transaction already settled; acked with 200.
- Transient failure: Database or lock contention; answered 503 to trigger a retry.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.exc import DBAPIError, OperationalError

from ...extensions import db
from ...models import PaymentWebhookEvent, Transaction, TransactionStatus
from ...utils.timezone_utils import TimezoneUtils
from ..payments import PaymentNotification, get_gateway
from .errors import (
    BillingError,
    BillingValidationError,
    InvalidSignature,
    PaymentGatewayError,
    TransactionNotFound,
    TransientBillingError,
)
from .upgrade_orchestrator import UpgradeOrchestrator, UpgradeOutcome

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    status_code: int
    message: str
    order_id: Optional[str] = None
    outcome: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def acknowledged(self) -> bool:
        return self.status_code < 300

    def to_dict(self) -> Dict[str, Any]:
        return {"order_id": self.order_id, "outcome": self.outcome, **self.data}


def _record_receipt(provider: str, notification: PaymentNotification) -> Optional[PaymentWebhookEvent]:
    try:
        receipt = PaymentWebhookEvent(
            provider=provider,
            event_id=notification.event_id,
            order_id=notification.order_id,
            gateway_status=notification.status,
        )
        db.session.add(receipt)
        db.session.commit()
        return receipt
    except Exception:
        db.session.rollback()
        logger.warning("Could not record webhook receipt for %s", notification.order_id, exc_info=True)
        return None


def _close_receipt(receipt: Optional[PaymentWebhookEvent], status: str, error: Optional[str] = None) -> None:
    if receipt is None:
        return
    try:
        receipt.status = status
        receipt.error_message = error
        receipt.processed_at = TimezoneUtils.utc_now()
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.warning("Could not update webhook receipt %s", receipt.id, exc_info=True)


# --- Dispatch ---
# Purpose: Route a verified notification to the matching orchestrator action.
def dispatch(notification: PaymentNotification, *, now=None) -> WebhookResult:
    transaction = Transaction.query.filter_by(order_id=notification.order_id).first()
    if transaction is None:
        raise TransactionNotFound(f"Unknown order {notification.order_id}")

    if transaction.is_terminal:
        return WebhookResult(200, "Already processed", notification.order_id, UpgradeOutcome.NOOP)

    if notification.is_paid:
        result = UpgradeOrchestrator.apply_paid_transaction(
            transaction.id,
            now,
            gateway_payload=notification.raw,
            gateway_reference=notification.gateway_transaction_id,
        )
    elif notification.is_failure:
        result = UpgradeOrchestrator.mark_payment_failed(
            transaction.id, notification.status, gateway_payload=notification.raw
        )
    else:
        return WebhookResult(200, "Payment pending", notification.order_id, TransactionStatus.PENDING)

    return WebhookResult(200, "OK", notification.order_id, result.outcome, result.to_dict())


def _guarded_dispatch(provider: str, notification: PaymentNotification, receipt, now=None) -> WebhookResult:
    try:
        result = dispatch(notification, now=now)
    except TransactionNotFound as exc:
        logger.warning("Webhook for unknown order %s from %s", notification.order_id, provider)
        _close_receipt(receipt, "ignored", str(exc))
        return WebhookResult(404, "Transaction not found", notification.order_id)
    except (TransientBillingError, OperationalError, DBAPIError) as exc:
        db.session.rollback()
        logger.warning("Transient failure applying %s: %s", notification.order_id, exc)
        _close_receipt(receipt, "failed", str(exc))
        return WebhookResult(503, "Temporarily unavailable", notification.order_id)
    except BillingValidationError as exc:
        logger.error("Rejected webhook for %s: %s", notification.order_id, exc)
        _close_receipt(receipt, "failed", str(exc))
        return WebhookResult(422, "Unprocessable notification", notification.order_id)
    except BillingError as exc:
        logger.error("Billing failure applying %s: %s", notification.order_id, exc)
        _close_receipt(receipt, "failed", str(exc))
        return WebhookResult(exc.http_status, "Billing error", notification.order_id)

    _close_receipt(receipt, "processed")
    return result


class PaymentWebhookHandler:

    @staticmethod
    def handle(provider: Optional[str], raw_body: bytes, headers: Mapping[str, str], now=None) -> WebhookResult:
        try:
            gateway = get_gateway(provider)
        except PaymentGatewayError as exc:
            logger.error("Webhook for unsupported provider %r: %s", provider, exc)
            return WebhookResult(404, "Unknown payment provider")

        try:
            notification = gateway.parse_notification(raw_body, headers)
        except InvalidSignature as exc:
            logger.warning("Rejected %s webhook: %s", gateway.name, exc)
            return WebhookResult(401, "Invalid signature")
        except PaymentGatewayError as exc:
            logger.error("Unusable %s webhook: %s", gateway.name, exc)
            return WebhookResult(422, "Unprocessable notification")

        logger.info(
            "Payment webhook %s: order=%s status=%s", gateway.name, notification.order_id, notification.status
        )
        receipt = _record_receipt(gateway.name, notification)
        return _guarded_dispatch(gateway.name, notification, receipt, now)

    @staticmethod
    def reconcile(order_id: str, provider: Optional[str] = None, now=None) -> WebhookResult:
        """Ask the gateway for the order's status and apply it synchronously."""
        transaction = Transaction.query.filter_by(order_id=order_id).first()
        if transaction is None:
            raise TransactionNotFound(f"Unknown order {order_id}")
        if transaction.is_terminal:
            return WebhookResult(200, "Already processed", order_id, UpgradeOutcome.NOOP)

        gateway = get_gateway(provider)
        notification = gateway.fetch_status(transaction)
        if notification.order_id != order_id:
            raise PaymentGatewayError(f"Gateway answered for {notification.order_id}, expected {order_id}.")
        return dispatch(notification, now=now)


handle = PaymentWebhookHandler.handle
reconcile = PaymentWebhookHandler.reconcile
