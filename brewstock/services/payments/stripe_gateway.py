"""Stripe Checkout adapter.

Creates one-off Checkout Sessions for plan purchases and verifies webhook
events with ``stripe.Webhook.construct_event``. The transaction's order id
travels as ``client_reference_id`` and in session metadata.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import stripe
from flask import current_app

from ...models import TransactionStatus
from ..billing.errors import InvalidSignature, PaymentGatewayError
from .base import CheckoutSession, PaymentGateway, PaymentNotification

logger = logging.getLogger(__name__)

EVENT_STATUS_MAP = {
    "checkout.session.async_payment_succeeded": TransactionStatus.PAID,
    "checkout.session.async_payment_failed": TransactionStatus.FAILED,
    "checkout.session.expired": TransactionStatus.EXPIRED,
}


def _session_status(session: Mapping[str, Any]) -> str:
    if session.get("payment_status") in ("paid", "no_payment_required"):
        return TransactionStatus.PAID
    if session.get("status") == "expired":
        return TransactionStatus.EXPIRED
    return TransactionStatus.PENDING


def _plain(obj) -> Dict[str, Any]:
    to_dict = getattr(obj, "to_dict", None)
    return to_dict() if callable(to_dict) else dict(obj)


def _order_id_from_session(session: Mapping[str, Any]) -> Optional[str]:
    metadata = session.get("metadata") or {}
    return session.get("client_reference_id") or metadata.get("order_id")


class StripeGateway(PaymentGateway):
    name = "stripe"

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        config = current_app.config
        self.secret_key = secret_key if secret_key is not None else config.get("STRIPE_SECRET_KEY")
        self.webhook_secret = webhook_secret if webhook_secret is not None else config.get("STRIPE_WEBHOOK_SECRET")

    def initialize_stripe(self) -> None:
        if not self.secret_key:
            raise PaymentGatewayError("STRIPE_SECRET_KEY is not configured.")
        stripe.api_key = self.secret_key

    def _normalize(self, session: Mapping[str, Any], status: str, *, event_id: Optional[str], raw: Dict[str, Any]) -> PaymentNotification:
        order_id = _order_id_from_session(session)
        if not order_id:
            raise PaymentGatewayError("Stripe session carries no order reference.")
        return PaymentNotification(
            order_id=order_id,
            gateway_transaction_id=session.get("payment_intent") or session.get("id"),
            status=status,
            amount=session.get("amount_total"),
            raw=raw,
            event_id=event_id,
        )

    def parse_notification(self, raw_body: bytes, headers: Mapping[str, str]) -> PaymentNotification:
        if not self.webhook_secret:
            raise PaymentGatewayError("STRIPE_WEBHOOK_SECRET is not configured.")
        sig_header = headers.get("Stripe-Signature", "")
        try:
            event = stripe.Webhook.construct_event(raw_body, sig_header, self.webhook_secret)
        except ValueError as exc:
            raise InvalidSignature(f"Invalid Stripe payload: {exc}") from exc
        except stripe.SignatureVerificationError as exc:
            raise InvalidSignature("Stripe webhook signature verification failed.") from exc

        event_type = event["type"]
        session = event["data"]["object"]
        if event_type == "checkout.session.completed":
            status = _session_status(session)
        else:
            status = EVENT_STATUS_MAP.get(event_type, TransactionStatus.PENDING)

        logger.info("Received Stripe webhook: %s", event_type)
        raw = {"id": event["id"], "type": event_type, "object": _plain(session)}
        return self._normalize(session, status, event_id=event["id"], raw=raw)

    def create_checkout(self, transaction, *, customer_email: Optional[str] = None, item_name: str = "") -> CheckoutSession:
        self.initialize_stripe()
        base_url = current_app.config.get("APP_BASE_URL", "").rstrip("/")
        params: Dict[str, Any] = {
            "mode": "payment",
            "client_reference_id": transaction.order_id,
            "line_items": [
                {
                    "price_data": {
                        "currency": transaction.currency.lower(),
                        "unit_amount": int(transaction.amount),
                        "product_data": {"name": item_name or "Subscription"},
                    },
                    "quantity": 1,
                }
            ],
            "success_url": f"{base_url}/billing/checkout/finish?order_id={transaction.order_id}",
            "cancel_url": f"{base_url}/billing/checkout/cancel?order_id={transaction.order_id}",
            "metadata": {"order_id": transaction.order_id, "tenant_id": str(transaction.tenant_id)},
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as exc:
            raise PaymentGatewayError(f"Stripe checkout creation failed: {exc}") from exc

        return CheckoutSession(
            provider=self.name,
            token=session.get("id"),
            redirect_url=session.get("url"),
            reference=session.get("id"),
        )

    def fetch_status(self, transaction) -> PaymentNotification:
        if not transaction.gateway_reference:
            raise PaymentGatewayError(f"Order {transaction.order_id} has no Stripe session reference.")
        self.initialize_stripe()
        try:
            session = stripe.checkout.Session.retrieve(transaction.gateway_reference)
        except stripe.StripeError as exc:
            raise PaymentGatewayError(f"Stripe session lookup failed: {exc}") from exc
        return self._normalize(session, _session_status(session), event_id=None, raw={"object": _plain(session)})
