"""Midtrans Snap adapter.

Synopsis:
Creates Snap checkout tokens, verifies HTTP notifications with the SHA-512
signature Midtrans sends, and queries the Core API for transaction status.

Glossary:
- Signature key: sha512(order_id + status_code + gross_amount + server_key).
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

import requests
from flask import current_app

from ...models import TransactionStatus
from ..billing.errors import InvalidSignature, PaymentGatewayError
from .base import CheckoutSession, PaymentGateway, PaymentNotification

logger = logging.getLogger(__name__)

SNAP_URLS = {
    True: "https://app.midtrans.com/snap/v1/transactions",
    False: "https://app.sandbox.midtrans.com/snap/v1/transactions",
}
CORE_API_URLS = {
    True: "https://api.midtrans.com/v2",
    False: "https://api.sandbox.midtrans.com/v2",
}

STATUS_MAP = {
    "capture": TransactionStatus.PAID,
    "settlement": TransactionStatus.PAID,
    "pending": TransactionStatus.PENDING,
    "deny": TransactionStatus.CANCELLED,
    "cancel": TransactionStatus.CANCELLED,
    "expire": TransactionStatus.EXPIRED,
    "failure": TransactionStatus.FAILED,
}


def map_status(transaction_status: Optional[str], fraud_status: Optional[str] = None) -> str:
    status = STATUS_MAP.get((transaction_status or "").lower(), TransactionStatus.PENDING)
    # Card captures held for fraud review are not settled yet
    if transaction_status == "capture" and (fraud_status or "").lower() == "challenge":
        return TransactionStatus.PENDING
    return status


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    payload = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(payload.encode("utf-8")).hexdigest()


def _parse_amount(gross_amount) -> Optional[int]:
    if gross_amount in (None, ""):
        return None
    try:
        return int(Decimal(str(gross_amount)))
    except (InvalidOperation, ValueError):
        return None


class MidtransGateway(PaymentGateway):
    name = "midtrans"

    def __init__(self, server_key: Optional[str] = None, is_production: Optional[bool] = None, timeout: Optional[int] = None):
        config = current_app.config
        self.server_key = server_key if server_key is not None else config.get("MIDTRANS_SERVER_KEY")
        self.is_production = bool(config.get("MIDTRANS_IS_PRODUCTION") if is_production is None else is_production)
        self.timeout = timeout or config.get("MIDTRANS_REQUEST_TIMEOUT", 15)

    def _require_key(self) -> str:
        if not self.server_key:
            raise PaymentGatewayError("MIDTRANS_SERVER_KEY is not configured.")
        return self.server_key

    def _normalize(self, payload: dict) -> PaymentNotification:
        order_id = payload.get("order_id")
        if not order_id:
            raise PaymentGatewayError("Midtrans payload has no order_id.")
        return PaymentNotification(
            order_id=order_id,
            gateway_transaction_id=payload.get("transaction_id"),
            status=map_status(payload.get("transaction_status"), payload.get("fraud_status")),
            amount=_parse_amount(payload.get("gross_amount")),
            raw=payload,
            event_id=payload.get("transaction_id"),
        )

    def parse_notification(self, raw_body: bytes, headers: Mapping[str, str]) -> PaymentNotification:
        server_key = self._require_key()
        try:
            payload = json.loads(raw_body or b"{}")
        except (TypeError, ValueError) as exc:
            raise InvalidSignature("Midtrans notification is not valid JSON.") from exc
        if not isinstance(payload, dict):
            raise InvalidSignature("Midtrans notification must be a JSON object.")

        expected = compute_signature(
            str(payload.get("order_id", "")),
            str(payload.get("status_code", "")),
            str(payload.get("gross_amount", "")),
            server_key,
        )
        if not hmac.compare_digest(expected, str(payload.get("signature_key", ""))):
            raise InvalidSignature("Midtrans notification signature mismatch.")

        return self._normalize(payload)

    def create_checkout(self, transaction, *, customer_email: Optional[str] = None, item_name: str = "") -> CheckoutSession:
        server_key = self._require_key()
        base_url = current_app.config.get("APP_BASE_URL", "").rstrip("/")
        body = {
            "transaction_details": {"order_id": transaction.order_id, "gross_amount": int(transaction.amount)},
            "item_details": [
                {
                    "id": str(transaction.plan_id),
                    "price": int(transaction.amount),
                    "quantity": 1,
                    "name": (item_name or "Subscription")[:50],
                }
            ],
            "credit_card": {"secure": True},
            "callbacks": {"finish": f"{base_url}/billing/checkout/finish?order_id={transaction.order_id}"},
        }
        if customer_email:
            body["customer_details"] = {"email": customer_email}

        try:
            response = requests.post(
                SNAP_URLS[self.is_production],
                json=body,
                auth=(server_key, ""),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PaymentGatewayError(f"Midtrans Snap request failed: {exc}") from exc

        if response.status_code not in (200, 201):
            logger.warning("Midtrans Snap rejected order %s with HTTP %s", transaction.order_id, response.status_code)
            raise PaymentGatewayError(f"Midtrans Snap returned HTTP {response.status_code}.")

        data = response.json()
        return CheckoutSession(
            provider=self.name,
            token=data.get("token"),
            redirect_url=data.get("redirect_url"),
            reference=transaction.order_id,
        )

    def fetch_status(self, transaction) -> PaymentNotification:
        server_key = self._require_key()
        try:
            response = requests.get(
                f"{CORE_API_URLS[self.is_production]}/{transaction.order_id}/status",
                auth=(server_key, ""),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise PaymentGatewayError(f"Midtrans status request failed: {exc}") from exc

        if response.status_code != 200:
            raise PaymentGatewayError(f"Midtrans status lookup returned HTTP {response.status_code}.")
        return self._normalize(response.json())
