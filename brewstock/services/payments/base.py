from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from ...models import TransactionStatus


@dataclass(frozen=True)
class PaymentNotification:
    """Gateway callback or status lookup, normalized."""
    order_id: str
    gateway_transaction_id: Optional[str]
    status: str
    amount: Optional[int]
    raw: Dict[str, Any] = field(default_factory=dict)
    event_id: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.status == TransactionStatus.PAID

    @property
    def is_failure(self) -> bool:
        return self.status in TransactionStatus.FAILURES


@dataclass(frozen=True)
class CheckoutSession:
    provider: str
    token: Optional[str]
    redirect_url: Optional[str]
    reference: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "token": self.token,
            "redirect_url": self.redirect_url,
        }


class PaymentGateway:
    """Interface implemented by each payment provider adapter."""

    name = "base"

    def parse_notification(self, raw_body: bytes, headers: Mapping[str, str]) -> PaymentNotification:
        """Verify authenticity and normalize; raises InvalidSignature."""
        raise NotImplementedError

    def create_checkout(self, transaction, *, customer_email: Optional[str] = None, item_name: str = "") -> CheckoutSession:
        raise NotImplementedError

    def fetch_status(self, transaction) -> PaymentNotification:
        raise NotImplementedError
