from typing import Optional

from flask import current_app

from ..billing.errors import PaymentGatewayError
from .base import CheckoutSession, PaymentGateway, PaymentNotification
from .midtrans_gateway import MidtransGateway
from .stripe_gateway import StripeGateway

GATEWAYS = {
    MidtransGateway.name: MidtransGateway,
    StripeGateway.name: StripeGateway,
}


def get_gateway(provider: Optional[str] = None) -> PaymentGateway:
    """Instantiate the adapter for ``provider`` (defaults to PAYMENT_PROVIDER)."""
    name = (provider or current_app.config.get("PAYMENT_PROVIDER") or "midtrans").lower()
    gateway_cls = GATEWAYS.get(name)
    if gateway_cls is None:
        raise PaymentGatewayError(f"Unsupported payment provider: {name!r}")
    return gateway_cls()


__all__ = [
    "CheckoutSession",
    "GATEWAYS",
    "MidtransGateway",
    "PaymentGateway",
    "PaymentNotification",
    "StripeGateway",
    "get_gateway",
]
