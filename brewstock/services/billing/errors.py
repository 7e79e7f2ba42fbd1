"""Billing exception hierarchy.

Validation errors map to 4xx responses and are never retried; transient
errors map to 503 so the gateway redelivers; gateway errors cover
authenticity and upstream API failures.
"""


class BillingError(RuntimeError):
    """Base class for every billing-domain failure."""

    http_status = 400


# --- Validation ---
class BillingValidationError(BillingError):
    http_status = 422


class InvalidTimeRange(BillingValidationError):
    pass


class AlreadyScheduled(BillingValidationError):
    http_status = 409


class NotDue(BillingValidationError):
    http_status = 409


class PlanNotFound(BillingValidationError):
    http_status = 404


class SubscriptionNotFound(BillingValidationError):
    http_status = 404


class TransactionNotFound(BillingValidationError):
    http_status = 404


class InvalidUpgradeRequest(BillingValidationError):
    pass


class InvalidCompensation(BillingValidationError):
    pass


class PlanImmutableError(BillingValidationError):
    http_status = 409


class UnknownReasonError(BillingValidationError):
    pass


# --- Transient ---
class TransientBillingError(BillingError):
    http_status = 503


class ConcurrentModification(TransientBillingError):
    pass


# --- Gateway ---
class PaymentGatewayError(BillingError):
    http_status = 502


class InvalidSignature(PaymentGatewayError):
    http_status = 401
