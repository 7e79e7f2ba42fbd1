from .account_credit import AccountCredit, CreditStatus
from .activity_log import ActivityLog
from .payment_webhook_event import PaymentWebhookEvent
from .plan import BillingInterval, SubscriptionPlan
from .subscription import Subscription, SubscriptionStatus
from .tenant import Tenant, User, UserRole
from .transaction import Transaction, TransactionStatus

__all__ = [
    "AccountCredit",
    "ActivityLog",
    "BillingInterval",
    "CreditStatus",
    "PaymentWebhookEvent",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "Tenant",
    "Transaction",
    "TransactionStatus",
    "User",
    "UserRole",
]
