from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class TransactionStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    SCHEDULED = "SCHEDULED"
    REFUND_PENDING = "REFUND_PENDING"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

    TERMINAL = frozenset({PAID, SCHEDULED, REFUND_PENDING, FAILED, CANCELLED, EXPIRED})
    FAILURES = frozenset({FAILED, CANCELLED, EXPIRED})


class Transaction(db.Model):
    """Append-only record of a charge, refund or zero-value adjustment.

    ``amount`` is signed integer minor units (negative for refunds/credits)
    and never changes after insert; corrections are written as new rows.
    """

    __tablename__ = "billing_transaction"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id"), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("subscription_plan.id"), nullable=True, index=True)

    order_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    gateway_reference = db.Column(db.String(128), nullable=True)

    amount = db.Column(db.BigInteger, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="IDR")
    status = db.Column(db.String(32), nullable=False, default=TransactionStatus.PENDING, index=True)
    billing_cycle = db.Column(db.String(16), nullable=True)

    # Column is "metadata" in the table; the attribute name is reserved on declarative models
    details = db.Column("metadata", db.JSON, nullable=True)
    gateway_payload = db.Column(db.JSON, nullable=True)

    related_transaction_id = db.Column(db.Integer, db.ForeignKey("billing_transaction.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now, onupdate=TimezoneUtils.utc_now)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    plan = db.relationship("SubscriptionPlan")
    related_transaction = db.relationship("Transaction", remote_side=[id])

    @property
    def is_terminal(self) -> bool:
        return self.status in TransactionStatus.TERMINAL

    def reason(self):
        from ..services.billing.reasons import parse_reason

        return parse_reason(self.details)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "plan_id": self.plan_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "billing_cycle": self.billing_cycle,
            "metadata": self.details,
            "created_at": TimezoneUtils.format_for_api(self.created_at),
        }

    def __repr__(self):
        return f"<Transaction {self.order_id} {self.amount} {self.status}>"
