from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class CreditStatus:
    ACTIVE = "ACTIVE"
    CONSUMED = "CONSUMED"
    EXPIRED = "EXPIRED"


class AccountCredit(db.Model):
    __tablename__ = "account_credit"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id"), nullable=False, index=True)
    amount = db.Column(db.BigInteger, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="IDR")
    reason = db.Column(db.String(64), nullable=False)  # overcharge_compensation | scheduled_change_* | subscription_cancelled | manual
    status = db.Column(db.String(16), nullable=False, default=CreditStatus.ACTIVE, index=True)
    source_transaction_id = db.Column(
        db.Integer, db.ForeignKey("billing_transaction.id"), nullable=True
    )
    details = db.Column(db.JSON, nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=TimezoneUtils.utc_now)

    source_transaction = db.relationship("Transaction")

    def __repr__(self):
        return f"<AccountCredit tenant={self.tenant_id} {self.amount} {self.status}>"
