from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class PaymentWebhookEvent(db.Model):
    """Receipt log of inbound gateway callbacks (diagnostics only)."""

    __tablename__ = "payment_webhook_event"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False)
    event_id = db.Column(db.String(255), nullable=True, index=True)
    order_id = db.Column(db.String(64), nullable=True, index=True)
    gateway_status = db.Column(db.String(32), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now, nullable=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(32), default="received")  # received, processed, ignored, failed
    error_message = db.Column(db.Text, nullable=True)

    def __repr__(self):
        return f"<PaymentWebhookEvent {self.provider}:{self.order_id} ({self.status})>"
