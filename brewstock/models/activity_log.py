from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class ActivityLog(db.Model):
    """Append-only audit trail of billing transitions, per tenant."""

    __tablename__ = "activity_log"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id"), nullable=True, index=True)
    event_type = db.Column(db.String(128), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now, index=True)

    def __repr__(self):
        return f"<ActivityLog {self.event_type} tenant={self.tenant_id}>"
