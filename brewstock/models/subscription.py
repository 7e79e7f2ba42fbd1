from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class SubscriptionStatus:
    ACTIVE = "ACTIVE"
    PENDING_CHECKOUT = "PENDING_CHECKOUT"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class Subscription(db.Model):
    """A tenant's current plan entitlement and billing period.

    The period is half-open: ``[current_period_start, current_period_end)``.
    ``intended_plan_id`` is set only while a paid end-of-period change is
    waiting for the sweeper.
    """

    __tablename__ = "subscription"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id"), nullable=False, unique=True, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("subscription_plan.id"), nullable=False)
    status = db.Column(db.String(32), nullable=False, default=SubscriptionStatus.PENDING_CHECKOUT, index=True)

    current_period_start = db.Column(db.DateTime(timezone=True), nullable=False)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    # Weak reference to subscription_plan.id (no FK)
    intended_plan_id = db.Column(db.Integer, nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now, onupdate=TimezoneUtils.utc_now)

    plan = db.relationship("SubscriptionPlan")
    tenant = db.relationship("Tenant", backref=db.backref("subscription", uselist=False))

    __mapper_args__ = {"version_id_col": version_id}
    __table_args__ = (
        db.CheckConstraint("current_period_end > current_period_start", name="ck_subscription_period_order"),
    )

    @property
    def period_start(self):
        return TimezoneUtils.ensure_timezone_aware(self.current_period_start)

    @property
    def period_end(self):
        return TimezoneUtils.ensure_timezone_aware(self.current_period_end)

    @property
    def has_scheduled_change(self) -> bool:
        return self.intended_plan_id is not None

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "plan": self.plan.to_dict() if self.plan else None,
            "status": self.status,
            "current_period_start": TimezoneUtils.format_for_api(self.current_period_start),
            "current_period_end": TimezoneUtils.format_for_api(self.current_period_end),
            "intended_plan_id": self.intended_plan_id,
        }

    def __repr__(self):
        return f"<Subscription tenant={self.tenant_id} plan={self.plan_id} {self.status}>"
