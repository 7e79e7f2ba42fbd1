from flask_login import UserMixin

from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class Tenant(db.Model):
    """Billing/account boundary: one brewery or coffee shop."""

    __tablename__ = "tenant"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    slug = db.Column(db.String(64), unique=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now)

    users = db.relationship("User", backref="tenant", lazy="dynamic")

    def __repr__(self):
        return f"<Tenant {self.slug}>"


class UserRole:
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    PLATFORM_ADMIN = "PLATFORM_ADMIN"

    BILLING_MANAGERS = (ADMIN, PLATFORM_ADMIN)


class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenant.id"), nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(128), nullable=True)
    role = db.Column(db.String(32), nullable=False, default=UserRole.MEMBER)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now)

    @property
    def can_manage_billing(self) -> bool:
        return self.role in UserRole.BILLING_MANAGERS

    def __repr__(self):
        return f"<User {self.id} tenant={self.tenant_id}>"
