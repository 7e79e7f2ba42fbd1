from sqlalchemy import event, inspect

from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class BillingInterval:
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"

    ALL = (MONTHLY, YEARLY)


class SubscriptionPlan(db.Model):
    """Priced plan in the catalog.

    Pricing fields are frozen once a subscription or transaction references the
    plan; new pricing is published as a new row so historical transactions
    stay interpretable against the price at time of purchase.
    """

    __tablename__ = "subscription_plan"

    PRICING_FIELDS = ("price", "currency", "interval")

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Integer minor currency units
    price = db.Column(db.BigInteger, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="IDR")
    interval = db.Column(db.String(16), nullable=False, default=BillingInterval.MONTHLY)

    # Usage limits; NULL means unlimited
    max_users = db.Column(db.Integer, nullable=True)
    max_ingredients = db.Column(db.Integer, nullable=True)
    max_batches = db.Column(db.Integer, nullable=True)
    max_recipes = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now)

    @property
    def is_free(self) -> bool:
        return (self.price or 0) <= 0

    @property
    def usage_limits(self) -> dict:
        return {
            "users": self.max_users,
            "ingredients": self.max_ingredients,
            "batches": self.max_batches,
            "recipes": self.max_recipes,
        }

    def is_referenced(self, connection) -> bool:
        from .subscription import Subscription
        from .transaction import Transaction

        for table, column in (
            (Subscription.__table__, Subscription.__table__.c.plan_id),
            (Transaction.__table__, Transaction.__table__.c.plan_id),
        ):
            row = connection.execute(
                db.select(table.c.id).where(column == self.id).limit(1)
            ).first()
            if row is not None:
                return True
        return False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "price": self.price,
            "currency": self.currency,
            "interval": self.interval,
            "limits": self.usage_limits,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<SubscriptionPlan {self.key} {self.price} {self.currency}/{self.interval}>"


@event.listens_for(SubscriptionPlan, "before_update")
def _freeze_referenced_plan_pricing(mapper, connection, target):
    state = inspect(target)
    changed = [
        name for name in SubscriptionPlan.PRICING_FIELDS
        if state.attrs[name].history.has_changes()
    ]
    if changed and target.is_referenced(connection):
        from ..services.billing.errors import PlanImmutableError

        raise PlanImmutableError(
            f"Plan {target.key} is referenced by live billing records; "
            f"publish a new plan instead of changing {', '.join(changed)}."
        )
