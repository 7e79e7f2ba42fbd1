"""Seed the default subscription plan catalog"""

from ..extensions import db
from ..models import BillingInterval, SubscriptionPlan

DEFAULT_PLANS = [
    {
        "key": "free",
        "name": "Free",
        "description": "Free plan for getting started",
        "price": 0,
        "max_users": 1,
        "max_ingredients": 10,
        "max_batches": 5,
        "max_recipes": 5,
    },
    {
        "key": "starter",
        "name": "Starter",
        "description": "Perfect for small craft breweries and coffee shops",
        "price": 160000,
        "max_users": 5,
        "max_ingredients": 100,
        "max_batches": 50,
        "max_recipes": 50,
    },
    {
        "key": "professional",
        "name": "Professional",
        "description": "For growing breweries with advanced needs",
        "price": 235000,
        "max_users": 20,
        "max_ingredients": 500,
        "max_batches": 200,
        "max_recipes": 200,
    },
    {
        "key": "enterprise",
        "name": "Enterprise",
        "description": "For large operations with unlimited needs",
        "price": 599000,
        "max_users": None,
        "max_ingredients": None,
        "max_batches": None,
        "max_recipes": None,
    },
]


def seed_plans(currency="IDR", plans=None):
    """Insert missing plans. Existing rows are left alone since priced plans are immutable."""
    created = []
    for plan_data in plans or DEFAULT_PLANS:
        if SubscriptionPlan.query.filter_by(key=plan_data["key"]).first():
            print(f"ℹ️  Plan {plan_data['key']} already exists")
            continue
        plan = SubscriptionPlan(
            currency=currency,
            interval=plan_data.get("interval", BillingInterval.MONTHLY),
            is_active=True,
            **{k: v for k, v in plan_data.items() if k != "interval"},
        )
        db.session.add(plan)
        created.append(plan)
        print(f"✅ Creating plan {plan_data['key']} ({plan_data['price']} {currency})")

    db.session.commit()
    return created
