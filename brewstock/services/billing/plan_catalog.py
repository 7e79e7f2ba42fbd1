"""Plan Catalog

Read-only plan lookups. Plans are immutable once referenced, so a cached
snapshot keyed by id never describes pricing that differs from the row.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import List, Optional

from flask import current_app

from ...extensions import cache, db
from ...models import SubscriptionPlan
from .errors import PlanNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanSnapshot:
    """Cached, session-independent view of a SubscriptionPlan."""
    id: int
    key: str
    name: str
    price: int
    currency: str
    interval: str
    max_users: Optional[int]
    max_ingredients: Optional[int]
    max_batches: Optional[int]
    max_recipes: Optional[int]
    is_active: bool

    @classmethod
    def from_plan(cls, plan: SubscriptionPlan) -> "PlanSnapshot":
        return cls(
            id=plan.id,
            key=plan.key,
            name=plan.name,
            price=int(plan.price or 0),
            currency=plan.currency,
            interval=plan.interval,
            max_users=plan.max_users,
            max_ingredients=plan.max_ingredients,
            max_batches=plan.max_batches,
            max_recipes=plan.max_recipes,
            is_active=bool(plan.is_active),
        )

    def to_dict(self) -> dict:
        return asdict(self)


class PlanCatalog:

    @staticmethod
    def cache_key(plan_id: int) -> str:
        return f"billing:plan:{plan_id}"

    @staticmethod
    def get_plan(plan_id) -> PlanSnapshot:
        try:
            plan_id = int(plan_id)
        except (TypeError, ValueError):
            raise PlanNotFound(f"Invalid plan id: {plan_id!r}")

        key = PlanCatalog.cache_key(plan_id)
        cached = cache.get(key)
        if cached:
            logger.debug("Plan cache hit for %s", plan_id)
            return PlanSnapshot(**json.loads(cached))

        plan = db.session.get(SubscriptionPlan, plan_id)
        if plan is None:
            raise PlanNotFound(f"Plan {plan_id} does not exist.")

        snapshot = PlanSnapshot.from_plan(plan)
        cache.set(key, json.dumps(snapshot.to_dict()), timeout=current_app.config.get("PLAN_CACHE_TTL", 600))
        return snapshot

    @staticmethod
    def get_plan_by_key(key: str) -> PlanSnapshot:
        plan = SubscriptionPlan.query.filter_by(key=key).first()
        if plan is None:
            raise PlanNotFound(f"Plan {key!r} does not exist.")
        return PlanSnapshot.from_plan(plan)

    @staticmethod
    def list_active_plans() -> List[PlanSnapshot]:
        plans = (
            SubscriptionPlan.query.filter_by(is_active=True)
            .order_by(SubscriptionPlan.price.asc(), SubscriptionPlan.id.asc())
            .all()
        )
        return [PlanSnapshot.from_plan(plan) for plan in plans]

    @staticmethod
    def invalidate(plan_id: int) -> None:
        cache.delete(PlanCatalog.cache_key(plan_id))


get_plan = PlanCatalog.get_plan
get_plan_by_key = PlanCatalog.get_plan_by_key
list_active_plans = PlanCatalog.list_active_plans
