from .plan_seeder import seed_plans

__all__ = ["seed_plans"]
