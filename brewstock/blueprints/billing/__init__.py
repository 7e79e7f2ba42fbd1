from .routes import cron_bp, subscription_bp, webhook_bp

__all__ = ["cron_bp", "subscription_bp", "webhook_bp"]
