import logging

logger = logging.getLogger(__name__)


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    from .blueprints.billing import cron_bp, subscription_bp, webhook_bp

    for blueprint in (webhook_bp, subscription_bp, cron_bp):
        app.register_blueprint(blueprint)
        logger.debug("Registered blueprint %s at %s", blueprint.name, blueprint.url_prefix)
