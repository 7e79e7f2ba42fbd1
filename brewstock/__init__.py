import logging
import os
from typing import Any

from flask import Flask
from sqlalchemy.pool import StaticPool

from .blueprints_registry import register_blueprints
from .config import ENV_DIAGNOSTICS
from .extensions import cache, csrf, db, limiter, login_manager, migrate
from .logging_config import configure_logging
from .resilience import register_resilience_handlers

logger = logging.getLogger(__name__)


def create_app(config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)
    os.makedirs(app.instance_path, exist_ok=True)

    _load_base_config(app, config)
    _configure_sqlite_engine_options(app)

    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    login_manager.init_app(app)

    _configure_cache(app)
    _configure_rate_limiter(app)

    from . import models  # noqa: F401  # ensure models registered for Alembic

    register_blueprints(app)
    configure_logging(app)
    register_resilience_handlers(app)

    from .management import register_commands

    register_commands(app)
    return app


def _load_base_config(app: Flask, config: dict[str, Any] | None) -> None:
    app.config.from_object("brewstock.config.Config")
    if config:
        app.config.update(config)
    app.config["ENV_DIAGNOSTICS"] = ENV_DIAGNOSTICS
    for warning in ENV_DIAGNOSTICS.get("warnings", ()):
        logger.warning("Environment configuration warning: %s", warning)

    if app.config.get("TESTING"):
        app.config.setdefault("WTF_CSRF_ENABLED", False)

    if config and "DATABASE_URL" in config:
        app.config["SQLALCHEMY_DATABASE_URI"] = config["DATABASE_URL"]


def _configure_sqlite_engine_options(app: Flask) -> None:
    """SQLite rejects server pool arguments; in-memory databases need one shared connection."""
    uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if not uri.startswith("sqlite"):
        return
    opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}) or {})
    for key in ("pool_size", "max_overflow", "pool_timeout", "pool_recycle"):
        opts.pop(key, None)
    if uri == "sqlite:///:memory:":
        opts["poolclass"] = StaticPool
        opts["connect_args"] = {"check_same_thread": False}
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = opts


def _configure_cache(app: Flask) -> None:
    cache_config = {
        "CACHE_TYPE": app.config.get("CACHE_TYPE", "SimpleCache"),
        "CACHE_DEFAULT_TIMEOUT": app.config.get("CACHE_DEFAULT_TIMEOUT", 300),
    }
    redis_url = app.config.get("CACHE_REDIS_URL")
    if redis_url and cache_config["CACHE_TYPE"] == "SimpleCache":
        cache_config["CACHE_TYPE"] = "RedisCache"
    if cache_config["CACHE_TYPE"] == "RedisCache":
        cache_config["CACHE_REDIS_URL"] = redis_url
        logger.info("Redis cache configured")
    else:
        logger.info("Using %s for plan lookups", cache_config["CACHE_TYPE"])
    cache.init_app(app, config=cache_config)


def _configure_rate_limiter(app: Flask) -> None:
    storage_uri = app.config.get("RATELIMIT_STORAGE_URI") or "memory://"
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    limiter.init_app(app)

    if app.config.get("ENV") == "production" and storage_uri.startswith("memory://"):
        logger.warning("Rate limiter storage is in-memory; limits are per worker process.")
