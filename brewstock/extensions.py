from __future__ import annotations

from flask_caching import Cache
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager, current_user
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

__all__ = [
    "db",
    "migrate",
    "csrf",
    "cache",
    "limiter",
    "login_manager",
]

db = SQLAlchemy()
migrate = Migrate(compare_type=True, render_as_batch=True)
csrf = CSRFProtect()
cache = Cache()


def _limiter_key_func():
    """Use per-user keys for authenticated traffic; fall back to IP address."""
    if current_user and current_user.is_authenticated:
        user_id = current_user.get_id()
        if user_id:
            return f"user:{user_id}"
    return get_remote_address()


# Default limits are read from RATELIMIT_DEFAULT at init_app time.
limiter = Limiter(key_func=_limiter_key_func)

login_manager = LoginManager()
login_manager.login_message = "Please log in to access this page."
login_manager.login_message_category = "info"


@login_manager.user_loader
def load_user(user_id: str):
    from .models import User

    try:
        user_id_int = int(user_id)
    except (TypeError, ValueError):
        return None
    return db.session.get(User, user_id_int)


@login_manager.unauthorized_handler
def _unauthorized():
    from .utils.api_responses import APIResponse

    return APIResponse.error("Authentication required", status_code=401)
