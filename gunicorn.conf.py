"""Gunicorn settings for the BrewStock billing API.

Webhook handling is short and I/O bound (database plus gateway HTTP), so the
default is a gevent worker with a modest pool. A callback cut off by the
worker timeout is redelivered by the gateway and applied idempotently.
"""
from __future__ import annotations

import logging
import multiprocessing
import os

LOGGER = logging.getLogger("gunicorn.config")


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.environ.get(key, default))
    except (TypeError, ValueError):
        LOGGER.warning("Ignoring non-integer %s; using %s", key, default)
        return default


def _default_workers() -> int:
    return max(2, min(4, multiprocessing.cpu_count()))


bind = f"0.0.0.0:{os.environ.get('PORT', 5000)}"
worker_class = os.environ.get("GUNICORN_WORKER_CLASS", "gevent")
workers = _env_int("WEB_CONCURRENCY", _default_workers())
worker_connections = _env_int("GUNICORN_WORKER_CONNECTIONS", 200)

timeout = _env_int("GUNICORN_TIMEOUT", 30)
graceful_timeout = _env_int("GUNICORN_GRACEFUL_TIMEOUT", 20)
keepalive = _env_int("GUNICORN_KEEPALIVE", 5)

# Recycle workers so long-lived gateway connections do not pile up
max_requests = _env_int("GUNICORN_MAX_REQUESTS", 1000)
max_requests_jitter = _env_int("GUNICORN_MAX_REQUESTS_JITTER", 50)

preload_app = True
proc_name = "brewstock"

accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("GUNICORN_LOG_LEVEL", "info")
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)sus'


def on_starting(server):
    server.log.info(
        "BrewStock gunicorn: bind=%s class=%s workers=%s timeout=%ss",
        bind, worker_class, workers, timeout,
    )
