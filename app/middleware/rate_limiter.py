"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def manager_rate_limit_key():
    """Rate limit key: the calling manager when known, else remote IP."""
    manager_id = getattr(g, "manager_id", None) or flask_request.headers.get("X-Manager-Id")
    if manager_id:
        return f"manager:{manager_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per manager, falling back to remote IP):
        - Shift / alert endpoints:  60/minute for writes, 200/minute for reads
        - Health check:             exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    def _is_read():
        return flask_request.method in ("GET", "HEAD", "OPTIONS")

    def _is_write():
        return not _is_read()

    for bp_name in ("shift_kanban_bp", "urgent_alert_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=manager_rate_limit_key, exempt_when=_is_read)(bp)
            limiter.limit(READ_LIMIT, key_func=manager_rate_limit_key, exempt_when=_is_write)(bp)

    # Health checks are exempt
    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — write: %s, read: %s", WRITE_LIMIT, READ_LIMIT)
