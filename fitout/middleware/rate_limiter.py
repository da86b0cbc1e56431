"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in fitout/__init__.py with no default limits;
this module applies granular limits per route category. Limits are keyed by
the acting user when one is resolved, otherwise by remote IP.

Usage:
    from fitout.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"

# Transition-heavy blueprints
WRITE_BLUEPRINTS = ("cases", "quotations", "bidding", "execution", "procurement")


def actor_rate_limit_key():
    """Rate limit key: acting user id if resolved, else remote IP."""
    actor = getattr(g, "actor", None)
    if actor is not None:
        return f"user:{actor.id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Workflow endpoints: 60/minute (approvals and bids are human-paced)
        - Health check:       exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=actor_rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: workflow %s, health exempt", WRITE_LIMIT)
