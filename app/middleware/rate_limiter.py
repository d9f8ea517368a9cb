"""
Rate limiting configuration.

Applies per-route and per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API routes.

    Limits (per remote IP):
        - Login:            LOGIN_RATE_LIMIT (credential guessing)
        - Write blueprints: 60/minute
        - Read blueprints:  200/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    login_limit = app.config.get("LOGIN_RATE_LIMIT", "10 per minute")
    login_view = app.view_functions.get("auth_bp.login")
    if login_view:
        limiter.limit(login_limit)(login_view)

    for bp_name in ("problem_statement_bp", "submission_bp", "message_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("dashboard_bp")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — login: %s, write: %s, read: %s",
        login_limit, WRITE_LIMIT, READ_LIMIT,
    )
