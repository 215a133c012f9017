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

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"

# Endpoints that re-verify a password: approve, delete, delete test result.
CREDENTIAL_ENDPOINT_PREFIXES = (
    "requirement.approve_",
    "requirement.delete_",
    "testing.approve_test_run",
    "testing.delete_test_run",
    "testing.delete_test_result",
)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Credential-gated endpoints: CREDENTIAL_RATE_LIMIT (default 20/minute)
        - Write blueprints:           60/minute
        - Read-only blueprints:       200/minute
        - Health check:               exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (TESTING=%s)", app.config.get("TESTING"))
        return

    credential_limit = app.config.get("CREDENTIAL_RATE_LIMIT", "20/minute")
    # one view function can back several endpoints (requirement_bp mounts)
    limited = {}
    for endpoint, view in list(app.view_functions.items()):
        if endpoint.startswith(CREDENTIAL_ENDPOINT_PREFIXES):
            if view not in limited:
                limited[view] = limiter.limit(credential_limit)(view)
            app.view_functions[endpoint] = limited[view]

    for bp_name in ("requirement", "testing", "traceability"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("audit")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured - credential: %s, write: %s, read: %s",
        credential_limit, WRITE_LIMIT, READ_LIMIT,
    )
