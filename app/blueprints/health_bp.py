"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        - liveness + database round-trip
    GET /api/v1/health/ready  - simple 200 for load balancers
"""

import logging
import time

from flask import Blueprint, jsonify
from sqlalchemy.exc import SQLAlchemyError

from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1")


@health_bp.route("/health/ready", methods=["GET"])
def ready():
    """Simple readiness probe - always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/health", methods=["GET"])
def health():
    """Liveness check with database latency."""
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
    except SQLAlchemyError as exc:
        logger.error("Health check - database failed: %s", exc)
        return jsonify({
            "status": "degraded",
            "app": "Traceable Requirements Platform",
            "checks": {"database": {"status": "error", "detail": str(exc)}},
        }), 503

    return jsonify({
        "status": "ok",
        "app": "Traceable Requirements Platform",
        "checks": {"database": {"status": "ok", "latency_ms": round(db_ms, 1)}},
    }), 200
