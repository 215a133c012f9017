"""
Traceable Requirements Platform
Audit Event Log blueprint (read-only).

Endpoints:
    GET  /api/v1/audit/events     - filter the ledger
    GET  /api/v1/audit/users      - per-user activity summary
    GET  /api/v1/audit/daily      - per-day metrics (?days=30)
    GET  /api/v1/audit/timeline   - hourly activity (?hours=24)
"""

from datetime import datetime

from flask import Blueprint, jsonify, request

from app.core.exceptions import ValidationError
from app.services import audit_service

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")


def _parse_datetime(name):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"Invalid {name}", {name: "expected ISO-8601 datetime"}) from None


def _int_arg(name, default):
    raw = request.args.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Invalid {name}", {name: "must be an integer"}) from None


@audit_bp.route("/audit/events", methods=["GET"])
def list_events():
    """
    Audit events, oldest first unless ``order=desc``.

    Query params:
        aggregate_type, aggregate_id, event_type, event_name, user_id
        from, to      - ISO-8601 bounds on occurred_at
        order         - asc (default) | desc
        limit         - capped at AUDIT_TRAIL_MAX_LIMIT
    """
    events = audit_service.trail(
        aggregate_type=request.args.get("aggregate_type"),
        aggregate_id=request.args.get("aggregate_id"),
        event_type=request.args.get("event_type"),
        event_name=request.args.get("event_name"),
        user_id=request.args.get("user_id"),
        occurred_from=_parse_datetime("from"),
        occurred_to=_parse_datetime("to"),
        newest_first=request.args.get("order", "asc").lower() == "desc",
        limit=_int_arg("limit", None),
    )
    return jsonify({"events": [ev.to_dict() for ev in events], "count": len(events)})


@audit_bp.route("/audit/users", methods=["GET"])
def user_activity():
    return jsonify(audit_service.user_activity_summary())


@audit_bp.route("/audit/daily", methods=["GET"])
def daily_metrics():
    return jsonify(audit_service.daily_metrics(_int_arg("days", 30)))


@audit_bp.route("/audit/timeline", methods=["GET"])
def activity_timeline():
    return jsonify(audit_service.activity_timeline(_int_arg("hours", 24)))
