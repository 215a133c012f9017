"""
Traceable Requirements Platform
Blueprint registry and shared request helpers.
"""

from flask import request

from app.core.exceptions import ValidationError

# body keys that steer a command rather than carry entity content
CONTROL_KEYS = ("password", "approval_notes", "expected_revision", "expected_status", "expected_version")


def json_body() -> dict:
    """Request JSON as a dict (``{}`` when absent or malformed)."""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", {"body": "expected object"})
    return data


def content_fields(data: dict) -> dict:
    """``data`` without the control keys."""
    return {k: v for k, v in data.items() if k not in CONTROL_KEYS}


def _optional_int(data: dict, key: str, errors: dict):
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        errors[key] = "must be an integer"
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        errors[key] = "must be an integer"
        return None


def expected_state(data: dict) -> dict:
    """Parse the optimistic-concurrency expectations a client sent.

    Body keys (all optional): expected_revision, expected_status,
    expected_version.  The ``If-Match`` header is accepted as
    ``expected_version`` when the body omits it.
    """
    errors: dict = {}
    result = {
        "expected_revision": _optional_int(data, "expected_revision", errors),
        "expected_status": data.get("expected_status"),
        "expected_version": _optional_int(data, "expected_version", errors),
    }
    if result["expected_version"] is None and request.headers.get("If-Match"):
        raw = request.headers["If-Match"].strip().strip('"')
        try:
            result["expected_version"] = int(raw)
        except ValueError:
            errors["If-Match"] = "must be an integer version"
    if errors:
        raise ValidationError("Invalid concurrency expectations", errors)
    return result
