"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Test case not found")
    return api_error(E.VALIDATION_REQUIRED, "title is required")
    return service_error_response(exc)   # any app.core.exceptions.ServiceError
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Lifecycle
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    PRECONDITION_FAILED = "ERR_PRECONDITION_FAILED"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    GRAPH_CONSTRAINT = "ERR_GRAPH_CONSTRAINT"

    # Auth
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    CREDENTIAL_REJECTED = "ERR_CREDENTIAL_REJECTED"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.INVALID_TRANSITION: 409,
    E.PRECONDITION_FAILED: 412,
    E.CONFLICT_STATE: 409,
    E.GRAPH_CONSTRAINT: 422,
    E.UNAUTHENTICATED: 401,
    E.CREDENTIAL_REJECTED: 401,
    E.INTERNAL: 500,
}

# ServiceError.kind → error code
_KIND_CODES: dict[str, str] = {
    "NotFound": E.NOT_FOUND,
    "ValidationFailed": E.VALIDATION_INVALID,
    "InvalidTransition": E.INVALID_TRANSITION,
    "CredentialRejected": E.CREDENTIAL_REJECTED,
    "PreconditionFailed": E.PRECONDITION_FAILED,
    "Conflict": E.CONFLICT_STATE,
    "GraphConstraintViolation": E.GRAPH_CONSTRAINT,
    "Unauthenticated": E.UNAUTHENTICATED,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (kind, entity id, expected/actual state).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def service_error_response(exc):
    """Render an ``app.core.exceptions.ServiceError`` as an API error."""
    code = _KIND_CODES.get(exc.kind, E.INTERNAL)
    return api_error(code, exc.message, details=exc.to_dict())
