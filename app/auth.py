"""
Traceable Requirements Platform
Actor resolution & credential re-verification.

Authentication itself is out of scope: an upstream gateway (or the test
client) identifies the caller with the ``X-User-Id`` header, which must
name an active entry of the user directory.  Gated transitions (approve,
edit-after-approval, delete-after-approval) additionally send the
caller's ``password`` in the JSON body; it is re-checked here and only
the resulting boolean reaches the services.

Provides:
    - current_actor():            Actor for the request, or AuthenticationRequiredError
    - verify_credential(actor, password) → bool
    - credential_from_request():  verify_credential on the request body's "password"
"""

import logging

from flask import g, request

from app.core.actor import Actor
from app.core.exceptions import AuthenticationRequiredError
from app.models import db
from app.models.auth import User
from app.utils.crypto import verify_password

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-User-Id"


def _lookup_user(raw_id) -> User | None:
    try:
        user_id = int(str(raw_id).strip())
    except (TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


def current_actor() -> Actor:
    """Resolve the acting user for this request and remember it on ``g``."""
    raw_id = request.headers.get(ACTOR_HEADER)
    if not raw_id:
        raise AuthenticationRequiredError(f"{ACTOR_HEADER} header is required")

    user = _lookup_user(raw_id)
    if user is None or not user.is_active:
        logger.warning("Unknown or inactive actor id=%s path=%s", raw_id, request.path)
        raise AuthenticationRequiredError("Unknown or inactive user")

    g.actor = Actor.from_user(user)
    return g.actor


def verify_credential(actor: Actor, password: str | None) -> bool:
    """Re-check ``password`` against the directory entry of ``actor``."""
    user = _lookup_user(actor.id)
    if user is None or not user.is_active:
        return False
    ok = verify_password(password, user.password_hash)
    if not ok:
        logger.info("Credential re-verification failed for user=%s", actor.id)
    return ok


def credential_from_request(payload: dict) -> bool:
    """``verify_credential`` for the current actor using ``payload["password"]``."""
    password = payload.get("password")
    if not password:
        return False
    return verify_credential(current_actor(), password)
