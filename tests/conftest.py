"""
Shared pytest fixtures for the Traceable Requirements Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - alice / bob: directory users as Actors (password: PASSWORD)
    - alice_headers / bob_headers: X-User-Id headers for API calls
    - password: the shared test password
"""

import pytest

from app import create_app
from app.core.actor import Actor
from app.models import db as _db
from app.models.auth import User
from app.services.code_generator import ensure_sequences
from app.utils.crypto import hash_password

PASSWORD = "correct-horse-battery"


def make_user(email, full_name=None, *, password=PASSWORD, status="active"):
    """Add a directory user with a cheap bcrypt hash."""
    user = User(
        email=email,
        full_name=full_name,
        password_hash=hash_password(password, rounds=4),
        status=status,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        ensure_sequences()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Directory users ──────────────────────────────────────────────────────


@pytest.fixture()
def password():
    """Password of every user created by make_user()."""
    return PASSWORD


@pytest.fixture()
def alice_user():
    return make_user("alice@example.com", "Alice Analyst")


@pytest.fixture()
def bob_user():
    return make_user("bob@example.com", "Bob Reviewer")


@pytest.fixture()
def alice(alice_user):
    return Actor.from_user(alice_user)


@pytest.fixture()
def bob(bob_user):
    return Actor.from_user(bob_user)


@pytest.fixture()
def alice_headers(alice_user):
    return {"X-User-Id": str(alice_user.id)}


@pytest.fixture()
def bob_headers(bob_user):
    return {"X-User-Id": str(bob_user.id)}
