"""
Traceable Requirements Platform
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

from app.config import config
from app.core.exceptions import ServiceError
from app.middleware.logging_config import configure_logging
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.timing import init_request_timing
from app.models import db
from app.utils.errors import E, api_error, service_error_response

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine  # noqa: E402


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def _register_error_handlers(app):
    @app.errorhandler(ServiceError)
    def handle_service_error(exc):
        level = logging.WARNING if exc.kind in ("Conflict", "CredentialRejected") else logging.INFO
        logger.log(level, "%s: %s", exc.kind, exc.message,
                   extra={"entity_id": exc.entity_id, "error_kind": exc.kind, "path": request.path})
        return service_error_response(exc)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        if exc.code == 404:
            return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})
        return {"error": exc.description or exc.name}, exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        db.session.rollback()
        return api_error(E.INTERNAL, "Internal server error")


def _register_cli(app):
    @app.cli.command("create-user")
    @click.argument("email")
    @click.password_option()
    @click.option("--name", "full_name", default=None, help="Display name")
    def create_user_cmd(email, password, full_name):
        """Add an active user to the directory."""
        from app.models.auth import User
        from app.utils.crypto import hash_password

        user = User(
            email=email.strip().lower(),
            full_name=full_name,
            password_hash=hash_password(password, rounds=app.config["BCRYPT_ROUNDS"]),
            status="active",
        )
        db.session.add(user)
        db.session.commit()
        logger.info("Created user %s (id=%s)", user.email, user.id)
        click.echo(f"User {user.email} created with id {user.id}")

    @app.cli.command("init-sequences")
    def init_sequences_cmd():
        """Create missing identifier counters."""
        from app.services.code_generator import ensure_sequences

        created = ensure_sequences()
        click.echo(f"{created} sequence(s) created")


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from app.models import audit as _audit_models             # noqa: F401
    from app.models import auth as _auth_models               # noqa: F401
    from app.models import base as _base_models               # noqa: F401
    from app.models import requirement as _requirement_models  # noqa: F401
    from app.models import testing as _testing_models         # noqa: F401
    from app.models import traceability as _traceability_models  # noqa: F401

    # ── Tables + identifier counters ─────────────────────────────────────
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        from app.services.code_generator import ensure_sequences

        db.create_all()
        created = ensure_sequences()
        if created:
            app.logger.info("Initialised %d identifier sequence(s)", created)

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.audit_bp import audit_bp
    from app.blueprints.health_bp import health_bp
    from app.blueprints.requirement_bp import requirement_bp
    from app.blueprints.testing_bp import testing_bp
    from app.blueprints.traceability_bp import traceability_bp

    app.register_blueprint(requirement_bp)
    app.register_blueprint(testing_bp)
    app.register_blueprint(traceability_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(health_bp)

    init_rate_limits(app, limiter)
    _register_error_handlers(app)
    _register_cli(app)

    return app
