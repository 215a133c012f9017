"""
Traceable Requirements Platform
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])

Environment variables:
    DATABASE_URL            SQLAlchemy URL (postgres:// is normalised)
    TEST_DATABASE_URL       override for the test suite
    SECRET_KEY              required in production
    CORS_ORIGINS            comma-separated origins
    RATELIMIT_STORAGE_URI   Flask-Limiter backend (memory:// by default)
    CREDENTIAL_RATE_LIMIT   limit for password-gated calls
    BCRYPT_ROUNDS           cost for newly hashed directory passwords
    AUDIT_TRAIL_MAX_LIMIT   upper bound on one audit trail query
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'traceable_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def database_url(env_var: str = "DATABASE_URL", fallback: str | None = None) -> str | None:
    """Read a database URL; Heroku-style ``postgres://`` becomes ``postgresql://``."""
    raw = os.getenv(env_var, "")
    if not raw:
        return fallback
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Flask-Limiter
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    CREDENTIAL_RATE_LIMIT = os.getenv("CREDENTIAL_RATE_LIMIT", "20/minute")

    # Directory & records
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
    TITLE_MAX_LENGTH = 200
    AUDIT_TRAIL_MAX_LIMIT = int(os.getenv("AUDIT_TRAIL_MAX_LIMIT", "1000"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = database_url(fallback=_SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = database_url("TEST_DATABASE_URL", fallback=_SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    BCRYPT_ROUNDS = 4


class ProductionConfig(Config):
    """PostgreSQL with row locks; refuses to start half-configured."""

    SQLALCHEMY_DATABASE_URI = database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        # lock waits on a contended record must not hang a worker
        "connect_args": {"options": "-c statement_timeout=30000 -c lock_timeout=5000"},
    }

    def __init__(self):
        missing = [
            name for name, value in (
                ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
                ("SECRET_KEY", os.getenv("SECRET_KEY")),
            ) if not value
        ]
        if missing:
            raise RuntimeError(f"Missing required environment variable(s) for production: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
