"""
Unit of work - one database transaction per command.

A command's state mutation and its audit rows are flushed into the same
session and committed together, or rolled back together.  Stale
optimistic-lock flushes (ORM ``version_id_col``) and unique-key races
surface as ``ConflictError`` so callers can re-fetch and retry.

Usage:
    with atomic(entity_id):
        ...mutate, record_event(...)...
"""

import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConflictError
from app.models import db

logger = logging.getLogger(__name__)


@contextmanager
def atomic(entity_id: str | None = None):
    """Commit on success; roll back and re-raise on any failure."""
    try:
        yield db.session
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Stale write rejected for %s: %s", entity_id, exc)
        raise ConflictError(entity_id, "record was modified by another transaction") from exc
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity conflict for %s: %s", entity_id, exc.orig)
        raise ConflictError(entity_id, "concurrent write violated a uniqueness constraint") from exc
    except Exception:
        db.session.rollback()
        raise
