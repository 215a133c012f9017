"""
Traceable Requirements Platform
Audit domain model.

Models:
    - AuditEvent: immutable, append-only ledger of every meaningful mutation.

Rows are written through ``record_event`` inside the same unit of work as
the state change they describe.  UPDATE and DELETE are refused at the ORM
layer by mapper event listeners.
"""

import json
from datetime import datetime, timezone

from sqlalchemy import event

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

EVENT_TYPES = {
    "Authentication",
    "Requirements",
    "Traceability",
    "Testing",
}

# Event-name suffixes used by the lifecycle state machine
CREATED = "Created"
UPDATED = "Updated"
APPROVED = "Approved"
REVERTED_TO_DRAFT = "RevertedToDraft"
DELETED = "Deleted"

TRACE_CREATED = "TraceCreated"
TRACE_DELETED = "TraceDeleted"


class AuditLogImmutableError(RuntimeError):
    """Raised when code attempts to update or delete an audit row."""


class AuditEvent(db.Model):
    """
    Immutable audit record.

    The acting user's id / email / name are snapshotted at event time so
    the trail does not change when the directory entry does.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("idx_audit_aggregate", "aggregate_type", "aggregate_id"),
        db.Index("idx_audit_user", "user_id"),
        db.Index("idx_audit_name", "event_name"),
        db.Index("idx_audit_occurred", "occurred_at"),
    )

    id = db.Column(db.Integer, primary_key=True)

    event_type = db.Column(
        db.String(30), nullable=False,
        comment="Authentication | Requirements | Traceability | Testing",
    )
    event_name = db.Column(
        db.String(60), nullable=False,
        comment="SystemRequirementApproved | TraceCreated | …",
    )
    aggregate_type = db.Column(db.String(40), nullable=False)
    aggregate_id = db.Column(db.String(40), nullable=False)

    # Actor snapshot
    user_id = db.Column(db.String(64), nullable=True)
    user_email = db.Column(db.String(200), nullable=True)
    user_name = db.Column(db.String(200), nullable=True)

    payload_json = db.Column(
        db.Text, nullable=False, default="{}",
        comment="JSON: delta or post-state relevant to the event",
    )

    occurred_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def payload(self) -> dict:
        """Deserialise *payload_json* to a Python dict."""
        try:
            return json.loads(self.payload_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "event_name": self.event_name,
            "aggregate_type": self.aggregate_type,
            "aggregate_id": self.aggregate_id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "user_name": self.user_name,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
        }

    def __repr__(self):
        return f"<AuditEvent {self.id}: {self.event_name} on {self.aggregate_type}/{self.aggregate_id}>"


@event.listens_for(AuditEvent, "before_update")
def _refuse_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit event {target.id} cannot be modified")


@event.listens_for(AuditEvent, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit event {target.id} cannot be deleted")


# ── Convenience writer ───────────────────────────────────────────────────────

def record_event(
    *,
    event_type: str,
    event_name: str,
    aggregate_type: str,
    aggregate_id: str,
    actor,
    payload: dict | None = None,
) -> AuditEvent:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    ``actor`` is an ``app.core.actor.Actor`` (or None for system events).
    Returns the (flushed) AuditEvent instance.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown audit event type: {event_type}")

    row = AuditEvent(
        event_type=event_type,
        event_name=event_name,
        aggregate_type=aggregate_type,
        aggregate_id=str(aggregate_id),
        user_id=actor.id if actor else None,
        user_email=actor.email if actor else None,
        user_name=actor.name if actor else None,
        payload_json=json.dumps(payload or {}, default=str),
    )
    db.session.add(row)
    db.session.flush()
    return row
