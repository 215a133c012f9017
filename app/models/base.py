"""
ApprovableMixin - shared columns for records with a draft/approved lifecycle.

Every approvable model (user requirement, system requirement, risk,
test case, test run) inherits from this mixin instead of declaring the
lifecycle columns itself. This adds:
  - a human-readable string primary key (``UR-12``, ``TC-3`` …)
  - revision counter, draft/approved status and approval stamps
  - created/modified actor references
  - soft delete (``deleted_at``) via SoftDeleteMixin
  - ``lock_version`` optimistic concurrency counter (ORM version_id_col)

Also holds IdSequence, the per-prefix counter table used by the
identity allocator (app/services/code_generator.py).
"""

from datetime import datetime, timezone

from app.models import db
from app.models.soft_delete import SoftDeleteMixin

# ── Constants ────────────────────────────────────────────────────────────

STATUS_DRAFT = "draft"
STATUS_APPROVED = "approved"

APPROVAL_STATUSES = {STATUS_DRAFT, STATUS_APPROVED}


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class ApprovableMixin(SoftDeleteMixin):
    """Lifecycle columns shared by every approvable record.

    Subclasses set the class-level registry attributes:
        ID_PREFIX       reserved identifier prefix (never shared across types)
        AGGREGATE_TYPE  audit aggregate name, also the event-name stem
        EVENT_TYPE      coarse audit category
        TRACE_TYPE      node type in the traceability graph (None = not traceable)
        CONTENT_FIELDS  fields whose change counts as an edit
    """

    ID_PREFIX: str = ""
    AGGREGATE_TYPE: str = ""
    EVENT_TYPE: str = ""
    TRACE_TYPE: str | None = None
    CONTENT_FIELDS: tuple = ("title", "description")

    id = db.Column(db.String(20), primary_key=True, comment="<PREFIX>-<N>, immutable")
    revision = db.Column(
        db.Integer, nullable=False, default=0,
        comment="Incremented once per approval, never on edit",
    )
    status = db.Column(
        db.String(20), nullable=False, default=STATUS_DRAFT,
        comment="draft | approved",
    )

    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    modified_by = db.Column(db.String(64), nullable=True)
    modified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    approved_by = db.Column(db.String(64), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_notes = db.Column(db.Text, nullable=True)

    lock_version = db.Column(
        db.Integer, nullable=False,
        comment="Optimistic concurrency counter, bumped on every flush",
    )

    __mapper_args__ = {"version_id_col": lock_version}

    @property
    def is_approved(self):
        return self.status == STATUS_APPROVED

    def content_snapshot(self) -> dict:
        """Current values of the edit-tracked fields."""
        return {field: getattr(self, field) for field in self.CONTENT_FIELDS}

    def lifecycle_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.TRACE_TYPE or self.AGGREGATE_TYPE,
            "revision": self.revision,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "modified_by": self.modified_by,
            "modified_at": _iso(self.modified_at),
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "approval_notes": self.approval_notes,
            "deleted_at": _iso(self.deleted_at),
            "version": self.lock_version,
        }

    def __repr__(self):
        return f"<{type(self).__name__} {self.id} r{self.revision} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# ID SEQUENCE
# ═════════════════════════════════════════════════════════════════════════════

class IdSequence(db.Model):
    """Last issued number per identifier prefix."""

    __tablename__ = "id_sequences"

    prefix = db.Column(db.String(10), primary_key=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<IdSequence {self.prefix}={self.last_value}>"
