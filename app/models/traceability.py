"""
Traceable Requirements Platform
Traceability graph model.

Models:
    - TraceLink: directed edge between two traceable records.

Valid (from_type, to_type) pairs form a strict order
user → system → testcase → testresult, so the graph cannot contain a
cycle as long as LINK_TYPE_PAIRS only ever points forward in that order.
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────

TRACE_NODE_TYPES = ("user", "system", "testcase", "testresult")

USER_LINK_PAIRS = frozenset({
    ("user", "system"),
    ("system", "testcase"),
})

SYSTEM_LINK_PAIRS = frozenset({
    ("testcase", "testresult"),
})

LINK_TYPE_PAIRS = USER_LINK_PAIRS | SYSTEM_LINK_PAIRS


class TraceLink(db.Model):
    """
    Immutable directed edge.  Removed by hard delete only.

    ``is_system_generated`` edges are produced by test run approval and
    point at the originating TestResult (``to_id``).
    """

    __tablename__ = "trace_links"
    __table_args__ = (
        db.UniqueConstraint("from_id", "to_id", name="uq_trace_link_pair"),
        db.CheckConstraint("from_id <> to_id", name="ck_trace_link_no_self_loop"),
    )

    id = db.Column(db.Integer, primary_key=True)
    from_id = db.Column(db.String(20), nullable=False, index=True)
    from_type = db.Column(db.String(20), nullable=False, comment="user | system | testcase")
    to_id = db.Column(db.String(20), nullable=False, index=True)
    to_type = db.Column(db.String(20), nullable=False, comment="system | testcase | testresult")
    is_system_generated = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def pair(self):
        return (self.from_type, self.to_type)

    def to_dict(self):
        return {
            "id": self.id,
            "from_id": self.from_id,
            "from_type": self.from_type,
            "to_id": self.to_id,
            "to_type": self.to_type,
            "is_system_generated": self.is_system_generated,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        flag = " [sys]" if self.is_system_generated else ""
        return f"<TraceLink {self.id}: {self.from_id} → {self.to_id}{flag}>"
