"""
Traceable Requirements Platform
Requirement domain models.

Models:
    - UserRequirement:    stakeholder-level need (UR-N)
    - SystemRequirement:  system-level requirement derived from user needs (SR-N)
    - Risk:               hazard analysis record with residual score (RISK-N)

Traceability:
    UserRequirement ──▶ SystemRequirement ──▶ TestCase ──▶ TestResult
    Risk records are approvable but sit outside the trace whitelist.
"""

from app.models import db
from app.models.base import ApprovableMixin

# ── Constants ────────────────────────────────────────────────────────────

RISK_LEVEL_RANGE = range(1, 6)


# ═════════════════════════════════════════════════════════════════════════════
# USER REQUIREMENT
# ═════════════════════════════════════════════════════════════════════════════

class UserRequirement(ApprovableMixin, db.Model):
    __tablename__ = "user_requirements"

    ID_PREFIX = "UR"
    AGGREGATE_TYPE = "UserRequirement"
    EVENT_TYPE = "Requirements"
    TRACE_TYPE = "user"

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)

    def to_dict(self):
        d = self.lifecycle_dict()
        d.update(title=self.title, description=self.description)
        return d


# ═════════════════════════════════════════════════════════════════════════════
# SYSTEM REQUIREMENT
# ═════════════════════════════════════════════════════════════════════════════

class SystemRequirement(ApprovableMixin, db.Model):
    __tablename__ = "system_requirements"

    ID_PREFIX = "SR"
    AGGREGATE_TYPE = "SystemRequirement"
    EVENT_TYPE = "Requirements"
    TRACE_TYPE = "system"

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)

    def to_dict(self):
        d = self.lifecycle_dict()
        d.update(title=self.title, description=self.description)
        return d


# ═════════════════════════════════════════════════════════════════════════════
# RISK
# ═════════════════════════════════════════════════════════════════════════════

class Risk(ApprovableMixin, db.Model):
    """
    Hazard analysis record.

    ``p_total`` combines the two probability factors and the residual
    score concatenates severity with it (severity 4, p_total 3 → "43").
    """

    __tablename__ = "risks"

    ID_PREFIX = "RISK"
    AGGREGATE_TYPE = "Risk"
    EVENT_TYPE = "Requirements"
    TRACE_TYPE = None
    CONTENT_FIELDS = (
        "title", "description", "hazard", "harm", "foreseeable_sequence",
        "severity", "probability_p1", "probability_p2", "p_total_calculation_method",
    )

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    hazard = db.Column(db.Text, nullable=False)
    harm = db.Column(db.Text, nullable=False)
    foreseeable_sequence = db.Column(db.Text, default="")
    severity = db.Column(db.Integer, nullable=False, comment="1 (negligible) … 5 (catastrophic)")
    probability_p1 = db.Column(db.Integer, nullable=False, comment="P1: probability of occurrence, 1-5")
    probability_p2 = db.Column(db.Integer, nullable=False, comment="P2: probability of harm, 1-5")
    p_total_calculation_method = db.Column(db.Text, default="", comment="Free-text rationale for P total")

    @property
    def p_total(self):
        return max(self.probability_p1 or 0, self.probability_p2 or 0)

    @property
    def residual_risk_score(self):
        return f"{self.severity}{self.p_total}"

    def to_dict(self):
        d = self.lifecycle_dict()
        d.update(
            title=self.title,
            description=self.description,
            hazard=self.hazard,
            harm=self.harm,
            foreseeable_sequence=self.foreseeable_sequence,
            severity=self.severity,
            probability_p1=self.probability_p1,
            probability_p2=self.probability_p2,
            p_total_calculation_method=self.p_total_calculation_method,
            p_total=self.p_total,
            residual_risk_score=self.residual_risk_score,
        )
        return d
