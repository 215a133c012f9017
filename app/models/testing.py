"""
Traceable Requirements Platform
Testing domain models.

Models:
    - TestCase:        approvable catalog entry with ordered steps (TC-N)
    - TestStep:        atomic step within a test case
    - TestRun:         approvable execution of a frozen set of test cases (TR-N)
    - TestRunCase:     association TestRun ↔ TestCase with a snapshot of the steps
    - TestStepResult:  one result per (TestRunCase, step_number)
    - TestResult:      final per-case outcome materialized on run approval (TRES-N)

Architecture ref:
    Test Case ──1:N──▶ Test Step
    Test Run  ──1:N──▶ Test Run Case ──1:N──▶ Test Step Result
    Test Run  ──1:N──▶ Test Result ◀── trace ── Test Case
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import ApprovableMixin, STATUS_APPROVED

# ── Constants ────────────────────────────────────────────────────────────

CASE_NOT_STARTED = "not_started"
CASE_IN_PROGRESS = "in_progress"
CASE_COMPLETE = "complete"

RESULT_PASS = "pass"
RESULT_FAIL = "fail"
RESULT_PENDING = "pending"

STEP_NOT_EXECUTED = "not_executed"

STEP_RESULT_STATUSES = {STEP_NOT_EXECUTED, RESULT_PASS, RESULT_FAIL}

# Run-level derived status; "approved" only once frozen.
RUN_NOT_STARTED = "not_started"
RUN_IN_PROGRESS = "in_progress"
RUN_COMPLETE = "complete"
RUN_APPROVED = "approved"


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Derivation ───────────────────────────────────────────────────────────

def derive_case_state(step_numbers, step_statuses: dict) -> tuple[str, str]:
    """Return ``(status, result)`` of a run case.

    ``step_numbers`` is the frozen list of steps; ``step_statuses`` maps
    step_number → recorded status. Complete iff every step is pass/fail.
    """
    decided = [step_statuses.get(n) for n in step_numbers]
    complete = bool(step_numbers) and all(s in (RESULT_PASS, RESULT_FAIL) for s in decided)
    status = CASE_COMPLETE if complete else CASE_IN_PROGRESS

    if RESULT_FAIL in decided:
        result = RESULT_FAIL
    elif complete:
        result = RESULT_PASS
    else:
        result = RESULT_PENDING
    return status, result


def derive_run_state(cases) -> tuple[str, str]:
    """Return ``(status, overall_result)`` of a run from its cases.

    The one place where run status is computed; everything else calls it.
    """
    statuses = [c.status for c in cases]
    if not statuses or all(s == CASE_NOT_STARTED for s in statuses):
        status = RUN_NOT_STARTED
    elif all(s == CASE_COMPLETE for s in statuses):
        status = RUN_COMPLETE
    else:
        status = RUN_IN_PROGRESS

    results = [c.result for c in cases]
    if RESULT_FAIL in results:
        overall = RESULT_FAIL
    elif status == RUN_COMPLETE:
        overall = RESULT_PASS
    else:
        overall = RESULT_PENDING
    return status, overall


# ═════════════════════════════════════════════════════════════════════════════
# TEST CASE
# ═════════════════════════════════════════════════════════════════════════════

class TestCase(ApprovableMixin, db.Model):
    __tablename__ = "test_cases"

    ID_PREFIX = "TC"
    AGGREGATE_TYPE = "TestCase"
    EVENT_TYPE = "Testing"
    TRACE_TYPE = "testcase"
    CONTENT_FIELDS = ("title", "description", "steps")

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)

    steps = db.relationship(
        "TestStep", back_populates="test_case",
        order_by="TestStep.step_number",
        cascade="all, delete-orphan",
    )

    def steps_as_list(self):
        return [s.to_dict() for s in self.steps]

    def content_snapshot(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "steps": [{"action": s.action, "expected_result": s.expected_result} for s in self.steps],
        }

    def to_dict(self, include_steps=True):
        d = self.lifecycle_dict()
        d.update(title=self.title, description=self.description, step_count=len(self.steps))
        if include_steps:
            d["steps"] = self.steps_as_list()
        return d


class TestStep(db.Model):
    __tablename__ = "test_steps"
    __table_args__ = (
        db.UniqueConstraint("test_case_id", "step_number", name="uq_test_step_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    test_case_id = db.Column(
        db.String(20), db.ForeignKey("test_cases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_number = db.Column(db.Integer, nullable=False, comment="1..n, contiguous")
    action = db.Column(db.Text, nullable=False)
    expected_result = db.Column(db.Text, nullable=False)

    test_case = db.relationship("TestCase", back_populates="steps")

    def to_dict(self):
        return {
            "step_number": self.step_number,
            "action": self.action,
            "expected_result": self.expected_result,
        }

    def __repr__(self):
        return f"<TestStep {self.test_case_id}#{self.step_number}>"


# ═════════════════════════════════════════════════════════════════════════════
# TEST RUN
# ═════════════════════════════════════════════════════════════════════════════

class TestRun(ApprovableMixin, db.Model):
    """
    Execution of a frozen set of approved test cases.

    ``status`` (inherited) is the draft/approved lifecycle flag.
    ``run_status`` / ``current_overall_result`` are derived from the
    cases until approval, after which ``overall_result`` is frozen.
    """

    __tablename__ = "test_runs"

    ID_PREFIX = "TR"
    AGGREGATE_TYPE = "TestRun"
    EVENT_TYPE = "Testing"
    TRACE_TYPE = "testrun"
    CONTENT_FIELDS = ("name", "description")

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    overall_result = db.Column(
        db.String(20), nullable=True,
        comment="Frozen at approval: pass | fail",
    )

    cases = db.relationship(
        "TestRunCase", back_populates="test_run",
        order_by="TestRunCase.id",
        cascade="all, delete-orphan",
    )

    @property
    def title(self):
        return self.name

    def derived_state(self):
        if self.status == STATUS_APPROVED:
            return RUN_APPROVED, self.overall_result
        return derive_run_state(self.cases)

    @property
    def run_status(self):
        return self.derived_state()[0]

    @property
    def current_overall_result(self):
        return self.derived_state()[1]

    def case_for(self, test_case_id):
        for rc in self.cases:
            if rc.test_case_id == test_case_id:
                return rc
        return None

    def to_dict(self, include_cases=True):
        d = self.lifecycle_dict()
        run_status, overall = self.derived_state()
        d.update(
            name=self.name,
            description=self.description,
            approval_status=self.status,
            status=run_status,
            overall_result=overall,
            case_count=len(self.cases),
        )
        if include_cases:
            d["cases"] = [rc.to_dict() for rc in self.cases]
        return d


class TestRunCase(db.Model):
    """Owned exclusively by its TestRun; steps are frozen at run creation."""

    __tablename__ = "test_run_cases"
    __table_args__ = (
        db.UniqueConstraint("test_run_id", "test_case_id", name="uq_run_case"),
    )

    id = db.Column(db.Integer, primary_key=True)
    test_run_id = db.Column(
        db.String(20), db.ForeignKey("test_runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    test_case_id = db.Column(
        db.String(20), db.ForeignKey("test_cases.id"),
        nullable=False, index=True,
    )
    test_case_revision = db.Column(db.Integer, nullable=False, comment="Revision at snapshot time")
    steps_snapshot = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(db.String(20), nullable=False, default=CASE_NOT_STARTED)
    result = db.Column(db.String(20), nullable=False, default=RESULT_PENDING)
    executed_by = db.Column(db.String(64), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    test_run = db.relationship("TestRun", back_populates="cases")
    step_results = db.relationship(
        "TestStepResult", back_populates="run_case",
        order_by="TestStepResult.step_number",
        cascade="all, delete-orphan",
    )

    @property
    def step_numbers(self):
        return [s["step_number"] for s in self.steps_snapshot or []]

    def snapshot_step(self, step_number):
        for s in self.steps_snapshot or []:
            if s["step_number"] == step_number:
                return s
        return None

    def result_for(self, step_number):
        for sr in self.step_results:
            if sr.step_number == step_number:
                return sr
        return None

    def to_dict(self):
        return {
            "id": self.id,
            "test_run_id": self.test_run_id,
            "test_case_id": self.test_case_id,
            "test_case_revision": self.test_case_revision,
            "status": self.status,
            "result": self.result,
            "executed_by": self.executed_by,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "steps": self.steps_snapshot or [],
            "step_results": [sr.to_dict() for sr in self.step_results],
        }

    def __repr__(self):
        return f"<TestRunCase {self.test_run_id}/{self.test_case_id} {self.status}:{self.result}>"


class TestStepResult(db.Model):
    __tablename__ = "test_step_results"
    __table_args__ = (
        db.UniqueConstraint("run_case_id", "step_number", name="uq_step_result"),
    )

    id = db.Column(db.Integer, primary_key=True)
    run_case_id = db.Column(
        db.Integer, db.ForeignKey("test_run_cases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_number = db.Column(db.Integer, nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default=STEP_NOT_EXECUTED,
        comment="not_executed | pass | fail",
    )
    expected_result = db.Column(db.Text, default="", comment="Copied from the step snapshot")
    actual_result = db.Column(db.Text, default="")
    evidence_file_id = db.Column(db.String(100), nullable=True, comment="Key in the evidence blob store")
    recorded_by = db.Column(db.String(64), nullable=True)
    recorded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    run_case = db.relationship("TestRunCase", back_populates="step_results")

    def to_dict(self):
        return {
            "id": self.id,
            "run_case_id": self.run_case_id,
            "step_number": self.step_number,
            "status": self.status,
            "expected_result": self.expected_result,
            "actual_result": self.actual_result,
            "evidence_file_id": self.evidence_file_id,
            "recorded_by": self.recorded_by,
            "recorded_at": _iso(self.recorded_at),
        }

    def __repr__(self):
        return f"<TestStepResult case#{self.run_case_id} step#{self.step_number} → {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# TEST RESULT
# ═════════════════════════════════════════════════════════════════════════════

class TestResult(db.Model):
    """Created only by test run approval; never mutated afterwards."""

    __tablename__ = "test_results"
    __table_args__ = (
        db.UniqueConstraint("test_run_id", "test_case_id", name="uq_test_result_run_case"),
    )

    ID_PREFIX = "TRES"
    AGGREGATE_TYPE = "TestResult"
    EVENT_TYPE = "Testing"
    TRACE_TYPE = "testresult"

    id = db.Column(db.String(20), primary_key=True)
    test_run_id = db.Column(
        db.String(20), db.ForeignKey("test_runs.id"), nullable=False, index=True,
    )
    test_case_id = db.Column(
        db.String(20), db.ForeignKey("test_cases.id"), nullable=False, index=True,
    )
    test_case_revision = db.Column(db.Integer, nullable=False)
    result = db.Column(db.String(20), nullable=False, comment="pass | fail")
    executed_by = db.Column(db.String(64), nullable=True)
    executed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def title(self):
        return f"{self.test_case_id} in {self.test_run_id}: {self.result}"

    @property
    def status(self):
        return self.result

    @property
    def is_deleted(self):
        return False

    def to_dict(self):
        return {
            "id": self.id,
            "entity_type": self.TRACE_TYPE,
            "test_run_id": self.test_run_id,
            "test_case_id": self.test_case_id,
            "test_case_revision": self.test_case_revision,
            "result": self.result,
            "executed_by": self.executed_by,
            "executed_at": _iso(self.executed_at),
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<TestResult {self.id}: {self.test_case_id} → {self.result}>"
