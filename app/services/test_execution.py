"""
Test Execution Engine - runs, per-step results and run approval.

Flow:
    create_test_run ──▶ execute_test_case ──▶ record_step_result … ──▶ approve_test_run
                         (restartable)        (upsert per step)          (locks the run)

Run and case status are never trusted from storage while the run is a
draft: after every mutation the case state is recomputed from its step
results (``derive_case_state``) and the run state from its cases
(``derive_run_state``).  Approval freezes ``overall_result``,
materializes one TestResult per case and links each test case to its
result with a system-generated trace, all in one unit of work.

Events:
    TestRunCreated, TestCaseExecutionStarted, TestStepExecuted,
    TestCaseCompleted, TestRunCompleted, TestResultCreated, TraceCreated,
    TestRunApproved, TestResultDeleted, TraceDeleted
"""

import logging
from datetime import datetime, timezone

from app.core.exceptions import (
    CredentialRejectedError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from app.models import db
from app.models.audit import CREATED, record_event
from app.models.base import STATUS_APPROVED, STATUS_DRAFT
from app.models.testing import (
    CASE_COMPLETE,
    CASE_IN_PROGRESS,
    CASE_NOT_STARTED,
    RESULT_PENDING,
    RUN_COMPLETE,
    STEP_NOT_EXECUTED,
    STEP_RESULT_STATUSES,
    TestCase,
    TestResult,
    TestRun,
    TestRunCase,
    TestStepResult,
    derive_case_state,
    derive_run_state,
)
from app.models.traceability import TraceLink
from app.services import entity_store
from app.services.code_generator import next_id, normalize_id
from app.services.lifecycle import (
    approve_in_session,
    check_expected_state,
    emit,
    guard,
)
from app.services.traceability import link_in_session, unlink_in_session
from app.services.unit_of_work import atomic

logger = logging.getLogger(__name__)

EVENT_TYPE = "Testing"


def _utcnow():
    return datetime.now(timezone.utc)


def _record(event_name, aggregate_type, aggregate_id, actor, payload):
    return record_event(
        event_type=EVENT_TYPE,
        event_name=event_name,
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        actor=actor,
        payload=payload,
    )


def _load_run(run_id, *, for_update=False) -> TestRun:
    return entity_store.load(TestRun, run_id, for_update=for_update)


def _ensure_run_open(run: TestRun, action: str):
    if run.status == STATUS_APPROVED:
        raise InvalidTransitionError(
            run.id, action, current=STATUS_APPROVED, expected=[STATUS_DRAFT],
            reason="Approved test runs are locked",
        )


def _run_case(run: TestRun, test_case_id) -> TestRunCase:
    rc = run.case_for(normalize_id(test_case_id))
    if rc is None:
        raise NotFoundError("TestRunCase", f"{run.id}/{normalize_id(test_case_id)}")
    return rc


def _run_case_aggregate_id(rc: TestRunCase) -> str:
    return f"{rc.test_run_id}/{rc.test_case_id}"


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════

def create_test_run(name, description, test_case_ids, actor, *, extra_fields=None) -> TestRun:
    """
    Create a draft run over approved, non-deleted test cases.

    Each TestRunCase snapshots the case's steps and revision so later edits
    to the test case do not leak into the run.
    """
    if extra_fields:
        raise ValidationError(
            f"Unknown field(s) for testrun: {', '.join(sorted(extra_fields))}",
            {key: "not editable" for key in extra_fields},
        )
    cleaned = entity_store.validate_fields(
        "testrun", {"name": name, "description": description or ""},
    )

    errors = {}
    ids = entity_store.normalize_id_list(test_case_ids, "test_case_ids", errors)
    if not ids and "test_case_ids" not in errors:
        errors["test_case_ids"] = "at least one test case is required"
    if errors:
        raise ValidationError("Invalid test run fields", errors)

    with atomic(TestRun.ID_PREFIX):
        # locked so a case cannot be reverted to draft while it is snapshotted
        cases = (
            TestCase.query_active()
            .filter(TestCase.id.in_(ids))
            .with_for_update()
            .populate_existing()
            .all()
        )
        by_id = {tc.id: tc for tc in cases}
        missing = [tid for tid in ids if tid not in by_id]
        unapproved = [tid for tid in ids if tid in by_id and by_id[tid].status != STATUS_APPROVED]
        if missing or unapproved:
            details = {}
            if missing:
                details["missing"] = missing
            if unapproved:
                details["not_approved"] = unapproved
            raise ValidationError("Test runs can only include approved, existing test cases", details)

        run = TestRun(
            id=next_id(TestRun.ID_PREFIX),
            revision=0,
            status=STATUS_DRAFT,
            created_by=actor.id,
            name=cleaned["name"],
            description=cleaned.get("description", ""),
        )
        db.session.add(run)
        for tid in ids:
            tc = by_id[tid]
            run.cases.append(TestRunCase(
                test_case_id=tc.id,
                test_case_revision=tc.revision,
                steps_snapshot=tc.steps_as_list(),
                status=CASE_NOT_STARTED,
                result=RESULT_PENDING,
            ))
        db.session.flush()
        emit(run, CREATED, actor, {
            "revision": 0,
            "name": run.name,
            "description": run.description,
            "test_case_ids": ids,
        })

    logger.info("Test run %s created by %s with %d case(s)", run.id, actor.id, len(ids))
    return run


# ═════════════════════════════════════════════════════════════════════════════
# Execute / record
# ═════════════════════════════════════════════════════════════════════════════

def _start_case(rc: TestRunCase, actor, *, restart: bool):
    for sr in list(rc.step_results):
        db.session.delete(sr)
    rc.step_results.clear()
    rc.status = CASE_IN_PROGRESS
    rc.result = RESULT_PENDING
    rc.started_at = _utcnow()
    rc.completed_at = None
    rc.executed_by = actor.id
    db.session.flush()
    _record("TestCaseExecutionStarted", "TestRunCase", _run_case_aggregate_id(rc), actor, {
        "test_run_id": rc.test_run_id,
        "test_case_id": rc.test_case_id,
        "restarted": restart,
    })


def execute_test_case(run_id, test_case_id, actor) -> TestRunCase:
    """Start (or restart) a case: clears its step results and marks it in progress."""
    rid = normalize_id(run_id)
    with atomic(rid):
        run = _load_run(rid, for_update=True)
        _ensure_run_open(run, "execute")
        rc = _run_case(run, test_case_id)
        was_complete = derive_run_state(run.cases)[0] == RUN_COMPLETE
        _start_case(rc, actor, restart=rc.status != CASE_NOT_STARTED)
        run.modified_by = actor.id
        run.modified_at = _utcnow()
        if was_complete:
            logger.info("Test run %s reopened by re-executing %s", run.id, rc.test_case_id)

    logger.info("Execution of %s in %s started by %s", rc.test_case_id, rid, actor.id)
    return rc


def record_step_result(
    run_id,
    test_case_id,
    step_number,
    status,
    actual_result,
    actor,
    *,
    evidence_file_id=None,
) -> tuple[TestStepResult, TestRunCase]:
    """
    Upsert the result of one step, then recompute case and run state.

    pass/fail require a non-empty ``actual_result``; ``not_executed`` is an
    intermediate save that never completes a case.
    """
    rid = normalize_id(run_id)
    status = (status or "").strip().lower()
    actual = actual_result.strip() if isinstance(actual_result, str) else ""

    errors = {}
    if status not in STEP_RESULT_STATUSES:
        errors["status"] = f"must be one of {sorted(STEP_RESULT_STATUSES)}"
    elif status != STEP_NOT_EXECUTED and not actual:
        errors["actual_result"] = "required for pass/fail"
    try:
        step_no = int(step_number)
    except (TypeError, ValueError):
        errors["step_number"] = "must be an integer"
        step_no = None
    if errors:
        raise ValidationError("Invalid step result", errors)

    with atomic(rid):
        run = _load_run(rid, for_update=True)
        _ensure_run_open(run, "record_step_result")
        rc = _run_case(run, test_case_id)
        snapshot = rc.snapshot_step(step_no)
        if snapshot is None:
            raise NotFoundError("TestStep", f"{rc.test_case_id}#{step_no}")

        run_was_complete = derive_run_state(run.cases)[0] == RUN_COMPLETE
        case_was_complete = rc.status == CASE_COMPLETE

        if rc.status == CASE_NOT_STARTED:
            _start_case(rc, actor, restart=False)

        sr = rc.result_for(step_no)
        if sr is None:
            sr = TestStepResult(step_number=step_no, expected_result=snapshot["expected_result"])
            rc.step_results.append(sr)
        sr.status = status
        sr.actual_result = actual
        sr.evidence_file_id = evidence_file_id
        sr.recorded_by = actor.id
        sr.recorded_at = _utcnow()
        db.session.flush()

        _record("TestStepExecuted", "TestStep", f"{_run_case_aggregate_id(rc)}#{step_no}", actor, {
            "test_run_id": rc.test_run_id,
            "test_case_id": rc.test_case_id,
            "step_number": step_no,
            "status": status,
            "actual_result": actual,
            "evidence_file_id": evidence_file_id,
        })

        statuses = {r.step_number: r.status for r in rc.step_results}
        rc.status, rc.result = derive_case_state(rc.step_numbers, statuses)
        if rc.status == CASE_COMPLETE:
            if not case_was_complete:
                rc.completed_at = _utcnow()
                _record("TestCaseCompleted", "TestRunCase", _run_case_aggregate_id(rc), actor, {
                    "test_run_id": rc.test_run_id,
                    "test_case_id": rc.test_case_id,
                    "result": rc.result,
                })
        else:
            rc.completed_at = None

        run.modified_by = actor.id
        run.modified_at = _utcnow()
        db.session.flush()

        run_status, overall = derive_run_state(run.cases)
        if run_status == RUN_COMPLETE and not run_was_complete:
            emit(run, "Completed", actor, {"overall_result": overall, "revision": run.revision})
            logger.info("Test run %s complete (%s)", run.id, overall)

    return sr, rc


# ═════════════════════════════════════════════════════════════════════════════
# Approve
# ═════════════════════════════════════════════════════════════════════════════

def approve_test_run(
    run_id,
    actor,
    *,
    credential_verified: bool = False,
    approval_notes: str | None = None,
    expected_revision: int | None = None,
    expected_status: str | None = None,
    expected_version: int | None = None,
) -> TestRun:
    """
    Complete → approved.  Materializes one TestResult (TRES-N) per case,
    links test case → result with a system-generated trace, freezes the
    overall result and emits TestRunApproved.  All or nothing.
    """
    rid = normalize_id(run_id)
    with atomic(rid):
        run = _load_run(rid, for_update=True)
        check_expected_state(
            run, expected_revision=expected_revision,
            expected_status=expected_status, expected_version=expected_version,
        )
        guard(run, "approve", credential_verified)

        run_status, overall = derive_run_state(run.cases)
        if run_status != RUN_COMPLETE:
            incomplete = [rc.test_case_id for rc in run.cases if rc.status != CASE_COMPLETE]
            raise PreconditionFailedError(
                run.id, "every test case in the run must be complete",
                expected={"status": RUN_COMPLETE},
                actual={"status": run_status, "incomplete": incomplete},
            )

        result_ids = []
        for rc in run.cases:
            tres = TestResult(
                id=next_id(TestResult.ID_PREFIX),
                test_run_id=run.id,
                test_case_id=rc.test_case_id,
                test_case_revision=rc.test_case_revision,
                result=rc.result,
                executed_by=rc.executed_by,
                executed_at=rc.completed_at,
                created_by=actor.id,
            )
            db.session.add(tres)
            db.session.flush()
            _record("TestResultCreated", "TestResult", tres.id, actor, tres.to_dict())
            link_in_session(rc.test_case_id, tres.id, actor, system_generated=True)
            result_ids.append(tres.id)

        run.overall_result = overall
        approve_in_session(run, actor, approval_notes, extra_payload={
            "overall_result": overall,
            "test_result_ids": result_ids,
        })

    logger.info("Test run %s approved by %s: %s, %d result(s)", rid, actor.id, overall, len(result_ids))
    return run


# ═════════════════════════════════════════════════════════════════════════════
# Test results
# ═════════════════════════════════════════════════════════════════════════════

def results_for_test_case(test_case_id) -> list[TestResult]:
    """Materialized results of a test case, newest first."""
    tc = entity_store.load(TestCase, test_case_id, include_deleted=True)
    return (
        TestResult.query.filter_by(test_case_id=tc.id)
        .order_by(TestResult.created_at.desc(), TestResult.id.desc())
        .all()
    )


def delete_test_result(result_id, actor, *, credential_verified: bool = False) -> None:
    """Remove a test result and cascade its system-generated trace links."""
    rid = normalize_id(result_id)
    with atomic(rid):
        tres = db.session.get(TestResult, rid)
        if tres is None:
            raise NotFoundError("TestResult", rid)
        if not credential_verified:
            raise CredentialRejectedError(rid, "delete")

        links = TraceLink.query.filter(
            (TraceLink.to_id == rid) | (TraceLink.from_id == rid)
        ).all()
        removed_link_ids = [link.id for link in links]
        for link in links:
            unlink_in_session(link, actor, cascade=True)

        snapshot = tres.to_dict()
        db.session.delete(tres)
        db.session.flush()
        _record("TestResultDeleted", "TestResult", rid, actor, {
            **snapshot,
            "removed_link_ids": removed_link_ids,
        })

    logger.info("Test result %s deleted by %s (%d link(s))", rid, actor.id, len(links))

