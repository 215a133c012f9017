"""
Traceable Requirements Platform
Test execution blueprint.

Routes:
  GET    /test-runs                                   – list runs (?status=)
  POST   /test-runs                                   – create run over approved test cases
  GET    /test-runs/<rid>                             – run detail with cases & step results
  PUT    /test-runs/<rid>                             – edit name / description (draft only)
  DELETE /test-runs/<rid>                             – soft delete
  POST   /test-runs/<rid>/cases/<tcid>/execute        – start / restart a case
  PUT    /test-runs/<rid>/cases/<tcid>/steps/<n>      – record a step result
  POST   /test-runs/<rid>/approve                     – approve a complete run
  GET    /test-cases/<tcid>/results                   – materialized results of a test case
  DELETE /test-results/<tres_id>                      – delete a result (+ its system links)
"""

from flask import Blueprint, jsonify, request

from app.auth import credential_from_request, current_actor
from app.blueprints import content_fields, expected_state, json_body
from app.models import testing as tm
from app.services import entity_store, lifecycle, test_execution
from app.services.lifecycle import get_available_transitions

testing_bp = Blueprint("testing", __name__, url_prefix="/api/v1")


def _run_detail(run):
    d = run.to_dict()
    d["available_transitions"] = get_available_transitions(run)
    return d


# ═════════════════════════════════════════════════════════════════════════════
# TEST RUNS
# ═════════════════════════════════════════════════════════════════════════════

@testing_bp.route("/test-runs", methods=["GET"])
def list_test_runs():
    """List runs; ``?status=`` filters on the approval status (draft|approved)."""
    runs = entity_store.list_entities("testrun", status=request.args.get("status"))
    return jsonify([run.to_dict(include_cases=False) for run in runs])


@testing_bp.route("/test-runs", methods=["POST"])
def create_test_run():
    """Create a run.

    Body: { name, description?, test_case_ids: ["TC-1", …] }
    """
    data = json_body()
    fields = content_fields(data)
    run = test_execution.create_test_run(
        fields.pop("name", None),
        fields.pop("description", None),
        fields.pop("test_case_ids", None),
        current_actor(),
        extra_fields=fields,
    )
    return jsonify(_run_detail(run)), 201


@testing_bp.route("/test-runs/<rid>", methods=["GET"])
def get_test_run(rid):
    run = entity_store.load(tm.TestRun, rid)
    return jsonify(_run_detail(run))


@testing_bp.route("/test-runs/<rid>", methods=["PUT"])
def edit_test_run(rid):
    run = entity_store.load(tm.TestRun, rid)
    data = json_body()
    run = lifecycle.edit_entity(
        run.id,
        content_fields(data),
        current_actor(),
        credential_verified=credential_from_request(data),
        **expected_state(data),
    )
    return jsonify(_run_detail(run))


@testing_bp.route("/test-runs/<rid>", methods=["DELETE"])
def delete_test_run(rid):
    run = entity_store.load(tm.TestRun, rid)
    data = json_body()
    lifecycle.delete_entity(
        run.id,
        current_actor(),
        credential_verified=credential_from_request(data),
        **expected_state(data),
    )
    return jsonify({"message": f"{run.id} deleted", "id": run.id})


# ═════════════════════════════════════════════════════════════════════════════
# EXECUTION
# ═════════════════════════════════════════════════════════════════════════════

@testing_bp.route("/test-runs/<rid>/cases/<tcid>/execute", methods=["POST"])
def execute_test_case(rid, tcid):
    """Start a case; calling it again restarts the case from scratch."""
    rc = test_execution.execute_test_case(rid, tcid, current_actor())
    return jsonify(rc.to_dict())


@testing_bp.route("/test-runs/<rid>/cases/<tcid>/steps/<int:step_number>", methods=["PUT"])
def record_step_result(rid, tcid, step_number):
    """Record one step.

    Body: { status: pass|fail|not_executed, actual_result, evidence_file_id? }
    """
    data = json_body()
    sr, rc = test_execution.record_step_result(
        rid, tcid, step_number,
        data.get("status"),
        data.get("actual_result"),
        current_actor(),
        evidence_file_id=data.get("evidence_file_id"),
    )
    run = rc.test_run
    return jsonify({
        "step_result": sr.to_dict(),
        "case": rc.to_dict(),
        "run_status": run.run_status,
        "overall_result": run.current_overall_result,
    })


@testing_bp.route("/test-runs/<rid>/approve", methods=["POST"])
def approve_test_run(rid):
    """Approve a complete run.  Body: { password, approval_notes?, expected_* }"""
    data = json_body()
    run = test_execution.approve_test_run(
        rid,
        current_actor(),
        credential_verified=credential_from_request(data),
        approval_notes=data.get("approval_notes"),
        **expected_state(data),
    )
    return jsonify(_run_detail(run))


# ═════════════════════════════════════════════════════════════════════════════
# TEST RESULTS
# ═════════════════════════════════════════════════════════════════════════════

@testing_bp.route("/test-cases/<tcid>/results", methods=["GET"])
def list_test_results(tcid):
    results = test_execution.results_for_test_case(tcid)
    return jsonify([r.to_dict() for r in results])


@testing_bp.route("/test-results/<tres_id>", methods=["DELETE"])
def delete_test_result(tres_id):
    """Delete a materialized result; needs ``password``."""
    data = json_body()
    test_execution.delete_test_result(
        tres_id, current_actor(), credential_verified=credential_from_request(data),
    )
    return jsonify({"message": f"{tres_id} deleted"})
