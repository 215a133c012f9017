"""
Traceable Requirements Platform
Traceability Graph API.

Routes:
    GET    /api/v1/traces                       - every visible link
    POST   /api/v1/traces                       - create a user link {from_id, to_id}
    DELETE /api/v1/traces/<int:link_id>         - remove a user link by id
    DELETE /api/v1/traces/<from_id>/<to_id>     - remove a user link by endpoints
    GET    /api/v1/traces/<eid>/upstream        - links pointing at eid
    GET    /api/v1/traces/<eid>/downstream      - links leaving eid
    GET    /api/v1/traces/<eid>/summary         - neighbours with title & status

System-generated links (test case → test result) are read-only here;
they disappear only with their test result.
"""

from flask import Blueprint, jsonify

from app.auth import current_actor
from app.blueprints import json_body
from app.core.exceptions import ValidationError
from app.services import traceability

traceability_bp = Blueprint("traceability", __name__, url_prefix="/api/v1")


@traceability_bp.route("/traces", methods=["GET"])
def list_traces():
    return jsonify([link.to_dict() for link in traceability.list_links()])


@traceability_bp.route("/traces", methods=["POST"])
def create_trace():
    """Create ``from_id → to_id``; re-posting an identical link returns it unchanged."""
    data = json_body()
    errors = {key: "required" for key in ("from_id", "to_id") if not data.get(key)}
    if errors:
        raise ValidationError("from_id and to_id are required", errors)
    link = traceability.add_link(data["from_id"], data["to_id"], current_actor())
    return jsonify(link.to_dict()), 201


@traceability_bp.route("/traces/<int:link_id>", methods=["DELETE"])
def delete_trace(link_id):
    traceability.remove_link(link_id, current_actor())
    return jsonify({"message": "Trace link removed", "id": link_id})


@traceability_bp.route("/traces/<from_id>/<to_id>", methods=["DELETE"])
def delete_trace_between(from_id, to_id):
    traceability.remove_link_between(from_id, to_id, current_actor())
    return jsonify({"message": "Trace link removed", "from_id": from_id, "to_id": to_id})


# ── Queries ──────────────────────────────────────────────────────────────────

@traceability_bp.route("/traces/<eid>/upstream", methods=["GET"])
def upstream(eid):
    return jsonify([link.to_dict() for link in traceability.upstream_of(eid)])


@traceability_bp.route("/traces/<eid>/downstream", methods=["GET"])
def downstream(eid):
    return jsonify([link.to_dict() for link in traceability.downstream_of(eid)])


@traceability_bp.route("/traces/<eid>/summary", methods=["GET"])
def summary(eid):
    return jsonify(traceability.trace_summary(eid))
