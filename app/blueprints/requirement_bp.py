"""
Traceable Requirements Platform
Approvable records blueprint: user/system requirements, risks, test cases.

Routes (one view set, mounted per record family):
  GET    /requirements/<kind>                  – list (kind: user | system)
  POST   /requirements/<kind>                  – create (draft, or approved with ?approve)
  GET    /requirements/<kind>/<eid>            – detail + available transitions
  PUT    /requirements/<kind>/<eid>            – edit
  DELETE /requirements/<kind>/<eid>            – soft delete
  POST   /requirements/<kind>/<eid>/approve    – approve
  …and the same under /risks and /test-cases.

Credential-gated calls carry ``password`` in the JSON body; concurrency
expectations (expected_revision / expected_status / expected_version)
may ride along in the same body.
"""

from flask import Blueprint, jsonify, request

from app.auth import credential_from_request, current_actor
from app.blueprints import content_fields, expected_state, json_body
from app.core.exceptions import NotFoundError
from app.services import entity_store, lifecycle, traceability
from app.services.code_generator import normalize_id
from app.services.lifecycle import get_available_transitions

requirement_bp = Blueprint("requirement", __name__, url_prefix="/api/v1")

_KIND_PATH = "/requirements/<any(user, system):kind>"
_MOUNTS = (
    (_KIND_PATH, {}),
    ("/risks", {"kind": "risk"}),
    ("/test-cases", {"kind": "testcase"}),
)


# ── helpers ──────────────────────────────────────────────────────────────

def _load_typed(kind, eid):
    """Load ``eid`` and make sure it belongs to the family in the URL."""
    eid = normalize_id(eid)
    if entity_store.type_of(eid) != kind:
        raise NotFoundError(entity_store.model_for(kind).AGGREGATE_TYPE, eid)
    return entity_store.get_entity(eid)


def _detail(entity):
    d = entity.to_dict()
    d["available_transitions"] = get_available_transitions(entity)
    d["upstream_ids"] = [link.from_id for link in traceability.upstream_of(entity.id)
                         if not link.is_system_generated]
    return d


# ═════════════════════════════════════════════════════════════════════════════
# COLLECTION
# ═════════════════════════════════════════════════════════════════════════════

def list_entities(kind):
    """List non-deleted records; ``?status=draft|approved`` filters."""
    items = entity_store.list_entities(kind, status=request.args.get("status"))
    return jsonify([item.to_dict() for item in items])


def create_entity(kind):
    """Create a record.

    Body: content fields, optional ``upstream_ids``; ``approve: true`` plus
    ``password`` creates it already approved (revision 1).
    """
    data = json_body()
    approve = bool(data.pop("approve", False))
    entity = lifecycle.create_entity(
        kind,
        content_fields(data),
        current_actor(),
        approve=approve,
        credential_verified=credential_from_request(data) if approve else False,
        approval_notes=data.get("approval_notes"),
    )
    return jsonify(_detail(entity)), 201


# ═════════════════════════════════════════════════════════════════════════════
# ITEM
# ═════════════════════════════════════════════════════════════════════════════

def get_entity(kind, eid):
    return jsonify(_detail(_load_typed(kind, eid)))


def edit_entity(kind, eid):
    """Edit content; editing an approved record needs ``password``."""
    entity = _load_typed(kind, eid)
    data = json_body()
    entity = lifecycle.edit_entity(
        entity.id,
        content_fields(data),
        current_actor(),
        credential_verified=credential_from_request(data),
        **expected_state(data),
    )
    return jsonify(_detail(entity))


def delete_entity(kind, eid):
    entity = _load_typed(kind, eid)
    data = json_body()
    lifecycle.delete_entity(
        entity.id,
        current_actor(),
        credential_verified=credential_from_request(data),
        **expected_state(data),
    )
    return jsonify({"message": f"{entity.id} deleted", "id": entity.id})


def approve_entity(kind, eid):
    """Approve a draft.  Body: { password, approval_notes?, expected_* }"""
    entity = _load_typed(kind, eid)
    data = json_body()
    entity = lifecycle.approve_entity(
        entity.id,
        current_actor(),
        credential_verified=credential_from_request(data),
        approval_notes=data.get("approval_notes"),
        **expected_state(data),
    )
    return jsonify(_detail(entity))


for _path, _defaults in _MOUNTS:
    _name = _defaults.get("kind", "requirement")
    _opts = {"defaults": _defaults} if _defaults else {}
    requirement_bp.add_url_rule(_path, f"list_{_name}", list_entities,
                                methods=["GET"], **_opts)
    requirement_bp.add_url_rule(_path, f"create_{_name}", create_entity,
                                methods=["POST"], **_opts)
    requirement_bp.add_url_rule(f"{_path}/<eid>", f"get_{_name}", get_entity,
                                methods=["GET"], **_opts)
    requirement_bp.add_url_rule(f"{_path}/<eid>", f"edit_{_name}", edit_entity,
                                methods=["PUT"], **_opts)
    requirement_bp.add_url_rule(f"{_path}/<eid>", f"delete_{_name}", delete_entity,
                                methods=["DELETE"], **_opts)
    requirement_bp.add_url_rule(f"{_path}/<eid>/approve", f"approve_{_name}", approve_entity,
                                methods=["POST"], **_opts)
