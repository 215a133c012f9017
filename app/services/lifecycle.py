"""
Lifecycle State Machine - create / edit / approve / delete for every
approvable record.

    draft ──approve──▶ approved ──edit (credential)──▶ draft ──approve──▶ …
      └──────────── delete ───────────┴──▶ deleted (soft, terminal)

Rules:
  - create always yields draft at revision 0
  - approve is the only transition that increments ``revision``
  - editing an approved record reverts it to draft in the same commit,
    keeping its revision
  - approve, edit-while-approved and delete-while-approved require a
    verified credential (``credential_verified=True``)
  - every committed transition writes its audit event(s) in the same
    unit of work; a failed guard leaves no trace

Optimistic concurrency: callers may pass the ``expected_revision``,
``expected_status`` and/or ``expected_version`` they read; any mismatch
raises ConflictError before other guards run.

Usage:
    from app.services.lifecycle import approve_entity

    entity = approve_entity("SR-7", actor, credential_verified=True)
"""

import logging
from datetime import datetime, timezone

from app.core.exceptions import (
    ConflictError,
    CredentialRejectedError,
    InvalidTransitionError,
    PreconditionFailedError,
    ValidationError,
)
from app.models import db
from app.models.audit import APPROVED, CREATED, DELETED, REVERTED_TO_DRAFT, UPDATED, record_event
from app.models.base import STATUS_APPROVED, STATUS_DRAFT
from app.models.testing import TestStep
from app.models.traceability import TraceLink
from app.services import entity_store
from app.services.code_generator import next_id, normalize_id
from app.services.traceability import sync_upstream_links
from app.services.unit_of_work import atomic

logger = logging.getLogger(__name__)

STATUS_DELETED = "deleted"

ENTITY_TRANSITIONS = {
    "edit":    {"from": [STATUS_DRAFT, STATUS_APPROVED], "to": STATUS_DRAFT},
    "approve": {"from": [STATUS_DRAFT], "to": STATUS_APPROVED},
    "delete":  {"from": [STATUS_DRAFT, STATUS_APPROVED], "to": STATUS_DELETED},
}

# (action, current status) pairs that need a re-verified credential
CREDENTIAL_GATED = {
    ("approve", STATUS_DRAFT),
    ("edit", STATUS_APPROVED),
    ("delete", STATUS_APPROVED),
}


# ═════════════════════════════════════════════════════════════════════════════
# Guards
# ═════════════════════════════════════════════════════════════════════════════

def validate_transition(entity, action: str) -> dict:
    """
    Validate whether an action is valid for the current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = ENTITY_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": entity.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if entity.is_deleted:
        return {"valid": False, "from": STATUS_DELETED, "to": rule["to"],
                "reason": "Record is deleted"}

    if entity.status not in rule["from"]:
        return {"valid": False, "from": entity.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{entity.status}'"}

    return {"valid": True, "from": entity.status, "to": rule["to"], "reason": None}


def requires_credential(entity, action: str) -> bool:
    return (action, entity.status) in CREDENTIAL_GATED


def get_available_transitions(entity) -> list[dict]:
    """Actions currently allowed for the entity."""
    result = []
    for action, rule in ENTITY_TRANSITIONS.items():
        if validate_transition(entity, action)["valid"]:
            result.append({
                "action": action,
                "to": rule["to"],
                "requires_credential": requires_credential(entity, action),
            })
    return result


def check_expected_state(entity, *, expected_revision=None, expected_status=None, expected_version=None):
    """Raise ConflictError when the caller's read of ``entity`` is stale."""
    checks = (
        ("version", expected_version, entity.lock_version),
        ("revision", expected_revision, entity.revision),
        ("status", expected_status, entity.status),
    )
    for label, expected, actual in checks:
        if expected is not None and expected != actual:
            raise ConflictError(
                entity.id, f"{label} changed since it was read",
                expected={label: expected}, actual={label: actual},
            )


def guard(entity, action: str, credential_verified: bool):
    """Raise unless ``action`` is legal now and, if gated, the credential checked out."""
    check = validate_transition(entity, action)
    if not check["valid"]:
        rule = ENTITY_TRANSITIONS.get(action) or {}
        raise InvalidTransitionError(
            entity.id, action,
            current=check["from"], expected=rule.get("from"), reason=check["reason"],
        )
    if requires_credential(entity, action) and not credential_verified:
        raise CredentialRejectedError(entity.id, action)


def check_approval_preconditions(entity):
    """Type-specific approve preconditions (test runs are handled separately)."""
    if entity.AGGREGATE_TYPE == "TestCase" and not entity.steps:
        raise PreconditionFailedError(
            entity.id, "a test case needs at least one step",
            expected={"min_steps": 1}, actual={"steps": 0},
        )


# ═════════════════════════════════════════════════════════════════════════════
# In-session helpers
# ═════════════════════════════════════════════════════════════════════════════

def emit(entity, suffix: str, actor, payload: dict | None = None):
    """Write ``<AggregateType><suffix>`` for ``entity``."""
    return record_event(
        event_type=entity.EVENT_TYPE,
        event_name=f"{entity.AGGREGATE_TYPE}{suffix}",
        aggregate_type=entity.AGGREGATE_TYPE,
        aggregate_id=entity.id,
        actor=actor,
        payload=payload,
    )


def _comparable(field, value):
    if field == "steps":
        return [{"action": s["action"], "expected_result": s["expected_result"]} for s in value]
    return value


def diff_content(entity, cleaned: dict) -> dict:
    """``{field: {"old", "new"}}`` for content fields whose value changes."""
    before = entity.content_snapshot()
    changes = {}
    for field, new in cleaned.items():
        if field not in entity.CONTENT_FIELDS:
            continue
        old = before.get(field)
        new_cmp = _comparable(field, new)
        if old != new_cmp:
            changes[field] = {"old": old, "new": new_cmp}
    return changes


def assign_content(entity, values: dict):
    """Write content fields onto ``entity``; steps are replaced wholesale."""
    for field, value in values.items():
        if field == "steps":
            entity.steps.clear()
            db.session.flush()
            entity.steps.extend(
                TestStep(step_number=s["step_number"], action=s["action"],
                         expected_result=s["expected_result"])
                for s in value
            )
        else:
            setattr(entity, field, value)


def approve_in_session(entity, actor, approval_notes=None, *, extra_payload=None):
    """Flip to approved and bump the revision.  Caller has run the guards."""
    entity.status = STATUS_APPROVED
    entity.revision = (entity.revision or 0) + 1
    entity.approved_by = actor.id
    entity.approved_at = datetime.now(timezone.utc)
    entity.approval_notes = approval_notes
    db.session.flush()
    return emit(entity, APPROVED, actor, {
        "revision": entity.revision,
        "approved_by": actor.id,
        "approval_notes": approval_notes,
        **(extra_payload or {}),
    })


def _upstream_ids(entity) -> list[str]:
    return [
        link.from_id for link in
        TraceLink.query.filter_by(to_id=entity.id, is_system_generated=False).order_by(TraceLink.id)
    ]


# ═════════════════════════════════════════════════════════════════════════════
# Commands
# ═════════════════════════════════════════════════════════════════════════════

def create_entity(
    entity_type: str,
    fields: dict,
    actor,
    *,
    approve: bool = False,
    credential_verified: bool = False,
    approval_notes: str | None = None,
):
    """
    Create a draft record (revision 0) and emit ``<Type>Created``.

    ``approve=True`` also approves it in the same unit of work (revision 1),
    which needs ``credential_verified``.  ``upstream_ids`` in ``fields``
    links the new record to its upstream requirements.
    """
    if entity_type == "testrun":
        if approve:
            raise ValidationError("Test runs are approved after execution", {"approve": "not allowed"})
        from app.services.test_execution import create_test_run  # circular import
        fields = dict(fields or {})
        return create_test_run(
            fields.pop("name", None), fields.pop("description", None),
            fields.pop("test_case_ids", None), actor, extra_fields=fields,
        )

    model = entity_store.model_for(entity_type)
    cleaned = entity_store.validate_fields(entity_type, fields or {})
    upstream = cleaned.pop("upstream_ids", None)
    if approve and not credential_verified:
        raise CredentialRejectedError(None, "approve")

    with atomic(model.ID_PREFIX):
        entity_store.ensure_unique_title(model, cleaned.get("title"))

        entity = model(
            id=next_id(model.ID_PREFIX),
            revision=0,
            status=STATUS_DRAFT,
            created_by=actor.id,
        )
        db.session.add(entity)
        assign_content(entity, cleaned)
        db.session.flush()

        emit(entity, CREATED, actor, {
            "revision": 0,
            "status": STATUS_DRAFT,
            **entity.content_snapshot(),
        })

        if upstream:
            sync_upstream_links(entity, entity_store.UPSTREAM_TYPE[entity_type], upstream, actor)

        if approve:
            check_approval_preconditions(entity)
            approve_in_session(entity, actor, approval_notes)

    logger.info("Created %s by %s%s", entity.id, actor.id, " (approved)" if approve else "")
    return entity


def edit_entity(
    entity_id,
    fields: dict,
    actor,
    *,
    credential_verified: bool = False,
    expected_revision: int | None = None,
    expected_status: str | None = None,
    expected_version: int | None = None,
):
    """
    Change content.  Draft: in place.  Approved: needs a credential,
    reverts to draft (``<Type>RevertedToDraft``) then ``<Type>Updated``.
    A change that alters nothing is a no-op and writes no event.
    """
    eid = normalize_id(entity_id)
    with atomic(eid):
        entity = entity_store.get_entity(eid, for_update=True)
        etype = entity_store.type_of(entity.id)
        check_expected_state(
            entity, expected_revision=expected_revision,
            expected_status=expected_status, expected_version=expected_version,
        )
        if etype == "testrun" and entity.is_approved:
            raise InvalidTransitionError(
                entity.id, "edit", current=entity.status, expected=[STATUS_DRAFT],
                reason="Approved test runs are locked",
            )
        guard(entity, "edit", credential_verified)

        cleaned = entity_store.validate_fields(etype, fields or {}, partial=True)
        upstream = cleaned.pop("upstream_ids", None)
        if cleaned.get("title") is not None:
            entity_store.ensure_unique_title(type(entity), cleaned["title"], exclude_id=entity.id)

        changes = diff_content(entity, cleaned)
        current_upstream = _upstream_ids(entity) if upstream is not None else []
        links_changed = upstream is not None and set(upstream) != set(current_upstream)

        if not changes and not links_changed:
            return entity

        if entity.is_approved:
            entity.status = STATUS_DRAFT
            emit(entity, REVERTED_TO_DRAFT, actor, {
                "revision": entity.revision,
                "previous_status": STATUS_APPROVED,
                "last_approved_by": entity.approved_by,
                "last_approved_at": entity.approved_at,
            })

        assign_content(entity, {field: cleaned[field] for field in changes})
        entity.modified_by = actor.id
        entity.modified_at = datetime.now(timezone.utc)
        db.session.flush()

        if changes:
            emit(entity, UPDATED, actor, {"revision": entity.revision, "changes": changes})
        if links_changed:
            sync_upstream_links(entity, entity_store.UPSTREAM_TYPE[etype], upstream, actor)

    logger.info("Edited %s by %s (fields=%s)", entity.id, actor.id, sorted(changes))
    return entity


def approve_entity(
    entity_id,
    actor,
    *,
    credential_verified: bool = False,
    approval_notes: str | None = None,
    expected_revision: int | None = None,
    expected_status: str | None = None,
    expected_version: int | None = None,
):
    """Draft → approved, ``revision += 1``, emits ``<Type>Approved``."""
    eid = normalize_id(entity_id)
    if entity_store.type_of(eid) == "testrun":
        from app.services.test_execution import approve_test_run  # circular import
        return approve_test_run(
            eid, actor, credential_verified=credential_verified, approval_notes=approval_notes,
            expected_revision=expected_revision, expected_status=expected_status,
            expected_version=expected_version,
        )

    with atomic(eid):
        entity = entity_store.get_entity(eid, for_update=True)
        check_expected_state(
            entity, expected_revision=expected_revision,
            expected_status=expected_status, expected_version=expected_version,
        )
        guard(entity, "approve", credential_verified)
        check_approval_preconditions(entity)
        approve_in_session(entity, actor, approval_notes)

    logger.info("Approved %s r%d by %s", entity.id, entity.revision, actor.id)
    return entity


def delete_entity(
    entity_id,
    actor,
    *,
    credential_verified: bool = False,
    expected_revision: int | None = None,
    expected_status: str | None = None,
    expected_version: int | None = None,
) -> None:
    """Soft delete; a credential is needed only if the record is approved."""
    eid = normalize_id(entity_id)
    with atomic(eid):
        entity = entity_store.get_entity(eid, for_update=True)
        check_expected_state(
            entity, expected_revision=expected_revision,
            expected_status=expected_status, expected_version=expected_version,
        )
        guard(entity, "delete", credential_verified)

        previous_status = entity.status
        entity.soft_delete(actor.id)
        db.session.flush()
        emit(entity, DELETED, actor, {"revision": entity.revision, "status": previous_status})

    logger.info("Deleted %s by %s", eid, actor.id)
