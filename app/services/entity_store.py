"""
Approvable Entity Store - type registry, lookups and field validation.

Maps the closed set of entity type keys to their models:

    user      → UserRequirement    (UR-N)
    system    → SystemRequirement  (SR-N)
    testcase  → TestCase           (TC-N)
    testrun   → TestRun            (TR-N)
    risk      → Risk               (RISK-N)

plus ``testresult`` → TestResult (TRES-N), which is addressable for
traceability but never created through the generic commands.

Soft-deleted rows are invisible to every lookup here unless the caller
passes ``include_deleted=True``.
"""

from flask import current_app
from sqlalchemy import func

from app.core.exceptions import NotFoundError, ValidationError
from app.models.base import APPROVAL_STATUSES
from app.models.requirement import RISK_LEVEL_RANGE, Risk, SystemRequirement, UserRequirement
from app.models.testing import TestCase, TestResult, TestRun
from app.services.code_generator import normalize_id, parse_id

ENTITY_MODELS = {
    "user": UserRequirement,
    "system": SystemRequirement,
    "testcase": TestCase,
    "testrun": TestRun,
    "risk": Risk,
}

ADDRESSABLE_MODELS = {**ENTITY_MODELS, "testresult": TestResult}

_PREFIX_TYPES = {model.ID_PREFIX: key for key, model in ADDRESSABLE_MODELS.items()}

# Fields a caller may supply on create/edit, per type.
EDITABLE_FIELDS = {
    "user": ("title", "description"),
    "system": ("title", "description", "upstream_ids"),
    "testcase": ("title", "description", "steps", "upstream_ids"),
    "testrun": ("name", "description"),
    "risk": Risk.CONTENT_FIELDS,
}

# Type whose ids may appear in ``upstream_ids`` for a given type.
UPSTREAM_TYPE = {
    "system": "user",
    "testcase": "system",
}

DEFAULT_TITLE_MAX_LENGTH = 200


def model_for(entity_type: str):
    model = ENTITY_MODELS.get(entity_type)
    if model is None:
        raise ValidationError(
            f"Unknown entity type: {entity_type}",
            {"type": f"must be one of {sorted(ENTITY_MODELS)}"},
        )
    return model


def type_of(entity_id: str) -> str | None:
    """Type key for an identifier, by exact prefix; None if unrecognised."""
    parsed = parse_id(entity_id)
    if parsed is None:
        return None
    return _PREFIX_TYPES.get(parsed[0])


def get_entity(entity_id, *, include_deleted=False, for_update=False):
    """Load an approvable entity by id or raise NotFoundError."""
    eid = normalize_id(entity_id)
    etype = type_of(eid)
    if etype is None or etype not in ENTITY_MODELS:
        raise NotFoundError("Entity", eid)
    return load(ENTITY_MODELS[etype], eid, include_deleted=include_deleted, for_update=for_update)


def load(model, entity_id, *, include_deleted=False, for_update=False):
    """Load ``model`` row ``entity_id``; optionally lock it for the transaction."""
    q = model.query.filter(model.id == normalize_id(entity_id))
    if for_update:
        q = q.with_for_update().populate_existing()
    obj = q.first()
    if obj is None or (not include_deleted and getattr(obj, "deleted_at", None) is not None):
        raise NotFoundError(model.AGGREGATE_TYPE, normalize_id(entity_id))
    return obj


def resolve_node(entity_id, *, include_deleted=False):
    """Resolve any traceable id (including TRES-N) to ``(type_key, obj)``."""
    eid = normalize_id(entity_id)
    etype = type_of(eid)
    if etype is None:
        raise NotFoundError("Entity", eid)
    return etype, load(ADDRESSABLE_MODELS[etype], eid, include_deleted=include_deleted)


def list_entities(entity_type: str, *, status: str | None = None):
    """Non-deleted entities of a type, newest first."""
    model = model_for(entity_type)
    q = model.query_active()
    if status:
        if status not in APPROVAL_STATUSES:
            raise ValidationError("Unknown status filter", {"status": "must be draft or approved"})
        q = q.filter(model.status == status)
    return q.order_by(model.created_at.desc(), model.id.desc()).all()


# ── Validation ───────────────────────────────────────────────────────────────

def _title_max_length():
    return current_app.config.get("TITLE_MAX_LENGTH", DEFAULT_TITLE_MAX_LENGTH)


def _require_text(fields, name, errors, *, max_length=None):
    value = fields.get(name)
    if not isinstance(value, str) or not value.strip():
        errors[name] = "required"
        return None
    value = value.strip()
    if max_length and len(value) > max_length:
        errors[name] = f"must be at most {max_length} characters"
        return None
    return value


def _require_level(fields, name, errors):
    value = fields.get(name)
    if isinstance(value, bool):
        value = None
    try:
        level = int(value)
    except (TypeError, ValueError):
        errors[name] = "required integer 1-5"
        return None
    if level not in RISK_LEVEL_RANGE:
        errors[name] = "must be between 1 and 5"
        return None
    return level


def normalize_steps(raw_steps, errors) -> list[dict]:
    """Validate a steps payload and number it 1..n."""
    if raw_steps is None:
        return []
    if not isinstance(raw_steps, list):
        errors["steps"] = "must be a list"
        return []
    steps = []
    for idx, raw in enumerate(raw_steps, start=1):
        if not isinstance(raw, dict):
            errors[f"steps[{idx}]"] = "must be an object"
            continue
        action = (raw.get("action") or "").strip() if isinstance(raw.get("action"), str) else ""
        expected = raw.get("expected_result")
        expected = expected.strip() if isinstance(expected, str) else ""
        if not action or not expected:
            errors[f"steps[{idx}]"] = "action and expected_result are required"
            continue
        steps.append({"step_number": idx, "action": action, "expected_result": expected})
    return steps


def normalize_id_list(raw, name, errors) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        errors[name] = "must be a list of ids"
        return []
    ids = []
    for value in raw:
        eid = normalize_id(value)
        if eid and eid not in ids:
            ids.append(eid)
    return ids


def validate_fields(entity_type: str, fields: dict, *, partial: bool = False) -> dict:
    """Return cleaned fields for ``entity_type`` or raise ValidationError.

    ``partial`` validates only the keys present (edit); otherwise every
    required field must be supplied (create).
    """
    if not isinstance(fields, dict):
        raise ValidationError("Fields must be an object")

    allowed = EDITABLE_FIELDS[entity_type]
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise ValidationError(
            f"Unknown field(s) for {entity_type}: {', '.join(unknown)}",
            {name: "not editable" for name in unknown},
        )

    errors: dict = {}
    cleaned: dict = {}

    def wanted(name):
        return not partial or name in fields

    title_field = "name" if entity_type == "testrun" else "title"
    if wanted(title_field):
        cleaned[title_field] = _require_text(fields, title_field, errors, max_length=_title_max_length())

    if entity_type == "testrun":
        if "description" in fields:
            desc = fields.get("description")
            cleaned["description"] = desc.strip() if isinstance(desc, str) else ""
    elif wanted("description"):
        cleaned["description"] = _require_text(fields, "description", errors)

    if entity_type == "testcase" and wanted("steps"):
        cleaned["steps"] = normalize_steps(fields.get("steps"), errors)

    if entity_type in UPSTREAM_TYPE and "upstream_ids" in fields:
        cleaned["upstream_ids"] = normalize_id_list(fields.get("upstream_ids"), "upstream_ids", errors)

    if entity_type == "risk":
        for name in ("hazard", "harm"):
            if wanted(name):
                cleaned[name] = _require_text(fields, name, errors)
        for name in ("severity", "probability_p1", "probability_p2"):
            if wanted(name):
                cleaned[name] = _require_level(fields, name, errors)
        for name in ("foreseeable_sequence", "p_total_calculation_method"):
            if name in fields:
                value = fields.get(name)
                cleaned[name] = value.strip() if isinstance(value, str) else ""

    if errors:
        raise ValidationError(f"Invalid {entity_type} fields", errors)
    return cleaned


def ensure_unique_title(model, title: str, *, exclude_id: str | None = None):
    """Reject a title already used by another non-deleted record of the type."""
    if model is TestRun or title is None:
        return
    q = model.query_active().filter(
        func.lower(model.title) == title.lower() if model is UserRequirement else model.title == title
    )
    if exclude_id:
        q = q.filter(model.id != exclude_id)
    if q.first() is not None:
        raise ValidationError(
            f"A {model.AGGREGATE_TYPE} with this title already exists",
            {"title": "duplicate"},
        )
