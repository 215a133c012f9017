"""
Traceability Graph - directed links between traceable records.

    UserRequirement ──▶ SystemRequirement ──▶ TestCase ──▶ TestResult

Public commands (own their unit of work):
    add_link(from_id, to_id, actor)          → TraceLink
    remove_link(link_id, actor)              → None
    remove_link_between(from_id, to_id, actor)

Queries (never mutate):
    upstream_of(id) / downstream_of(id)      → [TraceLink]
    list_links()                             → [TraceLink]
    trace_summary(id)                        → {"node", "upstream", "downstream"}

Internal helpers ``link_in_session`` / ``unlink_in_session`` are used by
the lifecycle and test execution services to add or drop edges inside
their own transaction.  Only the test execution engine may pass
``system_generated=True``.
"""

import logging

from app.core.exceptions import GraphConstraintError, NotFoundError
from app.models import db
from app.models.audit import TRACE_CREATED, TRACE_DELETED, record_event
from app.models.traceability import (
    LINK_TYPE_PAIRS,
    SYSTEM_LINK_PAIRS,
    TRACE_NODE_TYPES,
    USER_LINK_PAIRS,
    TraceLink,
)
from app.services import entity_store
from app.services.code_generator import normalize_id
from app.services.unit_of_work import atomic

logger = logging.getLogger(__name__)

AGGREGATE = "TraceLink"
EVENT_TYPE = "Traceability"


# ═════════════════════════════════════════════════════════════════════════════
# Guards
# ═════════════════════════════════════════════════════════════════════════════

def check_pair(from_type: str, to_type: str, *, system_generated: bool, from_id=None, to_id=None):
    """Raise GraphConstraintError unless the typed pair may be linked."""
    untraceable = [t for t in (from_type, to_type) if t not in TRACE_NODE_TYPES]
    if untraceable:
        raise GraphConstraintError(
            f"{untraceable[0]} records are not part of the trace graph",
            from_id=from_id, to_id=to_id,
            details={"node_types": list(TRACE_NODE_TYPES)},
        )
    pair = (from_type, to_type)
    if pair not in LINK_TYPE_PAIRS:
        raise GraphConstraintError(
            f"Links from {from_type} to {to_type} are not allowed",
            from_id=from_id, to_id=to_id,
            details={"allowed": sorted(f"{a}->{b}" for a, b in LINK_TYPE_PAIRS)},
        )
    if pair in SYSTEM_LINK_PAIRS and not system_generated:
        raise GraphConstraintError(
            f"{from_type} to {to_type} links are created only by test run approval",
            from_id=from_id, to_id=to_id,
        )
    if pair in USER_LINK_PAIRS and system_generated:
        raise GraphConstraintError(
            f"{from_type} to {to_type} links cannot be system-generated",
            from_id=from_id, to_id=to_id,
        )


# ═════════════════════════════════════════════════════════════════════════════
# In-session helpers
# ═════════════════════════════════════════════════════════════════════════════

def link_in_session(from_id, to_id, actor, *, system_generated=False):
    """Validate and add an edge inside the caller's transaction.

    Returns ``(link, created)``.  An identical existing user edge is
    returned with ``created=False`` and no event is written.
    """
    fid, tid = normalize_id(from_id), normalize_id(to_id)
    if fid == tid:
        raise GraphConstraintError("A record cannot be linked to itself", from_id=fid, to_id=tid)

    from_type, _ = entity_store.resolve_node(fid, include_deleted=system_generated)
    to_type, _ = entity_store.resolve_node(tid)
    check_pair(from_type, to_type, system_generated=system_generated, from_id=fid, to_id=tid)

    existing = TraceLink.query.filter_by(from_id=fid, to_id=tid).first()
    if existing is not None:
        if not existing.is_system_generated and not system_generated:
            return existing, False
        raise GraphConstraintError(
            f"Link {fid} → {tid} already exists", from_id=fid, to_id=tid,
            details={"link_id": existing.id},
        )

    link = TraceLink(
        from_id=fid, from_type=from_type,
        to_id=tid, to_type=to_type,
        is_system_generated=system_generated,
        created_by=actor.id,
    )
    db.session.add(link)
    db.session.flush()
    record_event(
        event_type=EVENT_TYPE,
        event_name=TRACE_CREATED,
        aggregate_type=AGGREGATE,
        aggregate_id=str(link.id),
        actor=actor,
        payload=link.to_dict(),
    )
    return link, True


def unlink_in_session(link, actor, *, cascade=False):
    """Hard-delete an edge inside the caller's transaction.

    System-generated edges are removed only when ``cascade`` is set by the
    deletion of their originating test result.
    """
    if link.is_system_generated and not cascade:
        raise GraphConstraintError(
            "System-generated links are removed only by deleting their test result",
            from_id=link.from_id, to_id=link.to_id,
            details={"link_id": link.id},
        )
    payload = link.to_dict()
    payload["cascade"] = cascade
    record_event(
        event_type=EVENT_TYPE,
        event_name=TRACE_DELETED,
        aggregate_type=AGGREGATE,
        aggregate_id=str(link.id),
        actor=actor,
        payload=payload,
    )
    db.session.delete(link)
    db.session.flush()


def sync_upstream_links(entity, upstream_type, wanted_ids, actor) -> dict:
    """Make the user-created upstream links of ``entity`` equal ``wanted_ids``.

    Returns ``{"added": [...], "removed": [...]}``.
    """
    current = TraceLink.query.filter_by(to_id=entity.id, is_system_generated=False).all()
    current_by_source = {link.from_id: link for link in current}

    for uid in wanted_ids:
        if entity_store.type_of(uid) != upstream_type:
            raise GraphConstraintError(
                f"{uid} is not a valid upstream for {entity.id}",
                from_id=uid, to_id=entity.id,
                details={"expected_type": upstream_type},
            )

    added, removed = [], []
    for uid in wanted_ids:
        if uid not in current_by_source:
            link_in_session(uid, entity.id, actor)
            added.append(uid)
    for uid, link in current_by_source.items():
        if uid not in wanted_ids:
            unlink_in_session(link, actor)
            removed.append(uid)
    return {"added": added, "removed": removed}


# ═════════════════════════════════════════════════════════════════════════════
# Commands
# ═════════════════════════════════════════════════════════════════════════════

def add_link(from_id, to_id, actor) -> TraceLink:
    """Create a user link; idempotent for an identical existing user link."""
    with atomic(f"{from_id}->{to_id}"):
        link, created = link_in_session(from_id, to_id, actor)
    if created:
        logger.info("Trace %s → %s created by %s", link.from_id, link.to_id, actor.id)
    return link


def remove_link(link_id, actor) -> None:
    with atomic(str(link_id)):
        link = db.session.get(TraceLink, link_id)
        if link is None:
            raise NotFoundError("TraceLink", link_id)
        unlink_in_session(link, actor)
    logger.info("Trace link %s removed by %s", link_id, actor.id)


def remove_link_between(from_id, to_id, actor) -> None:
    fid, tid = normalize_id(from_id), normalize_id(to_id)
    link = TraceLink.query.filter_by(from_id=fid, to_id=tid).first()
    if link is None:
        raise NotFoundError("TraceLink", f"{fid}->{tid}")
    remove_link(link.id, actor)


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════

def _is_visible(entity_id) -> bool:
    etype = entity_store.type_of(entity_id)
    if etype is None:
        return False
    obj = db.session.get(entity_store.ADDRESSABLE_MODELS[etype], entity_id)
    return obj is not None and not obj.is_deleted


def upstream_of(entity_id) -> list[TraceLink]:
    """Links pointing at ``entity_id`` whose source is not deleted."""
    eid = normalize_id(entity_id)
    entity_store.resolve_node(eid)
    links = TraceLink.query.filter_by(to_id=eid).order_by(TraceLink.id).all()
    return [link for link in links if _is_visible(link.from_id)]


def downstream_of(entity_id) -> list[TraceLink]:
    """Links leaving ``entity_id`` whose target is not deleted."""
    eid = normalize_id(entity_id)
    entity_store.resolve_node(eid)
    links = TraceLink.query.filter_by(from_id=eid).order_by(TraceLink.id).all()
    return [link for link in links if _is_visible(link.to_id)]


def list_links() -> list[TraceLink]:
    """Every link whose endpoints are both visible."""
    links = TraceLink.query.order_by(TraceLink.id).all()
    return [link for link in links if _is_visible(link.from_id) and _is_visible(link.to_id)]


def _node_dict(entity_id):
    etype = entity_store.type_of(entity_id)
    obj = db.session.get(entity_store.ADDRESSABLE_MODELS[etype], entity_id)
    return {
        "id": obj.id,
        "type": etype,
        "title": obj.title,
        "status": obj.status,
    }


def trace_summary(entity_id) -> dict:
    """Immediate neighbours of a node with their title and status."""
    etype, obj = entity_store.resolve_node(entity_id)
    return {
        "node": {"id": obj.id, "type": etype, "title": obj.title, "status": obj.status},
        "upstream": [
            {**_node_dict(link.from_id), "link_id": link.id,
             "is_system_generated": link.is_system_generated}
            for link in upstream_of(obj.id)
        ],
        "downstream": [
            {**_node_dict(link.to_id), "link_id": link.id,
             "is_system_generated": link.is_system_generated}
            for link in downstream_of(obj.id)
        ],
    }
