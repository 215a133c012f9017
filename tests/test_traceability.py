"""
Traceability Graph Tests - service-level coverage for:
  - Link type whitelist (user→system, system→testcase; testcase→testresult system-only)
  - Self-loop, duplicate and unknown-node guards
  - Removal by id / by endpoints and the audit events they write
  - Upstream / downstream / summary queries hiding soft-deleted endpoints
"""

import pytest

from app.core.exceptions import GraphConstraintError, NotFoundError
from app.models.audit import AuditEvent
from app.models.traceability import LINK_TYPE_PAIRS, TRACE_NODE_TYPES, TraceLink
from app.services import traceability
from app.services.lifecycle import create_entity, delete_entity


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _chain(actor):
    """UR-1, SR-1, TC-1 with no links."""
    ur = create_entity("user", {"title": "Operator can log in", "description": "d"}, actor)
    sr = create_entity("system", {"title": "Login form", "description": "d"}, actor)
    tc = create_entity("testcase", {
        "title": "Login happy path", "description": "d",
        "steps": [{"action": "Log in", "expected_result": "Dashboard"}],
    }, actor)
    return ur, sr, tc


def _trace_events():
    return (
        AuditEvent.query.filter_by(event_type="Traceability")
        .order_by(AuditEvent.id)
        .all()
    )


# ═══════════════════════════════════════════════════════════════════════════
# TestWhitelist
# ═══════════════════════════════════════════════════════════════════════════


class TestWhitelist:
    def test_pairs(self):
        assert LINK_TYPE_PAIRS == {
            ("user", "system"),
            ("system", "testcase"),
            ("testcase", "testresult"),
        }

    def test_user_to_system(self, alice):
        ur, sr, _ = _chain(alice)
        link = traceability.add_link(ur.id, sr.id, alice)
        assert (link.from_type, link.to_type) == ("user", "system")
        assert link.created_by == alice.id
        assert not link.is_system_generated

    def test_system_to_testcase(self, alice):
        _, sr, tc = _chain(alice)
        link = traceability.add_link(sr.id, tc.id, alice)
        assert link.pair == ("system", "testcase")

    @pytest.mark.parametrize("from_idx,to_idx", [
        (2, 0),   # testcase → user
        (1, 0),   # system → user (reversed)
        (0, 2),   # user → testcase (skips a level)
        (2, 1),   # testcase → system
    ])
    def test_disallowed_pairs(self, alice, from_idx, to_idx):
        nodes = _chain(alice)
        with pytest.raises(GraphConstraintError):
            traceability.add_link(nodes[from_idx].id, nodes[to_idx].id, alice)
        assert TraceLink.query.count() == 0
        assert _trace_events() == []

    def test_same_type_rejected(self, alice):
        ur, _, _ = _chain(alice)
        other = create_entity("user", {"title": "Second", "description": "d"}, alice)
        with pytest.raises(GraphConstraintError):
            traceability.add_link(ur.id, other.id, alice)

    def test_risks_are_not_traceable(self, alice):
        ur, _, _ = _chain(alice)
        risk = create_entity("risk", {
            "title": "R", "description": "d", "hazard": "h", "harm": "h",
            "severity": 1, "probability_p1": 1, "probability_p2": 1,
        }, alice)
        with pytest.raises(GraphConstraintError) as exc:
            traceability.add_link(risk.id, ur.id, alice)
        assert exc.value.details["node_types"] == list(TRACE_NODE_TYPES)
        assert TraceLink.query.count() == 0

    def test_self_loop_rejected(self, alice):
        ur, _, _ = _chain(alice)
        with pytest.raises(GraphConstraintError):
            traceability.add_link(ur.id, ur.id, alice)

    def test_unknown_test_result(self, alice):
        _, _, tc = _chain(alice)
        with pytest.raises(NotFoundError):
            traceability.add_link(tc.id, "TRES-1", alice)


# ═══════════════════════════════════════════════════════════════════════════
# TestLinkCommands
# ═══════════════════════════════════════════════════════════════════════════


class TestLinkCommands:
    def test_link_writes_event(self, alice):
        ur, sr, _ = _chain(alice)
        link = traceability.add_link(ur.id, sr.id, alice)
        (ev,) = _trace_events()
        assert ev.event_name == "TraceCreated"
        assert ev.aggregate_type == "TraceLink"
        assert ev.aggregate_id == str(link.id)
        assert ev.payload["from_id"] == ur.id
        assert ev.payload["to_id"] == sr.id

    def test_identical_link_is_idempotent(self, alice):
        ur, sr, _ = _chain(alice)
        first = traceability.add_link(ur.id, sr.id, alice)
        second = traceability.add_link(ur.id.lower(), sr.id, alice)
        assert first.id == second.id
        assert TraceLink.query.count() == 1
        assert len(_trace_events()) == 1

    def test_unknown_endpoint(self, alice):
        ur, _, _ = _chain(alice)
        with pytest.raises(NotFoundError):
            traceability.add_link(ur.id, "SR-99", alice)
        with pytest.raises(NotFoundError):
            traceability.add_link("nonsense", ur.id, alice)

    def test_deleted_endpoint(self, alice):
        ur, sr, _ = _chain(alice)
        delete_entity(sr.id, alice)
        with pytest.raises(NotFoundError):
            traceability.add_link(ur.id, sr.id, alice)

    def test_remove_by_id(self, alice):
        ur, sr, _ = _chain(alice)
        link = traceability.add_link(ur.id, sr.id, alice)
        link_id = link.id
        traceability.remove_link(link_id, alice)
        assert TraceLink.query.count() == 0
        assert [ev.event_name for ev in _trace_events()] == ["TraceCreated", "TraceDeleted"]
        assert _trace_events()[-1].payload["cascade"] is False

    def test_remove_between(self, alice):
        ur, sr, _ = _chain(alice)
        traceability.add_link(ur.id, sr.id, alice)
        traceability.remove_link_between(ur.id, sr.id, alice)
        assert TraceLink.query.count() == 0

    def test_remove_missing(self, alice):
        with pytest.raises(NotFoundError):
            traceability.remove_link(42, alice)
        with pytest.raises(NotFoundError):
            traceability.remove_link_between("UR-1", "SR-1", alice)


# ═══════════════════════════════════════════════════════════════════════════
# TestQueries
# ═══════════════════════════════════════════════════════════════════════════


class TestQueries:
    def _linked(self, actor):
        ur, sr, tc = _chain(actor)
        traceability.add_link(ur.id, sr.id, actor)
        traceability.add_link(sr.id, tc.id, actor)
        return ur, sr, tc

    def test_upstream_and_downstream(self, alice):
        ur, sr, tc = self._linked(alice)
        assert [link.from_id for link in traceability.upstream_of(sr.id)] == [ur.id]
        assert [link.to_id for link in traceability.downstream_of(sr.id)] == [tc.id]
        assert traceability.upstream_of(ur.id) == []

    def test_deleted_neighbours_hidden(self, alice):
        ur, sr, tc = self._linked(alice)
        delete_entity(ur.id, alice)
        assert traceability.upstream_of(sr.id) == []
        assert [(link.from_id, link.to_id) for link in traceability.list_links()] == [(sr.id, tc.id)]
        # the stored edge is kept
        assert TraceLink.query.count() == 2

    def test_query_on_deleted_node(self, alice):
        _, sr, _ = self._linked(alice)
        delete_entity(sr.id, alice)
        with pytest.raises(NotFoundError):
            traceability.downstream_of(sr.id)

    def test_summary(self, alice):
        ur, sr, tc = self._linked(alice)
        summary = traceability.trace_summary(sr.id)
        assert summary["node"] == {"id": sr.id, "type": "system", "title": "Login form", "status": "draft"}
        assert [n["id"] for n in summary["upstream"]] == [ur.id]
        assert summary["downstream"][0]["title"] == "Login happy path"
        assert summary["downstream"][0]["is_system_generated"] is False
