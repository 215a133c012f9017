"""
Audit Event Log Tests - coverage for:
  - Append-only guarantee (ORM refuses UPDATE / DELETE)
  - record_event validation and actor snapshot
  - trail() filters, ordering and limit cap
  - user activity summary, daily metrics, hourly timeline
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.actor import Actor
from app.core.exceptions import ValidationError
from app.models import db
from app.models.audit import AuditEvent, AuditLogImmutableError, record_event
from app.services import audit_service
from app.services.lifecycle import approve_entity, create_entity, delete_entity


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _ur(actor, title):
    return create_entity("user", {"title": title, "description": "d"}, actor)


def _activity(alice, bob):
    """alice: 2 creates + 1 approve; bob: 1 create + 1 delete."""
    a1 = _ur(alice, "A1")
    _ur(alice, "A2")
    approve_entity(a1.id, alice, credential_verified=True)
    b1 = _ur(bob, "B1")
    delete_entity(b1.id, bob)


# ═══════════════════════════════════════════════════════════════════════════
# TestImmutability
# ═══════════════════════════════════════════════════════════════════════════


class TestImmutability:
    def test_update_refused(self, alice):
        _ur(alice, "A1")
        ev = AuditEvent.query.first()
        ev.event_name = "Tampered"
        with pytest.raises(AuditLogImmutableError):
            db.session.commit()
        db.session.rollback()
        assert AuditEvent.query.first().event_name == "UserRequirementCreated"

    def test_delete_refused(self, alice):
        _ur(alice, "A1")
        db.session.delete(AuditEvent.query.first())
        with pytest.raises(AuditLogImmutableError):
            db.session.commit()
        db.session.rollback()
        assert AuditEvent.query.count() == 1

    def test_unknown_event_type_rejected(self, alice):
        with pytest.raises(ValueError):
            record_event(event_type="Billing", event_name="X", aggregate_type="X",
                         aggregate_id="1", actor=alice)

    def test_actor_snapshot_survives_directory_change(self, alice, alice_user):
        _ur(alice, "A1")
        alice_user.full_name = "Alice Renamed"
        db.session.commit()
        assert AuditEvent.query.first().user_name == "Alice Analyst"

    def test_system_actor_allowed(self):
        ev = record_event(event_type="Authentication", event_name="LoginFailed",
                          aggregate_type="User", aggregate_id="7", actor=None,
                          payload={"reason": "bad password"})
        assert ev.user_id is None
        assert ev.payload == {"reason": "bad password"}


# ═══════════════════════════════════════════════════════════════════════════
# TestTrail
# ═══════════════════════════════════════════════════════════════════════════


class TestTrail:
    def test_filter_by_aggregate(self, alice, bob):
        _activity(alice, bob)
        names = [ev.event_name for ev in audit_service.trail(aggregate_id="UR-1")]
        assert names == ["UserRequirementCreated", "UserRequirementApproved"]

    def test_filter_by_user(self, alice, bob):
        _activity(alice, bob)
        events = audit_service.trail(user_id=bob.id)
        assert {ev.aggregate_id for ev in events} == {"UR-3"}
        assert len(events) == 2

    def test_filter_by_event_name(self, alice, bob):
        _activity(alice, bob)
        (ev,) = audit_service.trail(event_name="UserRequirementDeleted")
        assert ev.aggregate_id == "UR-3"

    def test_newest_first(self, alice, bob):
        _activity(alice, bob)
        events = audit_service.trail(newest_first=True)
        assert events[0].event_name == "UserRequirementDeleted"
        assert [ev.id for ev in events] == sorted((ev.id for ev in events), reverse=True)

    def test_limit(self, alice, bob):
        _activity(alice, bob)
        assert len(audit_service.trail(limit=2)) == 2

    def test_limit_capped_by_config(self, app, alice, bob):
        _activity(alice, bob)
        app.config["AUDIT_TRAIL_MAX_LIMIT"] = 3
        try:
            assert len(audit_service.trail(limit=50)) == 3
        finally:
            app.config["AUDIT_TRAIL_MAX_LIMIT"] = 1000

    def test_time_window(self, alice, bob):
        _activity(alice, bob)
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        assert audit_service.trail(occurred_from=future) == []

    def test_inverted_window_rejected(self):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            audit_service.trail(occurred_from=now, occurred_to=now - timedelta(days=1))

    def test_unknown_event_type_rejected(self):
        with pytest.raises(ValidationError):
            audit_service.trail(event_type="Billing")


# ═══════════════════════════════════════════════════════════════════════════
# TestSummaries
# ═══════════════════════════════════════════════════════════════════════════


class TestSummaries:
    def test_user_activity_summary(self, alice, bob):
        _activity(alice, bob)
        first, second = audit_service.user_activity_summary()
        assert first["user_id"] == alice.id
        assert first["total_events"] == 3
        assert first["active_days"] == 1
        assert first["events_by_type"] == {"Requirements": 3}
        assert second["user_email"] == "bob@example.com"
        assert second["total_events"] == 2

    def test_daily_metrics(self, alice, bob):
        _activity(alice, bob)
        (today,) = audit_service.daily_metrics(7)
        assert today["total_events"] == 5
        assert today["active_users"] == 2
        assert today["items_created"] == 3
        assert today["items_approved"] == 1
        assert today["items_deleted"] == 1
        assert today["test_activities"] == 0
        assert today["trace_activities"] == 0

    def test_daily_metrics_window(self, alice, bob):
        _activity(alice, bob)
        later = datetime.now(timezone.utc) + timedelta(days=3)
        assert audit_service.daily_metrics(1, now=later) == []

    def test_days_must_be_positive(self):
        with pytest.raises(ValidationError):
            audit_service.daily_metrics(0)

    def test_activity_timeline(self, alice, bob):
        _activity(alice, bob)
        buckets = audit_service.activity_timeline(24)
        assert sum(b["total_events"] for b in buckets) == 5
        assert all(b["events_by_type"].keys() == {"Requirements"} for b in buckets)

    def test_empty_log(self):
        assert audit_service.user_activity_summary() == []
        assert audit_service.daily_metrics() == []
        assert audit_service.activity_timeline() == []

    def test_actor_without_directory_entry(self):
        ghost = Actor(id="svc-import", name="Importer")
        create_entity("user", {"title": "Imported", "description": "d"}, ghost)
        (row,) = audit_service.user_activity_summary()
        assert row["user_id"] == "svc-import"
        assert row["user_name"] == "Importer"
