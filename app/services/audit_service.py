"""
Audit Event Log - read-only queries over the append-only ledger.

Writes go through ``app.models.audit.record_event`` inside each command's
unit of work; nothing here mutates.

    trail(...)                 ordered events filtered by aggregate/type/user/time
    user_activity_summary()    per-user totals, active days, first/last activity
    daily_metrics(days)        per-day totals and created/approved/deleted counts
    activity_timeline(hours)   hourly event counts
"""

from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone

from flask import current_app

from app.core.exceptions import ValidationError
from app.models.audit import APPROVED, CREATED, DELETED, EVENT_TYPES, AuditEvent

DEFAULT_MAX_LIMIT = 1000

APPROVABLE_AGGREGATES = {"UserRequirement", "SystemRequirement", "TestCase", "TestRun", "Risk"}


def _max_limit():
    return current_app.config.get("AUDIT_TRAIL_MAX_LIMIT", DEFAULT_MAX_LIMIT)


def trail(
    *,
    aggregate_type: str | None = None,
    aggregate_id: str | None = None,
    event_type: str | None = None,
    event_name: str | None = None,
    user_id: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    newest_first: bool = False,
    limit: int | None = None,
) -> list[AuditEvent]:
    """
    Return audit events matching every supplied filter.

    Ordered by ``occurred_at`` then insertion order (ascending unless
    ``newest_first``).  ``limit`` is capped at AUDIT_TRAIL_MAX_LIMIT.
    """
    if event_type is not None and event_type not in EVENT_TYPES:
        raise ValidationError(
            f"Unknown event type: {event_type}",
            {"event_type": f"must be one of {sorted(EVENT_TYPES)}"},
        )
    if occurred_from and occurred_to and occurred_from > occurred_to:
        raise ValidationError("occurred_from must not be after occurred_to",
                              {"occurred_from": "after occurred_to"})

    q = AuditEvent.query
    if aggregate_type:
        q = q.filter(AuditEvent.aggregate_type == aggregate_type)
    if aggregate_id:
        q = q.filter(AuditEvent.aggregate_id == aggregate_id)
    if event_type:
        q = q.filter(AuditEvent.event_type == event_type)
    if event_name:
        q = q.filter(AuditEvent.event_name == event_name)
    if user_id:
        q = q.filter(AuditEvent.user_id == str(user_id))
    if occurred_from:
        q = q.filter(AuditEvent.occurred_at >= occurred_from)
    if occurred_to:
        q = q.filter(AuditEvent.occurred_at <= occurred_to)

    if newest_first:
        q = q.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc())
    else:
        q = q.order_by(AuditEvent.occurred_at.asc(), AuditEvent.id.asc())

    cap = _max_limit()
    limit = cap if limit is None else max(1, min(int(limit), cap))
    return q.limit(limit).all()


def user_activity_summary() -> list[dict]:
    """Per-user activity, most active first."""
    per_user: dict = {}
    for ev in AuditEvent.query.order_by(AuditEvent.occurred_at, AuditEvent.id):
        key = ev.user_id or "system"
        row = per_user.get(key)
        if row is None:
            row = per_user[key] = {
                "user_id": key,
                "user_email": ev.user_email,
                "user_name": ev.user_name,
                "total_events": 0,
                "days": set(),
                "first_activity": ev.occurred_at,
                "last_activity": ev.occurred_at,
                "events_by_type": Counter(),
            }
        row["total_events"] += 1
        row["days"].add(ev.occurred_at.date())
        row["last_activity"] = ev.occurred_at
        row["events_by_type"][ev.event_type] += 1
        # latest snapshot wins for display
        row["user_email"] = ev.user_email or row["user_email"]
        row["user_name"] = ev.user_name or row["user_name"]

    summary = []
    for row in per_user.values():
        summary.append({
            "user_id": row["user_id"],
            "user_email": row["user_email"],
            "user_name": row["user_name"],
            "total_events": row["total_events"],
            "active_days": len(row["days"]),
            "first_activity": row["first_activity"].isoformat(),
            "last_activity": row["last_activity"].isoformat(),
            "events_by_type": dict(row["events_by_type"]),
        })
    summary.sort(key=lambda r: (-r["total_events"], r["user_id"]))
    return summary


def daily_metrics(days: int = 30, *, now: datetime | None = None) -> list[dict]:
    """
    One row per calendar day (UTC) with activity, newest day first.

    items_created / approved / deleted count lifecycle events of
    approvable records; test and trace activities count by event type.
    """
    if days < 1:
        raise ValidationError("days must be positive", {"days": days})
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=days)

    buckets: dict = defaultdict(lambda: {
        "total_events": 0,
        "users": set(),
        "items_created": 0,
        "items_approved": 0,
        "items_deleted": 0,
        "test_activities": 0,
        "trace_activities": 0,
    })
    for ev in AuditEvent.query.filter(AuditEvent.occurred_at >= since):
        b = buckets[ev.occurred_at.date()]
        b["total_events"] += 1
        if ev.user_id:
            b["users"].add(ev.user_id)
        is_lifecycle = ev.aggregate_type in APPROVABLE_AGGREGATES
        if is_lifecycle and ev.event_name.endswith(CREATED):
            b["items_created"] += 1
        elif is_lifecycle and ev.event_name.endswith(APPROVED):
            b["items_approved"] += 1
        elif is_lifecycle and ev.event_name.endswith(DELETED):
            b["items_deleted"] += 1
        if ev.event_type == "Testing":
            b["test_activities"] += 1
        elif ev.event_type == "Traceability":
            b["trace_activities"] += 1

    rows = []
    for day in sorted(buckets, reverse=True):
        b = buckets[day]
        rows.append({
            "date": day.isoformat(),
            "total_events": b["total_events"],
            "active_users": len(b["users"]),
            "items_created": b["items_created"],
            "items_approved": b["items_approved"],
            "items_deleted": b["items_deleted"],
            "test_activities": b["test_activities"],
            "trace_activities": b["trace_activities"],
        })
    return rows


def activity_timeline(hours: int = 24, *, now: datetime | None = None) -> list[dict]:
    """Hourly event counts for the last ``hours`` hours, oldest first."""
    if hours < 1:
        raise ValidationError("hours must be positive", {"hours": hours})
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(hours=hours)

    counts: dict = defaultdict(Counter)
    for ev in AuditEvent.query.filter(AuditEvent.occurred_at >= since):
        hour = ev.occurred_at.replace(minute=0, second=0, microsecond=0, tzinfo=None)
        counts[hour][ev.event_type] += 1

    return [
        {
            "hour": hour.isoformat(),
            "total_events": sum(by_type.values()),
            "events_by_type": dict(by_type),
        }
        for hour, by_type in sorted(counts.items())
    ]
