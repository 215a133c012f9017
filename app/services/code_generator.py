"""
Identity Allocator - sequential, type-prefixed identifiers.

Generates ids of the form ``{PREFIX}-{N}``:
  - User requirements:    UR-1, UR-2, …
  - System requirements:  SR-1, …
  - Test cases:           TC-1, …
  - Test runs:            TR-1, …
  - Test results:         TRES-1, …
  - Risks:                RISK-1, …

Numbers come from one ``id_sequences`` row per prefix, read with
``SELECT … FOR UPDATE`` inside the caller's transaction, so two
concurrent creates of the same type queue on the counter row and a
rolled-back create releases its number.
"""

import re

from app.models import db
from app.models.base import IdSequence

RESERVED_PREFIXES = ("UR", "SR", "TC", "TR", "TRES", "RISK")

_ID_PATTERN = re.compile(r"^([A-Z]+)-(\d+)$")


def next_id(prefix: str) -> str:
    """Allocate the next identifier for ``prefix`` (flushes, never commits)."""
    if prefix not in RESERVED_PREFIXES:
        raise ValueError(f"Unknown identifier prefix: {prefix}")

    seq = (
        db.session.query(IdSequence)
        .filter(IdSequence.prefix == prefix)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if seq is None:
        seq = IdSequence(prefix=prefix, last_value=0)
        db.session.add(seq)

    seq.last_value += 1
    db.session.flush()
    return f"{prefix}-{seq.last_value}"


def ensure_sequences() -> int:
    """Create missing counter rows.  Returns the number created."""
    existing = {row.prefix for row in IdSequence.query.all()}
    created = 0
    for prefix in RESERVED_PREFIXES:
        if prefix not in existing:
            db.session.add(IdSequence(prefix=prefix, last_value=0))
            created += 1
    if created:
        db.session.commit()
    return created


def normalize_id(raw) -> str:
    """Trim and upper-case a user-supplied identifier."""
    return str(raw or "").strip().upper()


def parse_id(entity_id: str) -> tuple[str, int] | None:
    """Split ``"TRES-4"`` into ``("TRES", 4)``; None when malformed or unreserved.

    The prefix match is exact, so ``TR-4`` and ``TRES-4`` never collide.
    """
    m = _ID_PATTERN.match(normalize_id(entity_id))
    if not m or m.group(1) not in RESERVED_PREFIXES:
        return None
    return m.group(1), int(m.group(2))
