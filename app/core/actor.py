"""Explicit actor context passed into every command."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """Who is performing a command.

    ``id`` is an opaque directory reference; ``email`` and ``name`` are
    copied into every audit event at the moment it is written.
    """

    id: str
    email: str | None = None
    name: str | None = None

    @classmethod
    def from_user(cls, user) -> Actor:
        return cls(id=str(user.id), email=user.email, name=user.display_name)

