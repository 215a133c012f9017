"""
Service-wide exception hierarchy.

Every command in app/services raises one of these types when a guard
fails; nothing is returned as a bare string and nothing is swallowed.
Each error carries a machine-readable ``kind`` plus the context needed to
render a precise message (entity id, expected vs. actual state).  The
app factory registers a single handler against ``ServiceError`` and maps
each kind to an HTTP status (see app/utils/errors.py).

Usage:
    from app.core.exceptions import NotFoundError, InvalidTransitionError

    raise NotFoundError("UserRequirement", "UR-12")
    raise InvalidTransitionError("UR-12", "approve", current="approved")
"""


class ServiceError(Exception):
    """Base class for all typed service errors.

    Args:
        message: Human-readable explanation.
        entity_id: Identifier of the record the command targeted, if any.
        expected: State the command required (e.g. ``"draft"``).
        actual: State that was found.
        details: Optional field-level breakdown.
    """

    kind = "ServiceError"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        entity_id: str | None = None,
        expected=None,
        actual=None,
        details: dict | None = None,
    ) -> None:
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        self.details = details or {}
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict:
        body = {"kind": self.kind, "message": self.message, "retryable": self.retryable}
        if self.entity_id is not None:
            body["entity_id"] = self.entity_id
        if self.expected is not None:
            body["expected"] = self.expected
        if self.actual is not None:
            body["actual"] = self.actual
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(ServiceError):
    """Unknown (or soft-deleted) identifier.

    Args:
        resource: Human-readable model name (e.g. "TestCase").
        resource_id: The identifier that was looked up.
    """

    kind = "NotFound"

    def __init__(self, resource: str, resource_id: str | int | None = None) -> None:
        self.resource = resource
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" {resource_id}"
        msg += " not found"
        super().__init__(msg, entity_id=None if resource_id is None else str(resource_id))


class ValidationError(ServiceError):
    """Malformed or missing required fields.

    Args:
        message: Human-readable explanation of what failed.
        details: Field-level breakdown; keys are field names.
    """

    kind = "ValidationFailed"

    def __init__(self, message: str, details: dict | None = None, *, entity_id: str | None = None) -> None:
        super().__init__(message, entity_id=entity_id, details=details)


class InvalidTransitionError(ServiceError):
    """The entity is not in a state from which the action is allowed."""

    kind = "InvalidTransition"

    def __init__(self, entity_id: str, action: str, *, current: str, expected=None, reason: str | None = None) -> None:
        self.action = action
        msg = f"Cannot '{action}' {entity_id} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, entity_id=entity_id, expected=expected, actual=current)


class CredentialRejectedError(ServiceError):
    """Wrong or missing credential for a gated transition."""

    kind = "CredentialRejected"

    def __init__(self, entity_id: str | None, action: str) -> None:
        self.action = action
        target = f" {entity_id}" if entity_id else ""
        super().__init__(
            f"Credential verification required to '{action}'{target}",
            entity_id=entity_id,
        )


class PreconditionFailedError(ServiceError):
    """A type-specific precondition for the transition does not hold."""

    kind = "PreconditionFailed"

    def __init__(self, entity_id: str, reason: str, *, expected=None, actual=None) -> None:
        super().__init__(
            f"Precondition failed for {entity_id}: {reason}",
            entity_id=entity_id, expected=expected, actual=actual,
        )


class ConflictError(ServiceError):
    """State read by the caller is stale; re-fetch and resubmit.

    The only kind callers may retry automatically.
    """

    kind = "Conflict"
    retryable = True

    def __init__(self, entity_id: str | None, reason: str = "modified concurrently", *, expected=None, actual=None) -> None:
        target = entity_id or "record"
        super().__init__(
            f"Conflict on {target}: {reason}",
            entity_id=entity_id, expected=expected, actual=actual,
        )


class GraphConstraintError(ServiceError):
    """Disallowed trace edge, duplicate edge, or a system-generated edge mutation."""

    kind = "GraphConstraintViolation"

    def __init__(self, message: str, *, from_id: str | None = None, to_id: str | None = None,
                 details: dict | None = None) -> None:
        self.from_id = from_id
        self.to_id = to_id
        info = dict(details or {})
        if from_id is not None:
            info.setdefault("from_id", from_id)
        if to_id is not None:
            info.setdefault("to_id", to_id)
        super().__init__(message, details=info)


class AuthenticationRequiredError(ServiceError):
    """No resolvable actor accompanied the request."""

    kind = "Unauthenticated"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)
