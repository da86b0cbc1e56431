"""
Workflow-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and get
consistent HTTP status codes and machine-readable codes everywhere.

Every exception carries a ``code`` naming the precondition that failed, because
the next legal action differs per failure ("select a vendor first" is not the
same as "round already locked").

Usage:
    from fitout.core.exceptions import NotFoundError, StateTransitionError

    raise NotFoundError(resource="BidRound", resource_id=7)
    raise StateTransitionError("Bid round is locked", current_state="locked",
                               code="ROUND_LOCKED")
"""


class WorkflowError(Exception):
    """Base class for every error the workflow core raises on purpose."""

    code = "ERR_WORKFLOW"
    status = 400

    def __init__(self, message: str, code: str | None = None, details: dict | None = None) -> None:
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(WorkflowError):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable model name (e.g. "Case", "Quotation").
        resource_id: The PK that was looked up.
    """

    code = "ERR_NOT_FOUND"
    status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg, details={"resource": resource})


class ValidationError(WorkflowError):
    """Input was well-formed but violates a business rule.

    Raised before any write. Maps to HTTP 422.
    """

    code = "ERR_VALIDATION_INVALID"
    status = 422


class StateTransitionError(WorkflowError):
    """The transition is not legal from the record's current state.

    Raised before any write. Maps to HTTP 409.

    Args:
        current_state: The state the record was found in, echoed to the caller.
    """

    code = "ERR_CONFLICT_STATE"
    status = 409

    def __init__(
        self,
        message: str,
        current_state: str | None = None,
        code: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.current_state = current_state
        details = dict(details or {})
        if current_state is not None:
            details.setdefault("current_state", current_state)
        super().__init__(message, code=code, details=details)


class PermissionDeniedError(WorkflowError):
    """The acting role may not perform this transition. Maps to HTTP 403."""

    code = "ROLE_NOT_PERMITTED"
    status = 403

    def __init__(self, message: str, role: str | None = None, code: str | None = None) -> None:
        self.role = role
        super().__init__(message, code=code, details={"role": role} if role else None)


class ConflictError(WorkflowError):
    """An operation would duplicate a unique key. Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field (or composite key) that would be duplicated.
        value: The conflicting value.
    """

    code = "ERR_CONFLICT_DUPLICATE"
    status = 409

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class ConcurrencyConflictError(WorkflowError):
    """Another session changed the record between our read and our write.

    The whole batch has been rolled back; the caller should re-read and retry
    the transition. Guard reads make the retry idempotent.
    """

    code = "ERR_CONFLICT_VERSION"
    status = 409

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource} id={resource_id} was modified concurrently; reload and retry",
            details={"resource": resource, "retryable": True},
        )
