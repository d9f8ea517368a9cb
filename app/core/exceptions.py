"""
Portal-wide exception hierarchy.

Services raise these; blueprints map them to HTTP responses once via
``app.utils.errors.register_error_handlers``.

Three failure families:
  - local refusals (PermissionDenied, lifecycle TransitionError): computed
    before any backend call, nothing is written
  - backend failures (BackendError and subclasses): carry the backend's
    message, the operation is aborted and not retried
  - input problems (ValidationError, NotFoundError)

Usage:
    from app.core.exceptions import NotFoundError, PermissionDenied

    raise NotFoundError(resource="ProblemStatement", resource_id=ps_id)
    raise PermissionDenied(actor_id, "delete", "Only the creator can delete")
"""


class NotFoundError(Exception):
    """Raised when a record does not exist within the actor's department.

    Used for BOTH genuinely missing records AND cross-department lookups, so
    a foreign record's existence is never confirmed.

    Args:
        resource: Human-readable entity name (e.g. "ProblemStatement").
        resource_id: The id that was looked up. Logged, not shown to users.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PermissionDenied(Exception):
    """Local authorization refusal. No backend call has been made."""

    def __init__(self, actor_id: str | None, action: str, reason: str | None = None) -> None:
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(reason or f"Not allowed to '{action}'")


class BackendError(Exception):
    """A call to the database or a hosted backend service failed.

    ``message`` is the backend's own message and is shown to the user.
    """

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)


class CascadeDeleteError(BackendError):
    """A dependent-row purge failed; the parent record was not deleted."""

    def __init__(self, message: str, *, step: str) -> None:
        self.step = step
        super().__init__(message, operation=f"delete:{step}")
