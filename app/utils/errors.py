"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Problem statement not found")
    return api_error(E.VALIDATION_REQUIRED, "title is required")

    register_error_handlers(problem_statement_bp)
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from app.core.exceptions import (
    BackendError,
    CascadeDeleteError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Wrong lifecycle state – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Upstream database / hosted services – HTTP 502
    BACKEND = "ERR_BACKEND"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.BACKEND: 502,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for the UI notification.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(blueprint) -> None:
    """Attach the service-exception → HTTP mapping to a blueprint."""
    from app.services.problem_statement_lifecycle import TransitionError  # lazy import — avoid circular

    @blueprint.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @blueprint.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @blueprint.errorhandler(PermissionDenied)
    def _handle_denied(error: PermissionDenied):
        return api_error(E.FORBIDDEN, str(error), details={"action": error.action})

    @blueprint.errorhandler(TransitionError)
    def _handle_transition(error: TransitionError):
        return api_error(
            E.CONFLICT_STATE, str(error),
            details={"action": error.action, "status": error.current_status},
        )

    @blueprint.errorhandler(CascadeDeleteError)
    def _handle_cascade(error: CascadeDeleteError):
        return api_error(E.BACKEND, str(error), details={"step": error.step})

    @blueprint.errorhandler(BackendError)
    def _handle_backend(error: BackendError):
        return api_error(E.BACKEND, str(error))

    @blueprint.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", blueprint.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
