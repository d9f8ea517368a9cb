"""
Problem Statement Lifecycle Service

Governs every mutation a department actor can make to a problem statement:
  - create                      (none) -> draft | pending_review
  - edit                        draft, revision_needed, pending_review, submitted
  - resubmit                    revision_needed -> pending_review
  - delete (with cascade)       revision_needed only
Batch submission (draft | revision_needed -> submitted) lives in
``submission_service`` and uses ``validate_transition(ps, "submit")``.

Order of checks for every mutating operation:
  1. load the record inside the actor's department (NotFoundError otherwise)
  2. actor must be the record's creator            (PermissionDenied)
  3. current status must allow the action          (TransitionError)
  4. write + commit
A refusal at 2 or 3 happens before any write is issued.

Usage:
    from app.services.problem_statement_lifecycle import resubmit_problem_statement

    view = resubmit_problem_statement(actor, ps_id)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    BackendError,
    CascadeDeleteError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from app.models import db
from app.models.problem_statement import (
    PS_STATUS_GRAPH,
    PS_TRANSITIONS,
    ProblemStatement,
    ProblemStatementAlert,
    ProblemStatementAttachment,
    ProblemStatementMessage,
    ProblemStatementReview,
)
from app.models.submission import SubmissionBatchItem
from app.services.code_generator import next_problem_statement_code
from app.services.record_mapper import ProblemStatementView, map_problem_statement

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "title",
    "category",
    "theme",
    "description",
    "detailed_description",
    "faculty_owner",
    "assigned_spoc",
)

# Columns stored NOT NULL; an explicit null is saved as ""
NOT_NULL_TEXT_FIELDS = ("category", "theme", "description")

# Dependents purged before the parent row, in this order.
CASCADE_STEPS = (
    ("attachments", ProblemStatementAttachment),
    ("messages", ProblemStatementMessage),
    ("reviews", ProblemStatementReview),
    ("alerts", ProblemStatementAlert),
    ("batch_items", SubmissionBatchItem),
)


class TransitionError(Exception):
    """Raised when the record's status does not allow the action."""

    def __init__(self, code: str, action: str, current: str, reason: str | None = None):
        msg = f"Cannot '{action}' problem statement {code} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.code = code
        self.action = action
        self.current_status = current
        self.reason = reason


def _now():
    return datetime.now(timezone.utc)


def _status_of(ps: ProblemStatement) -> str:
    return ps.status or "draft"


# ── Validation ───────────────────────────────────────────────────────────────


def validate_transition(ps: ProblemStatement, action: str) -> dict:
    """
    Validate whether an action is valid for the record's current status.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    current = _status_of(ps)
    rule = PS_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": current, "to": None,
                "reason": f"Unknown action: {action}"}

    if current not in rule["from"]:
        return {"valid": False, "from": current, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{current}'"}

    if rule["to"] and rule["to"] not in PS_STATUS_GRAPH.get(current, []):
        return {"valid": False, "from": current, "to": rule["to"],
                "reason": f"No workflow edge {current} -> {rule['to']}"}

    return {"valid": True, "from": current, "to": rule["to"], "reason": None}


def ensure_creator(ps: ProblemStatement, actor, action: str) -> None:
    """Refuse the action unless ``actor`` created the record."""
    if actor is None or ps.created_by is None or actor.id != ps.created_by:
        actor_id = getattr(actor, "id", None)
        logger.info("Denied %s on %s for actor=%s (not creator)", action, ps.problem_statement_id, actor_id)
        raise PermissionDenied(
            actor_id, action,
            f"Only the creator of {ps.problem_statement_id} can {action} it",
        )


def _ensure_allowed(ps: ProblemStatement, actor, action: str) -> dict:
    ensure_creator(ps, actor, action)
    validation = validate_transition(ps, action)
    if not validation["valid"]:
        logger.info("Refused %s on %s: %s", action, ps.problem_statement_id, validation["reason"])
        raise TransitionError(ps.problem_statement_id, action, validation["from"], validation["reason"])
    return validation


def get_available_actions(ps: ProblemStatement, actor) -> list[str]:
    """Actions the actor may take on this record right now."""
    if actor is None or actor.id != ps.created_by:
        return []
    current = _status_of(ps)
    return [action for action, rule in PS_TRANSITIONS.items() if current in rule["from"]]


def get_scoped_problem_statement(actor, ps_id: str) -> ProblemStatement:
    """Load a record inside the actor's department; anything else is 'not found'."""
    department_id = actor.department_id if actor else None
    if not department_id:
        raise NotFoundError(resource="ProblemStatement", resource_id=ps_id)
    ps = ProblemStatement.query.filter_by(id=ps_id, department_id=department_id).first()
    if ps is None:
        raise NotFoundError(resource="ProblemStatement", resource_id=ps_id)
    return ps


def _commit(operation: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Database write failed operation=%s error=%s", operation, exc)
        raise BackendError(str(getattr(exc, "orig", None) or exc), operation=operation) from exc


# ── Create / edit ────────────────────────────────────────────────────────────


def _clean_fields(data: dict) -> dict:
    """Pick the editable fields. Values must be strings; null clears a field."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    fields = {}
    for key in EDITABLE_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if value is None:
            value = "" if key in NOT_NULL_TEXT_FIELDS else None
        elif isinstance(value, str):
            value = value.strip()
        else:
            raise ValidationError(f"{key} must be a string", details={key: "invalid"})
        fields[key] = value
    return fields


def create_problem_statement(actor, data: dict) -> ProblemStatementView:
    """
    Create a record in the actor's department.

    ``data["submit"]`` truthy creates it directly in ``pending_review``;
    otherwise it starts as ``draft``.
    """
    if actor is None or not actor.department_id:
        raise PermissionDenied(
            getattr(actor, "id", None), "create",
            "Your profile has no department; contact your administrator",
        )

    fields = _clean_fields(data)
    if not fields.get("title"):
        raise ValidationError("title is required", details={"title": "required"})

    submit = bool(data.get("submit"))
    now = _now()
    ps = ProblemStatement(
        problem_statement_id=next_problem_statement_code(),
        department=actor.department.name,
        department_id=actor.department_id,
        created_by=actor.id,
        status="pending_review" if submit else "draft",
        submitted_at=now if submit else None,
        last_updated=now,
        created_at=now,
        **{k: v for k, v in fields.items() if v is not None},
    )
    db.session.add(ps)
    _commit("create")
    logger.info("Created problem statement %s status=%s by=%s", ps.problem_statement_id, ps.status, actor.id)
    return map_problem_statement(ps.to_row())


def update_problem_statement(actor, ps_id: str, data: dict) -> ProblemStatementView:
    """Edit the narrative / assignment fields; status is left unchanged."""
    ps = get_scoped_problem_statement(actor, ps_id)
    _ensure_allowed(ps, actor, "edit")

    fields = _clean_fields(data)
    if "title" in fields and not fields["title"]:
        raise ValidationError("title cannot be empty", details={"title": "required"})

    for key, value in fields.items():
        setattr(ps, key, value)
    ps.last_updated = _now()
    _commit("edit")
    logger.info("Edited problem statement %s fields=%s", ps.problem_statement_id, sorted(fields))
    return map_problem_statement(ps.to_row())


def resubmit_problem_statement(actor, ps_id: str) -> ProblemStatementView:
    """revision_needed -> pending_review; stamps submitted_at and last_updated."""
    ps = get_scoped_problem_statement(actor, ps_id)
    validation = _ensure_allowed(ps, actor, "resubmit")

    now = _now()
    ps.status = validation["to"]
    ps.submitted_at = now
    ps.last_updated = now
    _commit("resubmit")
    logger.info("Resubmitted problem statement %s", ps.problem_statement_id)
    return map_problem_statement(ps.to_row())


# ── Delete with cascade ──────────────────────────────────────────────────────


def _delete_dependents(model, ps_id: str) -> int:
    return model.query.filter_by(problem_statement_id=ps_id).delete(synchronize_session=False)


def delete_problem_statement(actor, ps_id: str) -> dict:
    """
    Delete a record and every dependent row in one transaction.

    If any purge step fails the whole transaction is rolled back, so the
    parent and all of its dependents remain, and CascadeDeleteError names
    the failing step.
    """
    ps = get_scoped_problem_statement(actor, ps_id)
    _ensure_allowed(ps, actor, "delete")
    code = ps.problem_statement_id

    removed = {}
    for step, model in CASCADE_STEPS:
        try:
            removed[step] = _delete_dependents(model, ps.id)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("Cascade delete of %s aborted at step=%s error=%s", code, step, exc)
            raise CascadeDeleteError(
                f"Failed to delete {step} of {code}: {getattr(exc, 'orig', None) or exc}",
                step=step,
            ) from exc

    try:
        db.session.delete(ps)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Cascade delete of %s aborted at step=record error=%s", code, exc)
        raise CascadeDeleteError(f"Failed to delete {code}: {getattr(exc, 'orig', None) or exc}",
                                 step="record") from exc

    logger.info("Deleted problem statement %s dependents=%s", code, removed)
    return {"id": ps_id, "problem_statement_id": code, "removed": removed}
