"""
Problem Statement read service — department-scoped queries.

Every query here is filtered by the actor's department once, up front; a
record from another department is never loaded. Ordering everywhere is
``last_updated DESC NULLS LAST, created_at DESC``.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import BackendError
from app.models.problem_statement import PS_STATUSES, PS_TRANSITIONS, ProblemStatement
from app.services.problem_statement_lifecycle import get_available_actions, get_scoped_problem_statement
from app.services.record_mapper import map_problem_statement, map_problem_statements

logger = logging.getLogger(__name__)


def ordered(query):
    """Apply the portal-wide record ordering."""
    return query.order_by(
        ProblemStatement.last_updated.desc().nullslast(),
        ProblemStatement.created_at.desc(),
    )


def scoped_query(actor):
    """Base query for the actor's department (empty when no department)."""
    department_id = actor.department_id if actor else None
    return ProblemStatement.query.filter(ProblemStatement.department_id == department_id)


def list_problem_statements(actor, *, q: str | None = None, status: str | None = None) -> list[dict]:
    """List the department's records, optionally searched and filtered by status.

    ``q`` matches title or category, case-insensitively. ``status`` of
    ``all`` (or empty) disables the status filter; ``draft`` also matches
    rows with no status.
    """
    if not actor or not actor.department_id:
        return []

    query = scoped_query(actor)
    if status and status != "all":
        if status not in PS_STATUSES:
            return []
        if status == "draft":
            query = query.filter(or_(ProblemStatement.status == "draft", ProblemStatement.status.is_(None)))
        else:
            query = query.filter(ProblemStatement.status == status)
    if q and q.strip():
        pattern = f"%{q.strip()}%"
        query = query.filter(or_(ProblemStatement.title.ilike(pattern), ProblemStatement.category.ilike(pattern)))

    try:
        rows = [ps.to_row() for ps in ordered(query).all()]
    except SQLAlchemyError as exc:
        logger.warning("Failed to load problem statements department=%s error=%s", actor.department_id, exc)
        raise BackendError(str(exc), operation="list") from exc
    return [view.to_dict() for view in map_problem_statements(rows)]


def get_problem_statement(actor, ps_id: str) -> dict:
    """Scoped single read, with the actions the actor may take."""
    ps = get_scoped_problem_statement(actor, ps_id)
    result = map_problem_statement(ps.to_row()).to_dict()
    result["available_actions"] = get_available_actions(ps, actor)
    return result


def list_ready_for_submission(actor) -> list[dict]:
    """The actor's own records that can go into a submission batch."""
    if not actor or not actor.department_id:
        return []
    return [view.to_dict() for view in map_problem_statements(ps.to_row() for ps in ready_query(actor).all())]


def ready_query(actor):
    eligible = PS_TRANSITIONS["submit"]["from"]
    return ordered(scoped_query(actor).filter(
        ProblemStatement.created_by == actor.id,
        or_(ProblemStatement.status.in_(eligible), ProblemStatement.status.is_(None)),
    ))
