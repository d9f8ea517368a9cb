"""
Dashboard & Reviews aggregates for a department actor.

Dashboard:
  - status metrics over every department record
  - 5 most recent records, 5 latest alerts
  - deadline = now + DEFAULT_DEADLINE_DAYS
Reviews:
  - the actor's own non-draft records with status counts
  - 6 latest alerts
  - deadline = latest submitted_at + REVIEW_WINDOW_DAYS, else the default

``submitted`` counts as ``pending_review`` in every aggregate.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import BackendError
from app.models import db
from app.models.problem_statement import (
    IN_REVIEW_STATUSES,
    SUBMITTED_STATUSES,
    ProblemStatement,
    ProblemStatementAlert,
)
from app.services.problem_statement_service import ordered, scoped_query
from app.services.record_mapper import map_alert, map_problem_statements

logger = logging.getLogger(__name__)

DEFAULT_DEADLINE_DAYS = 12
REVIEW_WINDOW_DAYS = 14
DASHBOARD_RECENT_LIMIT = 5
DASHBOARD_ALERT_LIMIT = 5
REVIEWS_ALERT_LIMIT = 6

WORKFLOW_STAGES = [
    {
        "step": 1,
        "title": "Drafting",
        "points": [
            "Faculty shares problem ideas offline",
            "Department Admin creates the Problem Statement",
            "Status: Draft, editing is allowed",
        ],
    },
    {
        "step": 2,
        "title": "Department Review",
        "points": [
            "Department Admin reviews details",
            "Checks category, difficulty and faculty owner",
            "Prepares the Problem Statement for submission",
        ],
    },
    {
        "step": 3,
        "title": "Submit to Institution",
        "points": [
            "Department Admin submits the Problem Statement to the Institution",
            "Status: Submitted",
        ],
    },
    {
        "step": 4,
        "title": "Institution Review",
        "points": [
            "Institution Admin reviews the submission",
            "Feedback may be given",
            "Status: Under Review / Revision Required",
        ],
    },
    {
        "step": 5,
        "title": "Revision (If Required)",
        "points": [
            "Department Admin receives feedback",
            "Updates the Problem Statement",
            "Resubmits for review",
        ],
    },
    {
        "step": 6,
        "title": "Approved",
        "points": [
            "Institution approves the Problem Statement",
            "Status: Approved",
            "Problem Statement becomes available for students",
        ],
    },
]


def _utcnow():
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _status_counts(statuses) -> dict:
    statuses = [s or "draft" for s in statuses]
    return {
        "pending_review": sum(1 for s in statuses if s in IN_REVIEW_STATUSES),
        "approved": statuses.count("approved"),
        "revision_needed": statuses.count("revision_needed"),
    }


def department_alerts(actor, limit: int) -> list[dict]:
    """Latest alerts for the actor's department records, plus unlinked alerts."""
    query = (
        ProblemStatementAlert.query
        .outerjoin(ProblemStatement, ProblemStatementAlert.problem_statement_id == ProblemStatement.id)
        .filter(or_(
            ProblemStatementAlert.problem_statement_id.is_(None),
            ProblemStatement.department_id == actor.department_id,
        ))
        .order_by(ProblemStatementAlert.created_at.desc())
        .limit(limit)
    )
    return [map_alert(a.to_row()).to_dict() for a in query.all()]


def get_dashboard(actor, *, deadline_days: int = DEFAULT_DEADLINE_DAYS) -> dict:
    """Metrics, recent records and alerts for the dashboard screen."""
    deadline = _utcnow() + timedelta(days=deadline_days)
    if not actor or not actor.department_id:
        return {
            "metrics": {
                "total_prepared": 0,
                "submitted_to_institution": 0,
                "pending_review": 0,
                "approved": 0,
                "revision_needed": 0,
                "deadline_date": deadline.isoformat(),
            },
            "recent": [],
            "alerts": [],
        }

    try:
        records = map_problem_statements(ps.to_row() for ps in ordered(scoped_query(actor)).all())
        alerts = department_alerts(actor, DASHBOARD_ALERT_LIMIT)
    except SQLAlchemyError as exc:
        logger.warning("Dashboard load failed department=%s error=%s", actor.department_id, exc)
        raise BackendError(str(exc), operation="dashboard") from exc

    statuses = [r.status for r in records]
    metrics = {
        "total_prepared": len(records),
        "submitted_to_institution": sum(1 for s in statuses if s in SUBMITTED_STATUSES),
        **_status_counts(statuses),
        "deadline_date": deadline.isoformat(),
    }
    return {
        "metrics": metrics,
        "recent": [r.to_dict() for r in records[:DASHBOARD_RECENT_LIMIT]],
        "alerts": alerts,
    }


def review_deadline(department_id: str | None, *, window_days: int = REVIEW_WINDOW_DAYS,
                    default_days: int = DEFAULT_DEADLINE_DAYS) -> datetime:
    latest = None
    if department_id:
        latest = (
            db.session.query(func.max(ProblemStatement.submitted_at))
            .filter(ProblemStatement.department_id == department_id)
            .scalar()
        )
    if latest is None:
        return _utcnow() + timedelta(days=default_days)
    return _as_utc(latest) + timedelta(days=window_days)


def get_reviews(actor, *, window_days: int = REVIEW_WINDOW_DAYS,
                default_days: int = DEFAULT_DEADLINE_DAYS) -> dict:
    """The actor's submitted records and where they stand in institution review."""
    if not actor or not actor.department_id:
        deadline = _utcnow() + timedelta(days=default_days)
        return {"problem_statements": [], "counts": _status_counts([]), "alerts": [],
                "deadline_date": deadline.isoformat(), "days_until_deadline": default_days}

    try:
        query = scoped_query(actor).filter(
            ProblemStatement.created_by == actor.id,
            ProblemStatement.status.isnot(None),
            ProblemStatement.status != "draft",
        )
        records = map_problem_statements(ps.to_row() for ps in ordered(query).all())
        alerts = department_alerts(actor, REVIEWS_ALERT_LIMIT)
        deadline = review_deadline(actor.department_id, window_days=window_days, default_days=default_days)
    except SQLAlchemyError as exc:
        logger.warning("Reviews load failed department=%s error=%s", actor.department_id, exc)
        raise BackendError(str(exc), operation="reviews") from exc

    return {
        "problem_statements": [r.to_dict() for r in records],
        "counts": _status_counts([r.status for r in records]),
        "alerts": alerts,
        "deadline_date": deadline.isoformat(),
        "days_until_deadline": (deadline - _utcnow()).days,
    }


def get_workflow_resource() -> dict:
    return {"stages": WORKFLOW_STAGES}
