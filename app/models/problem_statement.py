"""
Problem Statement Portal
Problem Statement domain models.

Models:
    - ProblemStatement: the work item proposed by a department
    - ProblemStatementAttachment: supporting document stored in object storage
    - ProblemStatementMessage: department <-> institution message
    - ProblemStatementReview: reviewer verdict row (written by the institution side)
    - ProblemStatementAlert: read-only notification shown on dashboards

Lifecycle:
    draft -> pending_review -> approved | revision_needed
    revision_needed -> pending_review            (resubmission loop)
    draft | revision_needed -> submitted         (batch submission)
``submitted`` is the batch-submission alias of ``pending_review``.
"""

import uuid
from datetime import datetime, timezone

from app.models import db

__all__ = [
    "PS_STATUSES",
    "PS_STATUS_GRAPH",
    "PS_TRANSITIONS",
    "IN_REVIEW_STATUSES",
    "SUBMITTED_STATUSES",
    "ALERT_TYPES",
    "ALERT_PRIORITIES",
    "ProblemStatement",
    "ProblemStatementAttachment",
    "ProblemStatementMessage",
    "ProblemStatementReview",
    "ProblemStatementAlert",
]


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Status constants ─────────────────────────────────────────────────────────

PS_STATUSES = ("draft", "pending_review", "submitted", "approved", "revision_needed")

# Every status change written by this application must follow an edge here.
# approved is terminal; there is no edge out of it.
PS_STATUS_GRAPH = {
    "draft":           ["pending_review", "submitted"],
    "pending_review":  ["approved", "revision_needed"],
    "submitted":       ["approved", "revision_needed"],
    "revision_needed": ["pending_review", "submitted"],
    "approved":        [],
}

# Actor-initiated actions. "to": None means the status is left unchanged
# (edit) or the record is removed (delete).
PS_TRANSITIONS = {
    "submit":   {"from": ["draft", "revision_needed"], "to": "submitted"},
    "resubmit": {"from": ["revision_needed"], "to": "pending_review"},
    "edit":     {"from": ["draft", "revision_needed", "pending_review", "submitted"], "to": None},
    "delete":   {"from": ["revision_needed"], "to": None},
}

# pending_review and its legacy alias count together in aggregates
IN_REVIEW_STATUSES = ("pending_review", "submitted")
SUBMITTED_STATUSES = ("submitted", "pending_review", "approved", "revision_needed")

ALERT_TYPES = ("overdue", "reminder", "message", "approval")
ALERT_PRIORITIES = ("high", "medium", "low")


class ProblemStatement(db.Model):
    """
    A Problem Statement record.

    ``problem_statement_id`` holds the human-readable code (PS-2026-1234);
    ``id`` is the opaque persisted id.
    """

    __tablename__ = "problem_statements"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    problem_statement_id = db.Column(db.String(30), nullable=False, unique=True, index=True)

    title = db.Column(db.String(500), nullable=False)
    category = db.Column(db.String(100), nullable=False, default="")
    theme = db.Column(db.String(255), nullable=False, default="")
    description = db.Column(db.Text, nullable=False, default="")
    detailed_description = db.Column(db.Text, nullable=True)

    # Ownership
    department = db.Column(db.String(255), nullable=True, comment="Department name at creation time")
    department_id = db.Column(
        db.String(36), db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_by = db.Column(db.String(36), nullable=True, index=True)

    # Assignment
    faculty_owner = db.Column(db.String(255), nullable=True)
    assigned_spoc = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(30), nullable=True, default="draft", index=True)
    submission_batch_id = db.Column(
        db.String(36), db.ForeignKey("submission_batches.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_updated = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_row(self):
        """Raw persisted shape consumed by the record mapper."""
        return {
            "id": self.id,
            "problem_statement_id": self.problem_statement_id,
            "title": self.title,
            "category": self.category,
            "theme": self.theme,
            "status": self.status,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "faculty_owner": self.faculty_owner,
            "assigned_spoc": self.assigned_spoc,
            "description": self.description,
            "detailed_description": self.detailed_description,
            "created_by": self.created_by,
            "department_id": self.department_id,
            "submission_batch_id": self.submission_batch_id,
        }

    def __repr__(self):
        return f"<ProblemStatement {self.problem_statement_id}: {self.status}>"


class ProblemStatementAttachment(db.Model):
    __tablename__ = "problem_statement_attachments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    problem_statement_id = db.Column(
        db.String(36), db.ForeignKey("problem_statements.id"), nullable=False, index=True,
    )
    uploaded_by = db.Column(db.String(36), nullable=True)
    file_name = db.Column(db.String(255), nullable=False)
    object_path = db.Column(db.String(1000), nullable=False)
    mime_type = db.Column(db.String(150), nullable=True)
    file_size = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "problem_statement_id": self.problem_statement_id,
            "uploaded_by": self.uploaded_by,
            "file_name": self.file_name,
            "object_path": self.object_path,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ProblemStatementMessage(db.Model):
    """One message in the thread attached to a problem statement."""

    __tablename__ = "problem_statement_messages"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    problem_statement_id = db.Column(
        db.String(36), db.ForeignKey("problem_statements.id"), nullable=False, index=True,
    )
    sender_id = db.Column(db.String(36), nullable=True)
    sender_role = db.Column(db.String(50), nullable=True)
    recipient_role = db.Column(db.String(50), nullable=True, index=True)
    content = db.Column(db.Text, nullable=False)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    problem_statement = db.relationship("ProblemStatement", lazy="joined")

    def to_row(self):
        ps = self.problem_statement
        return {
            "id": self.id,
            "problem_statement_id": self.problem_statement_id,
            "sender_id": self.sender_id,
            "sender_role": self.sender_role,
            "recipient_role": self.recipient_role,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "is_read": bool(self.is_read),
            "problem_statements": {
                "title": ps.title,
                "problem_statement_id": ps.problem_statement_id,
            } if ps else None,
        }


class ProblemStatementReview(db.Model):
    __tablename__ = "problem_statement_reviews"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    problem_statement_id = db.Column(
        db.String(36), db.ForeignKey("problem_statements.id"), nullable=False, index=True,
    )
    reviewer_id = db.Column(db.String(36), nullable=True)
    decision = db.Column(db.String(30), nullable=True, comment="approved / revision_needed")
    comments = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)


class ProblemStatementAlert(db.Model):
    """Informational alert; has no workflow effect."""

    __tablename__ = "problem_statement_alerts"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    problem_statement_id = db.Column(
        db.String(36), db.ForeignKey("problem_statements.id"), nullable=True, index=True,
    )
    type = db.Column(db.String(20), nullable=False, default="reminder")
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    priority = db.Column(db.String(10), nullable=False, default="medium")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_row(self):
        return {
            "id": self.id,
            "problem_statement_id": self.problem_statement_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
