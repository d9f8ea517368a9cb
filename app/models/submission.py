"""
Problem Statement Portal
Submission batch models.

A batch groups the problem statements a department submits to the
institution in one operation; SubmissionBatchItem is the membership row.
"""

import uuid
from datetime import datetime, timezone

from app.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class SubmissionBatch(db.Model):
    __tablename__ = "submission_batches"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    department_id = db.Column(
        db.String(36), db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    submitted_by = db.Column(db.String(36), nullable=False)
    status = db.Column(db.String(30), nullable=False, default="submitted")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    items = db.relationship("SubmissionBatchItem", back_populates="batch", lazy="select")

    def to_dict(self):
        return {
            "id": self.id,
            "department_id": self.department_id,
            "submitted_by": self.submitted_by,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "problem_statement_ids": [i.problem_statement_id for i in self.items],
        }


class SubmissionBatchItem(db.Model):
    __tablename__ = "submission_batch_items"

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(
        db.String(36), db.ForeignKey("submission_batches.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    problem_statement_id = db.Column(
        db.String(36), db.ForeignKey("problem_statements.id"), nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    batch = db.relationship("SubmissionBatch", back_populates="items")

    __table_args__ = (
        db.UniqueConstraint("batch_id", "problem_statement_id", name="uq_batch_item"),
    )
