"""
Batch submission — send a set of problem statements to the institution.

Steps:
  1. choose the records (explicit ids, or every ready record of the actor)
  2. check each is the actor's own and in draft / revision_needed
  3. in ONE transaction: create the batch, flip every record to
     ``submitted`` with the batch id + submitted_at + last_updated, write the
     membership rows
  4. after commit, upload the optional document once per record and record
     an attachment row for each successful upload

Step 4 is best-effort: a failed upload is reported in ``attachment_errors``
and never undoes the submission.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import BackendError, ValidationError
from app.integrations.storage_gateway import StorageError, build_object_path
from app.models import db
from app.models.problem_statement import ProblemStatement, ProblemStatementAttachment
from app.models.submission import SubmissionBatch, SubmissionBatchItem
from app.services.problem_statement_lifecycle import (
    TransitionError,
    ensure_creator,
    get_scoped_problem_statement,
    validate_transition,
)
from app.services.problem_statement_service import ready_query
from app.services.record_mapper import map_problem_statement

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".pdf", ".doc", ".docx", ".xlsx")


@dataclass
class UploadedDocument:
    file_name: str
    content: bytes
    content_type: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class SubmissionResult:
    batch: dict
    problem_statements: list = field(default_factory=list)
    attachments: list = field(default_factory=list)
    attachment_errors: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "batch": self.batch,
            "problem_statements": self.problem_statements,
            "attachments": self.attachments,
            "attachment_errors": self.attachment_errors,
        }


def validate_document(document: UploadedDocument, max_bytes: int) -> None:
    """Reject unsupported types and oversize files before anything is written."""
    name = os.path.basename(document.file_name or "")
    if not name:
        raise ValidationError("Uploaded file has no name", details={"file": "required"})
    if not name.lower().endswith(ALLOWED_EXTENSIONS):
        raise ValidationError(
            f"Unsupported file type: {name}",
            details={"file": f"allowed: {', '.join(ALLOWED_EXTENSIONS)}"},
        )
    if document.size > max_bytes:
        raise ValidationError(
            f"File exceeds {max_bytes // (1024 * 1024)} MB",
            details={"file": "too_large"},
        )
    document.file_name = name


def _select_records(actor, problem_statement_ids) -> list[ProblemStatement]:
    if problem_statement_ids is None:
        records = ready_query(actor).all()
        if not records:
            raise ValidationError("No problem statements are ready for submission")
        return records

    if not isinstance(problem_statement_ids, (list, tuple)) or \
            not all(isinstance(ps_id, str) and ps_id for ps_id in problem_statement_ids):
        raise ValidationError("problem_statement_ids must be a list of ids",
                              details={"problem_statement_ids": "invalid"})
    ids = list(dict.fromkeys(problem_statement_ids))
    if not ids:
        raise ValidationError("Select at least one problem statement",
                              details={"problem_statement_ids": "required"})
    records = [get_scoped_problem_statement(actor, ps_id) for ps_id in ids]
    for ps in records:
        ensure_creator(ps, actor, "submit")
        validation = validate_transition(ps, "submit")
        if not validation["valid"]:
            raise TransitionError(ps.problem_statement_id, "submit", validation["from"], validation["reason"])
    return records


def _attach_document(storage, actor, ps: ProblemStatement, document: UploadedDocument,
                     access_token: str | None) -> dict:
    object_path = build_object_path(actor.id, ps.id, document.file_name)
    storage.upload(object_path, document.content,
                   content_type=document.content_type, access_token=access_token)
    attachment = ProblemStatementAttachment(
        problem_statement_id=ps.id,
        uploaded_by=actor.id,
        file_name=document.file_name,
        object_path=object_path,
        mime_type=document.content_type,
        file_size=document.size,
    )
    db.session.add(attachment)
    db.session.commit()
    return attachment.to_dict()


def submit_batch(
    actor,
    *,
    storage=None,
    access_token: str | None = None,
    document: UploadedDocument | None = None,
    problem_statement_ids=None,
) -> SubmissionResult:
    """Submit records as one batch; see module docstring for the steps."""
    records = _select_records(actor, problem_statement_ids)

    now = datetime.now(timezone.utc)
    try:
        batch = SubmissionBatch(
            department_id=actor.department_id,
            submitted_by=actor.id,
            status="submitted",
            created_at=now,
        )
        db.session.add(batch)
        db.session.flush()

        for ps in records:
            ps.status = "submitted"
            ps.submission_batch_id = batch.id
            ps.submitted_at = now
            ps.last_updated = now
        db.session.flush()

        for ps in records:
            db.session.add(SubmissionBatchItem(batch_id=batch.id, problem_statement_id=ps.id, created_at=now))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Submission failed actor=%s error=%s", actor.id, exc)
        raise BackendError(str(getattr(exc, "orig", None) or exc), operation="submit") from exc

    logger.info("Submitted batch %s with %d problem statement(s)", batch.id, len(records))
    result = SubmissionResult(
        batch=batch.to_dict(),
        problem_statements=[map_problem_statement(ps.to_row()).to_dict() for ps in records],
    )

    if document is None:
        return result
    if storage is None:
        result.attachment_errors = [
            {"problem_statement_id": ps.id, "error": "Storage is not available"} for ps in records
        ]
        return result

    for ps in records:
        try:
            result.attachments.append(_attach_document(storage, actor, ps, document, access_token))
        except StorageError as exc:
            logger.warning("Attachment upload failed ps=%s error=%s", ps.problem_statement_id, exc)
            result.attachment_errors.append({"problem_statement_id": ps.id, "error": str(exc)})
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("Attachment row insert failed ps=%s error=%s", ps.problem_statement_id, exc)
            result.attachment_errors.append({"problem_statement_id": ps.id, "error": str(exc)})
    return result
