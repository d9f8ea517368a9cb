"""
Submission Blueprint — batch submission to the institution.

Endpoints:
    GET  /api/v1/submissions/ready  — the actor's draft / revision_needed records
    POST /api/v1/submissions        — submit a batch

POST accepts JSON ``{"problem_statement_ids": [...]}`` or multipart form
data with an optional ``file`` (PDF / DOC / DOCX / XLSX) and repeated
``problem_statement_ids`` fields. Without ids, every ready record is
submitted. Upload failures are returned in ``attachment_errors``; they
never undo the submission.
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from app.services import problem_statement_service as ps_svc
from app.services.submission_service import UploadedDocument, submit_batch, validate_document
from app.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

submission_bp = Blueprint("submission_bp", __name__, url_prefix="/api/v1/submissions")
register_error_handlers(submission_bp)


def _read_request():
    """Return (problem_statement_ids | None, UploadedDocument | None)."""
    if request.mimetype == "multipart/form-data":
        ids = request.form.getlist("problem_statement_ids") or None
        upload = request.files.get("file")
        document = None
        if upload is not None and upload.filename:
            document = UploadedDocument(
                file_name=upload.filename,
                content=upload.read(),
                content_type=upload.mimetype,
            )
        return ids, document

    data = request.get_json(silent=True) or {}
    return data.get("problem_statement_ids"), None


@submission_bp.route("/ready", methods=["GET"])
def ready_for_submission():
    items = ps_svc.list_ready_for_submission(g.current_user)
    return jsonify({"items": items, "total": len(items)}), 200


@submission_bp.route("", methods=["POST"])
def submit():
    ids, document = _read_request()
    if document is not None:
        validate_document(document, current_app.config["MAX_UPLOAD_BYTES"])

    result = submit_batch(
        g.current_user,
        storage=current_app.extensions.get("storage_gateway"),
        access_token=g.session_store.access_token,
        document=document,
        problem_statement_ids=ids,
    )
    return jsonify(result.to_dict()), 201
