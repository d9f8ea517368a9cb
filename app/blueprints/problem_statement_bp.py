"""
Problem Statement Blueprint — department-scoped CRUD and workflow actions.

Endpoints:
    GET    /api/v1/problem-statements                 — list (?q=, ?status=, ?limit=, ?offset=)
    POST   /api/v1/problem-statements                 — create (draft, or pending_review with submit=true)
    GET    /api/v1/problem-statements/<id>            — detail + available_actions
    PUT    /api/v1/problem-statements/<id>            — edit
    POST   /api/v1/problem-statements/<id>/resubmit   — revision_needed → pending_review
    DELETE /api/v1/problem-statements/<id>            — delete with dependents

Every mutation is gated by the lifecycle service: creator first, then the
status rule. Refusals map to 403 / 409 without any write.
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.blueprints import paginate_items
from app.services import problem_statement_lifecycle as lifecycle
from app.services import problem_statement_service as svc
from app.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

problem_statement_bp = Blueprint("problem_statement_bp", __name__, url_prefix="/api/v1")
register_error_handlers(problem_statement_bp)


@problem_statement_bp.route("/problem-statements", methods=["GET"])
def list_problem_statements():
    items = svc.list_problem_statements(
        g.current_user,
        q=request.args.get("q"),
        status=request.args.get("status"),
    )
    page, total = paginate_items(items)
    return jsonify({"items": page, "total": total}), 200


@problem_statement_bp.route("/problem-statements", methods=["POST"])
def create_problem_statement():
    data = request.get_json(silent=True) or {}
    view = lifecycle.create_problem_statement(g.current_user, data)
    return jsonify(view.to_dict()), 201


@problem_statement_bp.route("/problem-statements/<ps_id>", methods=["GET"])
def get_problem_statement(ps_id):
    return jsonify(svc.get_problem_statement(g.current_user, ps_id)), 200


@problem_statement_bp.route("/problem-statements/<ps_id>", methods=["PUT"])
def update_problem_statement(ps_id):
    data = request.get_json(silent=True) or {}
    view = lifecycle.update_problem_statement(g.current_user, ps_id, data)
    return jsonify(view.to_dict()), 200


@problem_statement_bp.route("/problem-statements/<ps_id>/resubmit", methods=["POST"])
def resubmit_problem_statement(ps_id):
    view = lifecycle.resubmit_problem_statement(g.current_user, ps_id)
    return jsonify(view.to_dict()), 200


@problem_statement_bp.route("/problem-statements/<ps_id>", methods=["DELETE"])
def delete_problem_statement(ps_id):
    return jsonify(lifecycle.delete_problem_statement(g.current_user, ps_id)), 200
