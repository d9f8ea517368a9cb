"""
Dashboard, Reviews & Resources Blueprint.

Endpoints:
    GET /api/v1/dashboard           — department metrics, recent records, alerts
    GET /api/v1/reviews             — the actor's records under institution review
    GET /api/v1/resources/workflow  — the workflow stages, for the help screen
"""

from flask import Blueprint, current_app, g, jsonify

from app.services import dashboard_service as svc
from app.utils.errors import register_error_handlers

dashboard_bp = Blueprint("dashboard_bp", __name__, url_prefix="/api/v1")
register_error_handlers(dashboard_bp)


@dashboard_bp.route("/dashboard", methods=["GET"])
def dashboard():
    return jsonify(svc.get_dashboard(
        g.current_user,
        deadline_days=current_app.config["DEFAULT_DEADLINE_DAYS"],
    )), 200


@dashboard_bp.route("/reviews", methods=["GET"])
def reviews():
    return jsonify(svc.get_reviews(
        g.current_user,
        window_days=current_app.config["REVIEW_WINDOW_DAYS"],
        default_days=current_app.config["DEFAULT_DEADLINE_DAYS"],
    )), 200


@dashboard_bp.route("/resources/workflow", methods=["GET"])
def workflow_resource():
    return jsonify(svc.get_workflow_resource()), 200
