"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — 200 while the process is serving
    GET /api/v1/health/live   — database round-trip, backend settings, session count

The backend is never called from here; only its settings are reported.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _check_database() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _check_backend() -> dict:
    cfg = current_app.config
    if cfg.get("BACKEND_URL") and cfg.get("BACKEND_PUBLIC_KEY"):
        return {"status": "configured"}
    return {"status": "not_configured"}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Dependency status. 503 only when the database is unreachable."""
    registry = current_app.extensions.get("session_registry")
    checks = {
        "database": _check_database(),
        "backend": _check_backend(),
        "storage": {"bucket": current_app.config.get("STORAGE_BUCKET")},
        "sessions": {"active": len(registry) if registry is not None else 0},
    }
    healthy = checks["database"]["status"] == "ok"
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
