"""
Problem Statement Portal
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from app.auth import init_auth
from app.config import config
from app.integrations.storage_gateway import StorageGateway
from app.middleware.diagnostics import run_startup_diagnostics
from app.middleware.logging_config import configure_logging
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.security_headers import init_security_headers
from app.middleware.timing import init_request_timing
from app.models import db
from app.services.session_store import SessionRegistry

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # limits are attached per blueprint in init_rate_limits
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def _init_cors(app):
    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        # The session cookie must cross origins for the SPA
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()],
             supports_credentials=True)
    else:
        CORS(app)


def _init_backend(app):
    """Session registry (identity) and the storage gateway, both in app.extensions."""
    SessionRegistry(app)
    app.extensions["storage_gateway"] = StorageGateway(
        app.config.get("BACKEND_URL"),
        app.config.get("BACKEND_PUBLIC_KEY"),
        app.config["STORAGE_BUCKET"],
        timeout=app.config.get("BACKEND_TIMEOUT_SECONDS", 30),
    )


def _create_tables(app):
    from app.models import organization as _organization_models            # noqa: F401
    from app.models import problem_statement as _problem_statement_models  # noqa: F401
    from app.models import submission as _submission_models                # noqa: F401

    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    with app.app_context():
        if uri.startswith("sqlite:///") and ":memory:" not in uri:
            os.makedirs(app.instance_path, exist_ok=True)
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)


def _register_blueprints(app):
    from app.blueprints.auth_bp import auth_bp
    from app.blueprints.dashboard_bp import dashboard_bp
    from app.blueprints.health_bp import health_bp
    from app.blueprints.message_bp import message_bp
    from app.blueprints.problem_statement_bp import problem_statement_bp
    from app.blueprints.submission_bp import submission_bp

    for bp in (auth_bp, problem_statement_bp, submission_bp, message_bp, dashboard_bp, health_bp):
        app.register_blueprint(bp)


def _register_app_error_handlers(app):
    """JSON bodies for errors raised outside the blueprints' own handlers."""

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        limit_mb = app.config["MAX_UPLOAD_BYTES"] // (1024 * 1024)
        return {"error": f"Request body too large (documents up to {limit_mb} MB)",
                "code": "ERR_VALIDATION_INVALID"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var, then "development".
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # Logging first so every later step can log
    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    _init_cors(app)
    _init_backend(app)

    # before_request order: timing (request id) -> session auth
    init_request_timing(app)
    init_auth(app)
    init_security_headers(app)

    _create_tables(app)
    _register_blueprints(app)
    _register_app_error_handlers(app)

    run_startup_diagnostics(app)
    init_rate_limits(app, limiter)  # needs the registered blueprints

    return app
