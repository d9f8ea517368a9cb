"""
Startup diagnostics — runs once when the Flask app starts.

Checks the hosted backend settings and the database, then logs a summary
banner. Missing backend settings are logged as errors; the app still starts
and later identity / storage calls fail with the backend's message.
"""

import logging
import sys

from flask import Flask

from app.models import db

logger = logging.getLogger(__name__)

REQUIRED_BACKEND_SETTINGS = ("BACKEND_URL", "BACKEND_PUBLIC_KEY")


def check_backend_config(app: Flask) -> list[str]:
    """Log an error for every missing backend setting; return their names."""
    missing = [name for name in REQUIRED_BACKEND_SETTINGS if not app.config.get(name)]
    for name in missing:
        logger.error("%s is not set; sign-in and document uploads will fail until it is configured", name)
    return missing


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    missing = check_backend_config(app)
    if app.config.get("TESTING"):
        return  # skip the banner during tests for speed

    issues: list[str] = [f"{name} not configured" for name in missing]

    with app.app_context():
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        # ── Database connectivity ────────────────────────────────────
        db_status = "ok"
        db_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
        db_type = "PostgreSQL" if "postgresql" in db_uri else "SQLite" if "sqlite" in db_uri else "unknown"
        try:
            db.session.execute(db.text("SELECT 1"))
        except Exception as exc:
            db_status = "FAILED"
            issues.append(f"Database unreachable: {exc}")

        # ── Table count ──────────────────────────────────────────────
        try:
            from sqlalchemy import inspect as sa_inspect
            table_count = len(sa_inspect(db.engine).get_table_names())
            if table_count == 0:
                issues.append("No tables found — run 'flask db upgrade'")
        except Exception:
            table_count = "?"

        backend = app.config.get("BACKEND_URL") or "NOT SET"

        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  Problem Statement Portal — Startup Diagnostics             ║
╠══════════════════════════════════════════════════════════════╣
║  Python      : {py:<46s}║
║  Debug       : {str(app.debug):<46s}║
║  Database    : {f'{db_type} ({db_status})':<46s}║
║  Tables      : {str(table_count):<46s}║
║  Backend     : {backend[:46]:<46s}║
║  Bucket      : {app.config.get('STORAGE_BUCKET', ''):<46s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("✅ All startup checks passed")
