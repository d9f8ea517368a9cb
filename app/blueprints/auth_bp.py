"""
Auth Blueprint — session endpoints backed by the hosted identity provider.

Endpoints:
  POST /api/v1/auth/login            — Email + password → session cookie + user
  POST /api/v1/auth/logout           — Clear the session (remote revoke is best-effort)
  GET  /api/v1/auth/me               — Current user profile
  POST /api/v1/auth/refresh-profile  — Re-resolve the profile without signing in again
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request
from flask import session as cookie_session

from app.auth import SESSION_KEY, get_registry
from app.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Sign in with email + password.

    Body: { "email": "...", "password": "..." }

    Bad credentials, an unreachable backend and a sign-in timeout all
    answer 401 with the same message.
    """
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")

    registry = get_registry()
    sid = cookie_session.get(SESSION_KEY)
    store = registry.get(sid)
    created = store is None
    if created:
        sid, store = registry.create()

    if not store.sign_in(email, password):
        if created:
            registry.discard(sid)
        return api_error(E.UNAUTHENTICATED, "Invalid email or password")

    cookie_session[SESSION_KEY] = sid
    user = store.wait_for_profile(timeout=current_app.config.get("SIGN_IN_TIMEOUT_SECONDS"))
    if user is None:
        user = store.refresh_profile()
    return jsonify({"user": user.to_dict() if user else None}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
def logout():
    sid = cookie_session.pop(SESSION_KEY, None)
    store = g.session_store
    if store is not None:
        store.sign_out()
    get_registry().discard(sid)
    return jsonify({"message": "Signed out"}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
def me():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.route("/refresh-profile", methods=["POST"])
def refresh_profile():
    """Re-resolve the profile, e.g. after the department assignment changed."""
    user = g.session_store.refresh_profile()
    g.current_user = user
    return jsonify({"user": user.to_dict() if user else None}), 200
