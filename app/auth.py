"""
Problem Statement Portal
Session authentication middleware.

Provides:
    - Session lookup: Flask's signed cookie carries an opaque ``sid``; the
      SessionRegistry maps it to the browser's SessionStore
    - ``g.session_store`` / ``g.current_user`` for every API request
    - ``require_session`` decorator for endpoints outside the default guard
    - CSRF protection for state-changing requests (JSON or multipart only)

Security model:
    - All /api/v1/* endpoints require an authenticated session, except
      /api/v1/auth/login and /api/v1/health/*
    - Checks here are advisory for the UI; row scoping by department and
      creator checks happen in the services
"""

import functools
import logging

from flask import current_app, g, request
from flask import session as cookie_session

from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

SESSION_KEY = "sid"

# Paths that do not need an authenticated session
PUBLIC_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
)

_ALLOWED_WRITE_CONTENT_TYPES = ("application/json", "multipart/form-data")


def get_registry():
    return current_app.extensions["session_registry"]


def load_session_store():
    """Return the SessionStore bound to this request's cookie, or None.

    A cookie whose store is gone (signed out, expired, swept) is dropped.
    """
    sid = cookie_session.get(SESSION_KEY)
    store = get_registry().get(sid)
    if sid and store is None:
        cookie_session.pop(SESSION_KEY, None)
    return store


def bind_session_context() -> None:
    """Populate ``g`` with the request's session store and current user.

    A store that is authenticated but has no user yet (the deferred load has
    not finished) resolves the profile now; concurrent loads coalesce. An
    access token close to expiry is refreshed in the background.
    """
    store = load_session_store()
    g.session_store = store
    g.current_user = None
    if store is None or not store.is_authenticated:
        return
    store.refresh_if_expiring(get_registry().refresh_leeway)
    g.current_user = store.user or store.refresh_profile()


def current_actor():
    return getattr(g, "current_user", None)


def _check_content_type():
    """
    For state-changing requests with a body, require JSON or multipart.
    HTML forms cannot send application/json, and multipart is only accepted
    by the submission upload endpoint's parser.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if request.content_length and not any(t in ct for t in _ALLOWED_WRITE_CONTENT_TYPES):
            return api_error(
                E.VALIDATION_INVALID,
                "Content-Type must be application/json or multipart/form-data",
                status=415,
            )
    return None


def require_session(f):
    """Decorator: refuse with 401 unless the request carries a signed-in session."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "current_user", None) is None:
            bind_session_context()
        if g.current_user is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")
        return f(*args, **kwargs)

    return decorated


def init_auth(app):
    """
    Install the session middleware on the Flask app.

    - Attaches a before_request hook for API routes
    - Skips health checks, login and CORS pre-flight
    """
    @app.before_request
    def _before_request_auth():
        g.session_store = None
        g.current_user = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if path.startswith(PUBLIC_PREFIXES):
            return None

        bind_session_context()
        if g.current_user is None:
            logger.debug("Unauthenticated request path=%s", path)
            return api_error(E.UNAUTHENTICATED, "Authentication required")
        return None
