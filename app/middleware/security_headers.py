"""
Security headers middleware.

The portal only serves JSON, so the CSP denies everything by default.
API responses carrying session data are marked non-cacheable.

Usage:
    from app.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""

from flask import request

_CSP = "default-src 'none'; frame-ancestors 'none'; base-uri 'none'; form-action 'none'"


def init_security_headers(app):
    """Register after_request handler that injects security headers."""

    @app.after_request
    def _add_security_headers(response):
        response.headers.setdefault("Content-Security-Policy", _CSP)

        if request.path.startswith("/api/v1/") and not request.path.startswith("/api/v1/health"):
            response.headers.setdefault("Cache-Control", "no-store")

        # Prevent MIME-type sniffing
        response.headers.setdefault("X-Content-Type-Options", "nosniff")

        response.headers.setdefault("X-Frame-Options", "DENY")

        # HTTPS enforcement (ignored over HTTP, but ready for production)
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
        )

        response.headers.setdefault("Referrer-Policy", "no-referrer")

        # Remove server identification
        response.headers.pop("Server", None)

        return response
