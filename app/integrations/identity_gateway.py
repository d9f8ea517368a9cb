"""
Hosted identity provider gateway.

All outbound HTTP calls to the auth service go through this class.
Direct `requests` calls in services or blueprints are FORBIDDEN.

Endpoints (GoTrue-compatible REST API under ``{BACKEND_URL}/auth/v1``):
  - POST /token?grant_type=password       credential exchange
  - POST /token?grant_type=refresh_token  token refresh
  - POST /logout                          invalidate the session

Session-change events:
  Subscribers registered with ``subscribe()`` receive
  ``(event, AuthSession | None)`` for SIGNED_IN, TOKEN_REFRESHED and
  SIGNED_OUT. Delivery is synchronous on the thread that caused the event,
  so a subscriber must not call back into the gateway from inside the
  callback; SessionStore defers that work to its executor.

No retries: a failed call raises IdentityError with the backend message.

Testability: pass a mock `session` to IdentityGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

import requests

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30

SIGNED_IN = "SIGNED_IN"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
SIGNED_OUT = "SIGNED_OUT"


class IdentityError(Exception):
    """The identity provider refused or failed a call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class AuthIdentity:
    id: str
    email: str | None = None


@dataclass
class AuthSession:
    access_token: str
    refresh_token: str | None
    expires_at: float | None
    identity: AuthIdentity

    @classmethod
    def from_token_response(cls, data: dict) -> "AuthSession":
        user = data.get("user") or {}
        if not data.get("access_token") or not user.get("id"):
            raise IdentityError("Malformed token response from identity provider")
        expires_in = data.get("expires_in")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=time.time() + expires_in if expires_in else data.get("expires_at"),
            identity=AuthIdentity(id=user["id"], email=user.get("email")),
        )

    def expires_within(self, seconds: float, now: float | None = None) -> bool:
        """True when the access token expires in ``seconds`` or less. Unknown expiry never expires."""
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return self.expires_at - now <= seconds

    def is_expired(self, now: float | None = None) -> bool:
        return self.expires_within(0, now)


SessionListener = Callable[[str, "AuthSession | None"], None]


class IdentityGateway:
    """Identity provider client for one browser session.

    Holds the current AuthSession and the session-change listeners, the way
    a hosted-auth client SDK does. The HTTP ``session`` may be shared.

    Usage:
        gateway = IdentityGateway(base_url, api_key)
        unsubscribe = gateway.subscribe(on_change)
        auth = gateway.sign_in_with_password(email, password)
        gateway.set_session(auth)          # announces SIGNED_IN
    """

    def __init__(
        self,
        base_url: str | None,
        api_key: str | None,
        *,
        session: requests.Session | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.timeout = timeout
        self._session: requests.Session | None = session
        self._owns_session = session is None
        self._current: AuthSession | None = None
        self._listeners: list[SessionListener] = []
        self._lock = threading.Lock()

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def close(self) -> None:
        """Drop listeners and close the HTTP session this gateway created."""
        with self._lock:
            self._listeners.clear()
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    def _headers(self, access_token: str | None = None) -> dict:
        headers = {
            "apikey": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: str | None = None,
        json_body: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        if not self.base_url or not self.api_key:
            raise IdentityError("Identity backend is not configured (BACKEND_URL / BACKEND_PUBLIC_KEY)")

        url = f"{self.base_url}/auth/v1{path}"
        try:
            resp = self.session.request(
                method, url,
                headers=self._headers(access_token),
                json=json_body,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Identity request failed method=%s path=%s error=%s", method, path, exc)
            raise IdentityError(str(exc)[:500]) from exc

        if not resp.ok:
            raise IdentityError(_error_message(resp), status_code=resp.status_code)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}

    # ── Listeners ─────────────────────────────────────────────────────────────

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a session-change listener; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: str, auth: AuthSession | None) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event, auth)
            except Exception:
                logger.exception("Session listener failed event=%s", event)

    # ── Session state ─────────────────────────────────────────────────────────

    def get_session(self) -> AuthSession | None:
        return self._current

    def set_session(self, auth: AuthSession) -> None:
        """Adopt an established session and announce SIGNED_IN."""
        self._current = auth
        self._emit(SIGNED_IN, auth)

    # ── Provider operations ───────────────────────────────────────────────────

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """Exchange credentials for a session. Does not adopt or announce it."""
        data = self._request(
            "POST", "/token",
            params={"grant_type": "password"},
            json_body={"email": email, "password": password},
        )
        return AuthSession.from_token_response(data)

    def refresh_session(self) -> AuthSession:
        """Exchange the refresh token and announce TOKEN_REFRESHED.

        A session signed out while the exchange was in flight is not revived.
        """
        current = self._current
        if current is None or not current.refresh_token:
            raise IdentityError("No session to refresh")
        data = self._request(
            "POST", "/token",
            params={"grant_type": "refresh_token"},
            json_body={"refresh_token": current.refresh_token},
        )
        refreshed = AuthSession.from_token_response(data)
        if self._current is not current:
            raise IdentityError("Session ended during token refresh")
        self._current = refreshed
        self._emit(TOKEN_REFRESHED, refreshed)
        return refreshed

    def sign_out(self, access_token: str | None = None) -> None:
        """Invalidate a session remotely.

        SIGNED_OUT is announced only when the gateway's current session was
        the one signed out; revoking some other token is silent.
        """
        current = self._current
        token = access_token or (current.access_token if current else None)
        cleared = current is not None and (access_token is None or current.access_token == access_token)
        if cleared:
            self._current = None
        try:
            if token:
                self._request("POST", "/logout", access_token=token)
        finally:
            if cleared:
                self._emit(SIGNED_OUT, None)


def _error_message(resp: requests.Response) -> str:
    """Pull the provider's human-readable message out of an error response."""
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}: {resp.text[:500]}"
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {resp.status_code}"
