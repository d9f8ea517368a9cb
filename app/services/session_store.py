"""
Session Store — one authenticated identity and its resolved profile.

Pieces:
  - InflightRequests: keyed request coalescer. At most one resolution per
    identity id runs at a time; concurrent callers wait for its result.
  - SessionStore: the state of one browser session (AuthSession + AppUser),
    subscribed to its IdentityGateway's session-change events.
  - SessionRegistry: process-wide map of opaque session id -> SessionStore,
    sharing one coalescer and one worker pool. Lives in app.extensions.

Session-change events are delivered synchronously by the gateway. The
listener only records state; anything touching a backend (profile
resolution, remote sign-out, token refresh) is submitted to the worker pool.

Usage:
    registry = current_app.extensions["session_registry"]
    sid, store = registry.create()
    if store.sign_in(email, password):
        user = store.wait_for_profile()
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from concurrent.futures import wait

from flask import has_app_context

from app.integrations.identity_gateway import (
    SIGNED_OUT,
    TOKEN_REFRESHED,
    AuthSession,
    IdentityError,
    IdentityGateway,
)
from app.services.profile_service import AppUser, resolve_app_user, synthesize_user

logger = logging.getLogger(__name__)

DEFAULT_SIGN_IN_TIMEOUT = 30
DEFAULT_IDLE_TIMEOUT = 8 * 3600
DEFAULT_REFRESH_LEEWAY = 300


class InflightRequests:
    """Collapse concurrent calls with the same key into one execution."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inflight: dict[str, Future] = {}

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._inflight

    def run(self, key: str, fn, *args, **kwargs):
        """Run ``fn`` unless a call for ``key`` is already running; then share its outcome.

        The key is cleared when the call settles, success or failure, so the
        next call after that starts a fresh execution.
        """
        with self._lock:
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future

        if not owner:
            return future.result()

        try:
            result = fn(*args, **kwargs)
        except Exception as exc:
            with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(exc)
            raise
        with self._lock:
            self._inflight.pop(key, None)
        future.set_result(result)
        return result


class SessionStore:
    """State of one authenticated browser session."""

    def __init__(
        self,
        identity: IdentityGateway,
        resolve_profile=resolve_app_user,
        *,
        inflight: InflightRequests | None = None,
        executor: ThreadPoolExecutor | None = None,
        sign_in_timeout: float = DEFAULT_SIGN_IN_TIMEOUT,
    ) -> None:
        self.identity = identity
        self._resolve_profile = resolve_profile
        self._inflight = inflight or InflightRequests()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="session")
        self.sign_in_timeout = sign_in_timeout

        self._lock = threading.RLock()
        self._pending: set[Future] = set()
        self._refreshing: Future | None = None
        self.session: AuthSession | None = identity.get_session()
        self.user: AppUser | None = None
        self._unsubscribe = identity.subscribe(self._on_session_change)

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    @property
    def access_token(self) -> str | None:
        return self.session.access_token if self.session else None

    def is_expired(self, now: float | None = None) -> bool:
        auth = self.session
        return auth is not None and auth.is_expired(now)

    # ── Deferred work ────────────────────────────────────────────────────────

    def _defer(self, fn, *args) -> Future:
        future = self._executor.submit(fn, *args)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._settled)
        return future

    def _settled(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("Deferred session task failed: %s", future.exception())

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until deferred session work has finished. False on timeout."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def wait_for_profile(self, timeout: float | None = None) -> AppUser | None:
        self.wait_idle(timeout)
        return self.user

    # ── Session-change reaction ──────────────────────────────────────────────

    def _on_session_change(self, event: str, auth: AuthSession | None) -> None:
        """Record the new session; defer any profile work to the worker pool."""
        with self._lock:
            if event == SIGNED_OUT or auth is None:
                if self.identity.get_session() is None:
                    self.session = None
                    self.user = None
                return
            if event == TOKEN_REFRESHED and self.session is None:
                # refresh finished after a local sign-out
                return
            self.session = auth
            if event == TOKEN_REFRESHED and self.user is not None:
                return
            if self.user is not None and self.user.id == auth.identity.id:
                return
        logger.debug("Session change event=%s identity=%s", event, auth.identity.id)
        self._defer(self._deferred_profile_load, auth)

    def _deferred_profile_load(self, auth: AuthSession) -> None:
        with self._lock:
            current = self.session
            if current is None or current.identity.id != auth.identity.id:
                return
            if self.user is not None and self.user.id == auth.identity.id:
                return
        self._load_profile(auth)

    # ── Profile ──────────────────────────────────────────────────────────────

    def _resolve_or_synthesize(self, identity_id: str, email: str | None) -> AppUser:
        try:
            user = self._resolve_profile(identity_id, email)
        except Exception:
            logger.exception("Profile resolution raised identity=%s", identity_id)
            user = None
        if user is None:
            logger.warning("Profile unavailable, using minimal user identity=%s", identity_id)
            user = synthesize_user(identity_id, email)
        return user

    def _load_profile(self, auth: AuthSession) -> AppUser:
        identity = auth.identity
        user = self._inflight.run(identity.id, self._resolve_or_synthesize, identity.id, identity.email)
        with self._lock:
            if self.session is not None and self.session.identity.id == identity.id:
                self.user = user
        return user

    def refresh_profile(self) -> AppUser | None:
        """Re-resolve the current identity's profile. None when signed out."""
        auth = self.session
        if auth is None:
            return None
        return self._load_profile(auth)

    # ── Token refresh ────────────────────────────────────────────────────────

    def refresh_if_expiring(self, leeway: float = DEFAULT_REFRESH_LEEWAY) -> Future | None:
        """Schedule a refresh-token exchange when the access token expires within ``leeway``.

        At most one exchange per store is in flight. The new token arrives
        through the TOKEN_REFRESHED event, which keeps the loaded profile.
        """
        with self._lock:
            auth = self.session
            if auth is None or not auth.refresh_token or not auth.expires_within(leeway):
                return None
            if self._refreshing is None:
                self._refreshing = self._defer(self._refresh_token)
            return self._refreshing

    def _refresh_token(self) -> None:
        try:
            self.identity.refresh_session()
        except IdentityError as exc:
            logger.warning("Token refresh failed: %s", exc)
        finally:
            with self._lock:
                self._refreshing = None

    # ── Sign in / out ────────────────────────────────────────────────────────

    def sign_in(self, email: str, password: str) -> bool:
        """Exchange credentials, racing the sign-in timeout.

        Bad credentials, backend failures and a timeout all return False.
        A session that arrives after the timeout is revoked, never adopted.
        The profile is loaded by the SIGNED_IN reaction, not here.
        """
        future = self._executor.submit(self.identity.sign_in_with_password, email, password)
        try:
            auth = future.result(timeout=self.sign_in_timeout)
        except FuturesTimeout:
            logger.warning("Sign-in timed out after %ss", self.sign_in_timeout)
            future.add_done_callback(self._revoke_late_session)
            return False
        except IdentityError as exc:
            logger.info("Sign-in refused: %s", exc)
            return False

        self.identity.set_session(auth)
        logger.info("Signed in identity=%s", auth.identity.id)
        return True

    def _revoke_late_session(self, future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        auth = future.result()
        logger.info("Revoking session that completed after sign-in timeout identity=%s", auth.identity.id)
        self._remote_sign_out(auth.access_token)

    def _remote_sign_out(self, access_token: str) -> None:
        try:
            self.identity.sign_out(access_token)
        except IdentityError as exc:
            logger.warning("Remote sign-out failed: %s", exc)

    def sign_out(self) -> None:
        """Clear local state now; invalidate the remote session in the background."""
        with self._lock:
            auth = self.session
            self.session = None
            self.user = None
        if auth is not None:
            self._defer(self._remote_sign_out, auth.access_token)

    def close(self) -> None:
        """Detach from the gateway; its HTTP session closes once deferred work settles."""
        self._unsubscribe()
        with self._lock:
            pending = list(self._pending)
        if pending:
            self._executor.submit(_close_after, pending, self.identity)
        else:
            self.identity.close()
        if self._owns_executor:
            self._executor.shutdown(wait=False)


def _close_after(pending: list[Future], identity: IdentityGateway) -> None:
    wait(pending)
    identity.close()


def app_context_resolver(app, resolve=resolve_app_user):
    """Wrap a profile resolver so it runs inside ``app``'s context on worker threads."""

    def _resolve(identity_id: str, email: str | None):
        if has_app_context():
            return resolve(identity_id, email)
        with app.app_context():
            return resolve(identity_id, email)

    return _resolve


class SessionRegistry:
    """Map of opaque session id -> SessionStore for the whole process.

    Stores are evicted when their access token has expired (on lookup) and
    when they sat unused for ``idle_timeout`` seconds (swept on every new
    session). Eviction closes the store and its gateway.
    """

    def __init__(self, app=None, *, clock=time.monotonic) -> None:
        self._lock = threading.Lock()
        self._stores: dict[str, SessionStore] = {}
        self._last_seen: dict[str, float] = {}
        self._clock = clock
        self.inflight = InflightRequests()
        self.executor: ThreadPoolExecutor | None = None
        self.identity_factory = None
        self.resolve_profile = None
        self.sign_in_timeout: float = DEFAULT_SIGN_IN_TIMEOUT
        self.idle_timeout: float = DEFAULT_IDLE_TIMEOUT
        self.refresh_leeway: float = DEFAULT_REFRESH_LEEWAY
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self.executor = ThreadPoolExecutor(
            max_workers=app.config.get("SESSION_WORKERS", 4),
            thread_name_prefix="session",
        )
        self.sign_in_timeout = app.config.get("SIGN_IN_TIMEOUT_SECONDS", DEFAULT_SIGN_IN_TIMEOUT)
        self.idle_timeout = app.config.get("SESSION_IDLE_TIMEOUT_SECONDS", DEFAULT_IDLE_TIMEOUT)
        self.refresh_leeway = app.config.get("TOKEN_REFRESH_LEEWAY_SECONDS", DEFAULT_REFRESH_LEEWAY)
        self.resolve_profile = app_context_resolver(app)
        self.identity_factory = lambda: IdentityGateway(
            app.config.get("BACKEND_URL"),
            app.config.get("BACKEND_PUBLIC_KEY"),
            timeout=app.config.get("BACKEND_TIMEOUT_SECONDS", 30),
        )
        app.extensions["session_registry"] = self

    def get(self, sid: str | None) -> SessionStore | None:
        """Return the live store for ``sid``; an expired one is evicted and None returned."""
        if not sid:
            return None
        with self._lock:
            store = self._stores.get(sid)
            if store is not None:
                self._last_seen[sid] = self._clock()
        if store is None:
            return None
        if store.is_expired():
            logger.info("Evicting session with expired access token identity=%s",
                        store.session.identity.id if store.session else None)
            self.discard(sid)
            return None
        return store

    def create(self) -> tuple[str, SessionStore]:
        self.sweep()
        store = SessionStore(
            self.identity_factory(),
            self.resolve_profile,
            inflight=self.inflight,
            executor=self.executor,
            sign_in_timeout=self.sign_in_timeout,
        )
        sid = secrets.token_urlsafe(32)
        with self._lock:
            self._stores[sid] = store
            self._last_seen[sid] = self._clock()
        return sid, store

    def sweep(self) -> int:
        """Evict idle and expired stores; returns how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [
                sid for sid, store in self._stores.items()
                if now - self._last_seen.get(sid, now) > self.idle_timeout or store.is_expired()
            ]
        for sid in stale:
            self.discard(sid)
        if stale:
            logger.info("Swept %d idle or expired sessions", len(stale))
        return len(stale)

    def discard(self, sid: str | None) -> None:
        with self._lock:
            store = self._stores.pop(sid, None) if sid else None
            self._last_seen.pop(sid, None)
        if store is not None:
            store.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._stores)
