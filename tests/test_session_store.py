"""
Session store tests:
  - request coalescing (one profile resolution per identity at a time)
  - session-change reactions are deferred off the emitting thread
  - sign-in timeout, and revocation of a session that arrives late
  - fallback to a synthesized user when the profile cannot be resolved
  - sign-out clears local state first, revokes remotely in the background
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
from flask import has_app_context

from app.integrations.identity_gateway import AuthIdentity, AuthSession
from app.services.profile_service import AppUser, DepartmentInfo
from app.services.session_store import InflightRequests, SessionRegistry, SessionStore, app_context_resolver

IDENTITY = "11111111-1111-1111-1111-111111111111"
EMAIL = "asha@cse.example.edu"
PASSWORD = "correct horse battery staple"


def _auth(identity_id=IDENTITY, email=EMAIL, token="tok-1", expires_at=None):
    return AuthSession(access_token=token, refresh_token="r", expires_at=expires_at,
                       identity=AuthIdentity(id=identity_id, email=email))


def _user(identity_id=IDENTITY):
    return AppUser(id=identity_id, name="asha", email=EMAIL, role="department_admin",
                   department=DepartmentInfo(id="dept-1", name="CSE", institution="DIT"))


def _wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class CountingResolver:
    """Profile resolver that records calls and can be held open."""

    def __init__(self, result=_user, block=False):
        self.result = result
        self.calls = []
        self.threads = []
        self.started = threading.Event()
        self.release = threading.Event()
        if not block:
            self.release.set()

    def __call__(self, identity_id, email):
        self.calls.append(identity_id)
        self.threads.append(threading.get_ident())
        self.started.set()
        self.release.wait(5)
        return self.result(identity_id) if callable(self.result) else self.result


@pytest.fixture()
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=False)


@pytest.fixture()
def make_store(make_identity, executor):
    def _make(resolver, *, inflight=None, delay=None, sign_in_timeout=2):
        gateway = make_identity(delay=delay)
        store = SessionStore(gateway, resolver, inflight=inflight, executor=executor,
                             sign_in_timeout=sign_in_timeout)
        return gateway, store

    return _make


# ═══════════════════════════════════════════════════════════════════════════
# InflightRequests
# ═══════════════════════════════════════════════════════════════════════════


class TestInflightRequests:
    def test_concurrent_callers_share_one_execution(self):
        inflight = InflightRequests()
        resolver = CountingResolver(block=True)
        results = []

        def _call():
            results.append(inflight.run(IDENTITY, resolver, IDENTITY, EMAIL))

        first = threading.Thread(target=_call)
        first.start()
        assert resolver.started.wait(2)
        assert inflight.in_flight(IDENTITY)

        second = threading.Thread(target=_call)
        second.start()
        time.sleep(0.1)
        resolver.release.set()
        first.join(2)
        second.join(2)

        assert len(resolver.calls) == 1
        assert len(results) == 2
        assert results[0] is results[1]
        assert not inflight.in_flight(IDENTITY)

    def test_key_cleared_after_failure(self):
        inflight = InflightRequests()

        def _boom():
            raise RuntimeError("backend down")

        with pytest.raises(RuntimeError):
            inflight.run("k", _boom)
        assert not inflight.in_flight("k")
        assert inflight.run("k", lambda: "fresh") == "fresh"

    def test_sequential_calls_run_again(self):
        inflight = InflightRequests()
        resolver = CountingResolver()
        inflight.run(IDENTITY, resolver, IDENTITY, EMAIL)
        inflight.run(IDENTITY, resolver, IDENTITY, EMAIL)
        assert len(resolver.calls) == 2


# ═══════════════════════════════════════════════════════════════════════════
# Session-change reactions
# ═══════════════════════════════════════════════════════════════════════════


class TestSessionChange:
    def test_profile_load_is_deferred(self, make_store):
        resolver = CountingResolver(block=True)
        gateway, store = make_store(resolver)

        gateway.set_session(_auth())

        # the event only recorded the session; resolution runs on a worker
        assert store.is_authenticated
        assert store.user is None
        assert resolver.started.wait(2)
        assert resolver.threads[0] != threading.get_ident()

        resolver.release.set()
        user = store.wait_for_profile(timeout=2)
        assert user.id == IDENTITY
        assert user.department.name == "CSE"

    def test_stores_sharing_a_coalescer_resolve_once(self, make_store):
        inflight = InflightRequests()
        resolver = CountingResolver(block=True)
        gateway_a, store_a = make_store(resolver, inflight=inflight)
        gateway_b, store_b = make_store(resolver, inflight=inflight)

        gateway_a.set_session(_auth(token="a"))
        assert resolver.started.wait(2)
        gateway_b.set_session(_auth(token="b"))
        time.sleep(0.1)
        resolver.release.set()

        assert store_a.wait_for_profile(timeout=2).id == IDENTITY
        assert store_b.wait_for_profile(timeout=2).id == IDENTITY
        assert len(resolver.calls) == 1

    def test_token_refresh_keeps_loaded_user(self, make_store):
        resolver = CountingResolver()
        gateway, store = make_store(resolver)
        gateway.set_session(_auth())
        store.wait_for_profile(timeout=2)

        store._on_session_change("TOKEN_REFRESHED", _auth(token="tok-2"))
        store.wait_idle(2)

        assert store.access_token == "tok-2"
        assert len(resolver.calls) == 1

    def test_remote_sign_out_event_clears_state(self, make_store):
        gateway, store = make_store(CountingResolver())
        gateway.set_session(_auth())
        store.wait_for_profile(timeout=2)

        gateway.sign_out()

        assert not store.is_authenticated
        assert store.user is None


# ═══════════════════════════════════════════════════════════════════════════
# Profile fallback
# ═══════════════════════════════════════════════════════════════════════════


class TestProfileFallback:
    def test_unresolvable_profile_gives_minimal_user(self, make_store):
        gateway, store = make_store(CountingResolver(result=None))
        gateway.set_session(_auth())

        user = store.wait_for_profile(timeout=2)

        assert user.id == IDENTITY
        assert user.name == "asha"
        assert user.role == "department_admin"
        assert user.department.name == "Department"
        assert user.department.institution == "Institution"
        assert user.department_id is None

    def test_resolver_exception_gives_minimal_user(self, make_store):
        def _raises(identity_id, email):
            raise RuntimeError("connection reset")

        gateway, store = make_store(_raises)
        gateway.set_session(_auth())
        assert store.wait_for_profile(timeout=2).name == "asha"

    def test_refresh_profile_signed_out(self, make_store):
        _, store = make_store(CountingResolver())
        assert store.refresh_profile() is None

    def test_refresh_profile_reloads(self, make_store):
        resolver = CountingResolver()
        gateway, store = make_store(resolver)
        gateway.set_session(_auth())
        store.wait_for_profile(timeout=2)

        store.refresh_profile()

        assert len(resolver.calls) == 2


# ═══════════════════════════════════════════════════════════════════════════
# Sign in / out
# ═══════════════════════════════════════════════════════════════════════════


class TestSignIn:
    def test_sign_in_success(self, make_store):
        _, store = make_store(CountingResolver())
        assert store.sign_in(EMAIL, PASSWORD) is True
        assert store.wait_for_profile(timeout=2).id == IDENTITY

    def test_bad_credentials(self, make_store):
        _, store = make_store(CountingResolver())
        assert store.sign_in(EMAIL, "wrong") is False
        assert not store.is_authenticated

    def test_timeout_then_late_session_is_revoked(self, make_store):
        slow = threading.Event()
        resolver = CountingResolver()
        gateway, store = make_store(resolver, delay=lambda: slow.wait(5), sign_in_timeout=0.1)

        assert store.sign_in(EMAIL, PASSWORD) is False
        assert not store.is_authenticated

        slow.set()
        assert _wait_until(lambda: len(gateway.revoked) == 1)
        assert gateway.revoked[0].startswith("token-")
        assert not store.is_authenticated
        assert gateway.get_session() is None
        assert resolver.calls == []

    def test_sign_out_clears_then_revokes(self, make_store):
        gateway, store = make_store(CountingResolver())
        store.sign_in(EMAIL, PASSWORD)
        store.wait_for_profile(timeout=2)
        token = store.access_token

        store.sign_out()

        assert not store.is_authenticated
        assert store.user is None
        assert store.wait_idle(2)
        assert gateway.revoked == [token]


# ═══════════════════════════════════════════════════════════════════════════
# Token refresh
# ═══════════════════════════════════════════════════════════════════════════


class TestTokenRefresh:
    def test_expiring_token_refreshed_in_background(self, make_store):
        resolver = CountingResolver()
        gateway, store = make_store(resolver)
        gateway.set_session(_auth(expires_at=time.time() + 30))
        store.wait_for_profile(timeout=2)

        future = store.refresh_if_expiring(leeway=300)
        future.result(2)
        store.wait_idle(2)

        assert gateway.refreshes == ["r"]
        assert store.access_token.startswith("token-")
        assert store.user.id == IDENTITY
        assert len(resolver.calls) == 1
        assert store.refresh_if_expiring(leeway=300) is None

    def test_fresh_token_left_alone(self, make_store):
        gateway, store = make_store(CountingResolver())
        gateway.set_session(_auth(expires_at=time.time() + 3600))
        assert store.refresh_if_expiring(leeway=300) is None
        assert store.refresh_if_expiring(leeway=300) is None
        assert gateway.refreshes == []

    def test_unknown_expiry_never_refreshed(self, make_store):
        gateway, store = make_store(CountingResolver())
        gateway.set_session(_auth())
        assert store.refresh_if_expiring(leeway=300) is None

    def test_late_refresh_does_not_revive_signed_out_store(self, make_store):
        gateway, store = make_store(CountingResolver())
        gateway.set_session(_auth())
        store.wait_for_profile(timeout=2)
        store.sign_out()

        store._on_session_change("TOKEN_REFRESHED", _auth(token="tok-2"))

        assert not store.is_authenticated
        assert store.user is None

    def test_expired_store(self, make_store):
        gateway, store = make_store(CountingResolver())
        assert not store.is_expired()
        gateway.set_session(_auth(expires_at=time.time() - 1))
        assert store.is_expired()


# ═══════════════════════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════════════════════


class TestSessionRegistry:
    def test_create_get_discard(self, make_identity, executor):
        registry = SessionRegistry()
        registry.executor = executor
        registry.identity_factory = make_identity
        registry.resolve_profile = CountingResolver()

        sid, store = registry.create()

        assert registry.get(sid) is store
        assert len(registry) == 1
        registry.discard(sid)
        assert registry.get(sid) is None
        assert len(registry) == 0

    def test_unknown_sid(self):
        registry = SessionRegistry()
        assert registry.get(None) is None
        assert registry.get("nope") is None

    def test_installed_on_app(self, app):
        registry = app.extensions["session_registry"]
        assert isinstance(registry, SessionRegistry)
        assert registry.sign_in_timeout == app.config["SIGN_IN_TIMEOUT_SECONDS"]

    def test_app_context_resolver_pushes_context(self, app):
        wrapped = app_context_resolver(app, resolve=lambda identity_id, email: has_app_context())
        with ThreadPoolExecutor(max_workers=1) as pool:
            assert pool.submit(wrapped, IDENTITY, EMAIL).result(2) is True

    def _registry(self, make_identity, executor, clock):
        registry = SessionRegistry(clock=clock)
        registry.executor = executor
        registry.identity_factory = make_identity
        registry.resolve_profile = CountingResolver()
        return registry

    def test_expired_store_evicted_on_lookup(self, make_identity, executor):
        registry = self._registry(make_identity, executor, time.monotonic)
        sid, store = registry.create()
        store.identity.set_session(_auth(expires_at=time.time() - 1))

        assert registry.get(sid) is None
        assert len(registry) == 0

    def test_idle_stores_swept_on_new_session(self, make_identity, executor):
        now = [1000.0]
        registry = self._registry(make_identity, executor, lambda: now[0])
        registry.idle_timeout = 60
        kept, _ = registry.create()
        idle = [registry.create()[0] for _ in range(4)]

        now[0] += 40
        registry.get(kept)
        now[0] += 40
        newest, _ = registry.create()

        assert len(registry) == 2
        assert registry.get(kept) is not None
        assert registry.get(newest) is not None
        assert all(registry.get(sid) is None for sid in idle)

    def test_sweep_reports_removed(self, make_identity, executor):
        now = [0.0]
        registry = self._registry(make_identity, executor, lambda: now[0])
        registry.idle_timeout = 10
        registry.create()
        assert registry.sweep() == 0
        now[0] = 11
        assert registry.sweep() == 1
        assert len(registry) == 0

    def test_installed_with_expiry_settings(self, app):
        registry = app.extensions["session_registry"]
        assert registry.idle_timeout == app.config["SESSION_IDLE_TIMEOUT_SECONDS"]
        assert registry.refresh_leeway == app.config["TOKEN_REFRESH_LEEWAY_SECONDS"]
