"""
Shared pytest fixtures for the Problem Statement Portal test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - department / other_department: Pre-created Department entities
    - actor / other_actor / outsider: AppUsers (same dept, same dept, other dept)
    - make_ps: factory for ProblemStatement rows
    - identity_users: fake identity provider accounts used by auth_client
    - make_identity: factory for FakeIdentityGateway instances
    - auth_client: test client signed in as ``actor``
    - storage: MagicMock StorageGateway installed on the app
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from app import create_app
from app.integrations.identity_gateway import AuthIdentity, AuthSession, IdentityError, IdentityGateway
from app.models import db as _db
from app.models.organization import Department, Institution, Profile
from app.models.problem_statement import ProblemStatement
from app.services.profile_service import AppUser, DepartmentInfo

ACTOR_ID = "11111111-1111-1111-1111-111111111111"
OTHER_ACTOR_ID = "22222222-2222-2222-2222-222222222222"
OUTSIDER_ID = "33333333-3333-3333-3333-333333333333"
ACTOR_EMAIL = "asha@cse.example.edu"
ACTOR_PASSWORD = "correct horse battery staple"


class FakeIdentityGateway(IdentityGateway):
    """IdentityGateway whose provider calls are answered from a dict of accounts."""

    def __init__(self, accounts, *, delay=None):
        super().__init__("https://backend.test", "test-public-key", session=MagicMock())
        self.accounts = accounts
        self.delay = delay
        self.revoked = []
        self.refreshes = []

    def sign_in_with_password(self, email, password):
        if self.delay is not None:
            self.delay()
        account = self.accounts.get(email)
        if account is None or account["password"] != password:
            raise IdentityError("Invalid login credentials", status_code=400)
        return AuthSession(
            access_token=f"token-{uuid.uuid4().hex}",
            refresh_token="refresh",
            expires_at=None,
            identity=AuthIdentity(id=account["id"], email=email),
        )

    def _request(self, method, path, **kwargs):
        if path == "/logout":
            self.revoked.append(kwargs.get("access_token"))
        if path == "/token" and (kwargs.get("params") or {}).get("grant_type") == "refresh_token":
            self.refreshes.append(kwargs["json_body"]["refresh_token"])
            identity = self.get_session().identity
            return {
                "access_token": f"token-{uuid.uuid4().hex}",
                "refresh_token": "refresh",
                "expires_in": 3600,
                "user": {"id": identity.id, "email": identity.email},
            }
        return {}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Organisation fixtures ────────────────────────────────────────────────


def _department(name, institution_name="Demo Institute of Technology"):
    inst = Institution(name=institution_name)
    _db.session.add(inst)
    _db.session.flush()
    dept = Department(name=name, head="Dr. A. Rao", institution_id=inst.id)
    _db.session.add(dept)
    _db.session.commit()
    return dept


def _profile(identity_id, email, dept):
    profile = Profile(
        id=identity_id,
        email=email,
        name=email.split("@")[0],
        role="department_admin",
        department_id=dept.id if dept else None,
    )
    _db.session.add(profile)
    _db.session.commit()
    return profile


def _app_user(identity_id, email, dept):
    return AppUser(
        id=identity_id,
        name=email.split("@")[0],
        email=email,
        role="department_admin",
        department=DepartmentInfo(id=dept.id, name=dept.name, institution="Demo Institute of Technology"),
    )


@pytest.fixture()
def department():
    return _department("Computer Science and Engineering")


@pytest.fixture()
def other_department():
    return _department("Mechanical Engineering", institution_name="Other Institute")


@pytest.fixture()
def actor(department):
    _profile(ACTOR_ID, ACTOR_EMAIL, department)
    return _app_user(ACTOR_ID, ACTOR_EMAIL, department)


@pytest.fixture()
def other_actor(department):
    """Same department as ``actor``, but not the creator of actor's records."""
    _profile(OTHER_ACTOR_ID, "ravi@cse.example.edu", department)
    return _app_user(OTHER_ACTOR_ID, "ravi@cse.example.edu", department)


@pytest.fixture()
def outsider(other_department):
    _profile(OUTSIDER_ID, "meera@mech.example.edu", other_department)
    return _app_user(OUTSIDER_ID, "meera@mech.example.edu", other_department)


@pytest.fixture()
def make_ps():
    """Factory: make_ps(owner, status="draft", **fields) -> ProblemStatement."""
    counter = {"n": 0}

    def _make(owner, status="draft", **fields):
        counter["n"] += 1
        now = datetime.now(timezone.utc)
        values = {
            "problem_statement_id": f"PS-{now.year}-{1000 + counter['n']}",
            "title": f"Problem statement {counter['n']}",
            "category": "Software",
            "theme": "Education",
            "description": "Description",
            "department": owner.department.name,
            "department_id": owner.department_id,
            "created_by": owner.id,
            "status": status,
            "created_at": now - timedelta(minutes=10 - counter["n"]),
            "last_updated": now - timedelta(minutes=10 - counter["n"]),
        }
        values.update(fields)
        ps = ProblemStatement(**values)
        _db.session.add(ps)
        _db.session.commit()
        return ps

    return _make


# ── Hosted backend fakes ─────────────────────────────────────────────────


@pytest.fixture()
def identity_users():
    return {ACTOR_EMAIL: {"password": ACTOR_PASSWORD, "id": ACTOR_ID}}


@pytest.fixture()
def make_identity(identity_users):
    """Factory: make_identity(delay=None) -> FakeIdentityGateway over identity_users."""

    def _make(delay=None):
        return FakeIdentityGateway(identity_users, delay=delay)

    return _make


@pytest.fixture()
def fake_identity(app, identity_users):
    """Route every new session through FakeIdentityGateway."""
    registry = app.extensions["session_registry"]
    created = []

    def _factory():
        gateway = FakeIdentityGateway(identity_users)
        created.append(gateway)
        return gateway

    original = registry.identity_factory
    registry.identity_factory = _factory
    yield created
    registry.identity_factory = original


@pytest.fixture()
def auth_client(client, actor, fake_identity):
    """Test client holding a signed-in session for ``actor``."""
    res = client.post("/api/v1/auth/login", json={"email": ACTOR_EMAIL, "password": ACTOR_PASSWORD})
    assert res.status_code == 200, res.get_json()
    return client


@pytest.fixture()
def storage(app):
    """Replace the storage gateway with a MagicMock for the test."""
    mock = MagicMock()
    mock.upload.side_effect = lambda path, content, **kw: path
    original = app.extensions["storage_gateway"]
    app.extensions["storage_gateway"] = mock
    yield mock
    app.extensions["storage_gateway"] = original
