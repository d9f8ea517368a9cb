"""
Profile resolution tests — identity id to AppUser, with lazy profile
creation and placeholder department / institution names.
"""

from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from app.models import db
from app.models.organization import Department, Profile
from app.services.profile_service import resolve_app_user, synthesize_user


def test_resolves_department_and_institution(actor):
    user = resolve_app_user(actor.id, actor.email)
    assert user.id == actor.id
    assert user.role == "department_admin"
    assert user.department.name == "Computer Science and Engineering"
    assert user.department.institution == "Demo Institute of Technology"
    assert user.department.head == "Dr. A. Rao"
    assert user.department_id == actor.department_id


def test_missing_profile_is_created():
    user = resolve_app_user("new-identity", "kiran@ece.example.edu")

    assert user.name == "kiran"
    assert user.role == "department_admin"
    assert user.department.name == "Department"
    assert user.department.institution == "Institution"
    profile = db.session.get(Profile, "new-identity")
    assert profile is not None
    assert profile.email == "kiran@ece.example.edu"


def test_department_without_institution_uses_placeholder():
    dept = Department(name="Civil")
    db.session.add(dept)
    db.session.flush()
    db.session.add(Profile(id="p-1", email="c@x", name="c", role="department_admin", department_id=dept.id))
    db.session.commit()

    user = resolve_app_user("p-1", "c@x")

    assert user.department.name == "Civil"
    assert user.department.institution == "Institution"


def test_department_lookup_failure_keeps_user(actor):
    real_get = db.session.get

    def _get(model, ident, *args, **kwargs):
        if model is Department:
            raise OperationalError("SELECT", {}, Exception("relation does not exist"))
        return real_get(model, ident, *args, **kwargs)

    with patch.object(db.session, "get", side_effect=_get):
        user = resolve_app_user(actor.id, actor.email)

    assert user is not None
    assert user.department.name == "Department"
    assert user.department.id == actor.department_id


def test_profile_read_failure_returns_none():
    with patch.object(db.session, "get", side_effect=OperationalError("SELECT", {}, Exception("down"))):
        assert resolve_app_user("anyone", "a@b") is None


def test_synthesize_user():
    user = synthesize_user("id-9", "meera@mech.example.edu")
    assert user.name == "meera"
    assert user.email == "meera@mech.example.edu"
    assert user.role == "department_admin"
    assert user.department.name == "Department"


def test_synthesize_user_without_email():
    assert synthesize_user("id-9", None).name == "User"
