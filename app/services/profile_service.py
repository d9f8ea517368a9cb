"""
Profile resolution — identity id → composed AppUser.

Algorithm (one call per identity, coalesced by the session store):
  1. Fetch the profile row.                      failure → None (fatal)
  2. Absent → insert one (role department_admin,
     name from the email local part), re-fetch.   failure → None (fatal)
  3. Profile references a department → fetch it.  failure → placeholders
  4. Department references an institution → fetch. failure → placeholders
  5. Assemble the AppUser.

Placeholders are "Department" / "Institution"; a failed lookup at steps 3-4
never fails the whole resolution.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from app.models import db
from app.models.organization import DEFAULT_ROLE, Department, Institution, Profile

logger = logging.getLogger(__name__)

DEPARTMENT_PLACEHOLDER = "Department"
INSTITUTION_PLACEHOLDER = "Institution"


@dataclass
class DepartmentInfo:
    name: str = DEPARTMENT_PLACEHOLDER
    institution: str = INSTITUTION_PLACEHOLDER
    id: str | None = None
    faculty_id: str | None = None
    head: str | None = None
    innovation_lab: str | None = None
    location: str | None = None


@dataclass
class AppUser:
    id: str
    name: str
    email: str
    role: str
    department: DepartmentInfo = field(default_factory=DepartmentInfo)
    phone: str | None = None
    avatar: str | None = None

    @property
    def department_id(self) -> str | None:
        return self.department.id

    def to_dict(self) -> dict:
        return asdict(self)


def _name_from_email(email: str | None) -> str:
    return (email or "User").split("@")[0]


def synthesize_user(identity_id: str, email: str | None) -> AppUser:
    """Minimal user used when profile resolution fails during sign-in."""
    return AppUser(
        id=identity_id,
        name=_name_from_email(email),
        email=email or "",
        role=DEFAULT_ROLE,
        department=DepartmentInfo(),
    )


def _fetch_profile(identity_id: str) -> dict | None:
    profile = db.session.get(Profile, identity_id)
    return profile.to_row() if profile else None


def _create_profile(identity_id: str, email: str | None) -> dict | None:
    db.session.add(Profile(
        id=identity_id,
        email=email or "",
        name=_name_from_email(email),
        role=DEFAULT_ROLE,
    ))
    db.session.commit()
    logger.info("Created profile for identity=%s", identity_id)
    return _fetch_profile(identity_id)


def _resolve_department(profile: dict) -> DepartmentInfo:
    info = DepartmentInfo(id=profile.get("department_id"), faculty_id=profile.get("faculty_id"))
    if not profile.get("department_id"):
        return info

    try:
        dept = db.session.get(Department, profile["department_id"])
    except SQLAlchemyError as exc:
        logger.warning("Department lookup failed id=%s: %s", profile["department_id"], exc)
        db.session.rollback()
        return info
    if dept is None:
        return info

    institution_name = INSTITUTION_PLACEHOLDER
    if dept.institution_id:
        try:
            inst = db.session.get(Institution, dept.institution_id)
            if inst and inst.name:
                institution_name = inst.name
        except SQLAlchemyError as exc:
            logger.warning("Institution lookup failed id=%s: %s", dept.institution_id, exc)
            db.session.rollback()

    return DepartmentInfo(
        id=dept.id,
        name=dept.name,
        faculty_id=profile.get("faculty_id"),
        institution=institution_name,
        head=dept.head,
        innovation_lab=dept.innovation_lab,
        location=dept.location,
    )


def resolve_app_user(identity_id: str, email: str | None = None) -> AppUser | None:
    """Resolve an identity into a full AppUser, or None if the profile is unavailable."""
    try:
        profile = _fetch_profile(identity_id)
    except SQLAlchemyError as exc:
        logger.error("Failed to load profile identity=%s: %s", identity_id, exc)
        db.session.rollback()
        return None

    if profile is None:
        try:
            profile = _create_profile(identity_id, email)
        except SQLAlchemyError as exc:
            logger.error("Failed to create profile identity=%s: %s", identity_id, exc)
            db.session.rollback()
            return None
        if profile is None:
            return None

    return AppUser(
        id=profile["id"],
        name=profile.get("name") or "User",
        email=profile.get("email") or email or "",
        role=profile.get("role") or DEFAULT_ROLE,
        department=_resolve_department(profile),
        phone=profile.get("phone"),
        avatar=profile.get("avatar_url"),
    )
