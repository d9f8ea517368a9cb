"""
Problem Statement Portal
Organisation domain models.

Models:
    - Institution: top-level owner of departments
    - Department: the unit that authors problem statements
    - Profile: application profile of an identity-provider user

The profile id is the identity provider's user id (not generated locally).
"""

import uuid
from datetime import datetime, timezone

from app.models import db

DEFAULT_ROLE = "department_admin"


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class Institution(db.Model):
    __tablename__ = "institutions"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    departments = db.relationship("Department", back_populates="institution", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Institution {self.id}: {self.name}>"


class Department(db.Model):
    """A department inside an institution; owns problem statements."""

    __tablename__ = "departments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(255), nullable=False)
    head = db.Column(db.String(255), nullable=True)
    innovation_lab = db.Column(db.String(255), nullable=True)
    location = db.Column(db.String(255), nullable=True)
    institution_id = db.Column(
        db.String(36), db.ForeignKey("institutions.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    institution = db.relationship("Institution", back_populates="departments")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "head": self.head,
            "innovation_lab": self.innovation_lab,
            "location": self.location,
            "institution_id": self.institution_id,
        }

    def __repr__(self):
        return f"<Department {self.id}: {self.name}>"


class Profile(db.Model):
    """
    Application profile for an authenticated identity.

    Created lazily on first sign-in when the identity has no profile yet.
    """

    __tablename__ = "profiles"

    id = db.Column(db.String(36), primary_key=True, comment="Identity provider user id")
    name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    role = db.Column(db.String(50), nullable=True, default=DEFAULT_ROLE)
    phone = db.Column(db.String(50), nullable=True)
    avatar_url = db.Column(db.String(500), nullable=True)
    faculty_id = db.Column(db.String(100), nullable=True)
    department_id = db.Column(
        db.String(36), db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_row(self):
        """Raw persisted shape, as returned by the profile select."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "phone": self.phone,
            "avatar_url": self.avatar_url,
            "faculty_id": self.faculty_id,
            "department_id": self.department_id,
        }

    def __repr__(self):
        return f"<Profile {self.id}: {self.email}>"
