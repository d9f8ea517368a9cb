#!/usr/bin/env python3
"""
Problem Statement Portal — Demo Seed.

Creates one institution with one department, attaches a department admin
profile to an existing identity-provider user, and fills the department
with problem statements in every workflow status, a message thread, a
review verdict and dashboard alerts.

Identities live in the hosted identity provider, so pass the id of a user
that already exists there:

Usage:
    python scripts/seed_demo.py --identity <uuid> --email admin@dept.example
    python scripts/seed_demo.py --identity <uuid> --no-reset
"""

import argparse
import sys
from datetime import datetime, timedelta, timezone

sys.path.insert(0, ".")

from app import create_app
from app.models import db
from app.models.organization import Department, Institution, Profile
from app.models.problem_statement import (
    ProblemStatement,
    ProblemStatementAlert,
    ProblemStatementMessage,
    ProblemStatementReview,
)
from app.services.code_generator import generate_problem_statement_code

_now = datetime.now(timezone.utc)

_DEMO_STATEMENTS = [
    ("Smart irrigation scheduling for campus gardens", "Software", "Agriculture", "draft"),
    ("Low-cost air quality sensor network", "Hardware", "Environment", "pending_review"),
    ("Attendance analytics for large lecture halls", "Software", "Education", "submitted"),
    ("Accessible wayfinding for visually impaired students", "Software", "Accessibility", "approved"),
    ("Energy usage dashboard for hostels", "Software", "Sustainability", "revision_needed"),
]


# ═══════════════════════════════════════════════════════════════════════════
# 1. ORGANISATION
# ═══════════════════════════════════════════════════════════════════════════

def seed_organisation(identity_id, email):
    inst = Institution(name="Demo Institute of Technology")
    db.session.add(inst)
    db.session.flush()

    dept = Department(
        name="Computer Science and Engineering",
        head="Dr. A. Rao",
        innovation_lab="Innovation Lab 2",
        location="Block C, 3rd floor",
        institution_id=inst.id,
    )
    db.session.add(dept)
    db.session.flush()

    profile = db.session.get(Profile, identity_id)
    if profile is None:
        profile = Profile(id=identity_id)
        db.session.add(profile)
    profile.email = email
    profile.name = email.split("@")[0]
    profile.role = "department_admin"
    profile.department_id = dept.id
    db.session.flush()
    return dept, profile


# ═══════════════════════════════════════════════════════════════════════════
# 2. PROBLEM STATEMENTS
# ═══════════════════════════════════════════════════════════════════════════

def seed_problem_statements(dept, profile):
    created = []
    for offset, (title, category, theme, status) in enumerate(_DEMO_STATEMENTS):
        stamp = _now - timedelta(days=len(_DEMO_STATEMENTS) - offset)
        ps = ProblemStatement(
            problem_statement_id=generate_problem_statement_code(),
            title=title,
            category=category,
            theme=theme,
            description=f"{title}, proposed by the {dept.name} department.",
            department=dept.name,
            department_id=dept.id,
            created_by=profile.id,
            status=status,
            submitted_at=stamp if status != "draft" else None,
            last_updated=stamp,
            created_at=stamp,
        )
        db.session.add(ps)
        created.append(ps)
    db.session.flush()
    return created


# ═══════════════════════════════════════════════════════════════════════════
# 3. MESSAGES, REVIEWS, ALERTS
# ═══════════════════════════════════════════════════════════════════════════

def seed_activity(statements):
    needs_revision = next(ps for ps in statements if ps.status == "revision_needed")
    approved = next(ps for ps in statements if ps.status == "approved")

    db.session.add(ProblemStatementReview(
        problem_statement_id=needs_revision.id,
        decision="revision_needed",
        comments="Please quantify the expected energy savings.",
    ))
    db.session.add(ProblemStatementReview(problem_statement_id=approved.id, decision="approved"))

    db.session.add(ProblemStatementMessage(
        problem_statement_id=needs_revision.id,
        sender_role="institution_admin",
        recipient_role="department_admin",
        content="Can you add baseline consumption figures for last semester?",
        created_at=_now - timedelta(hours=6),
    ))

    db.session.add(ProblemStatementAlert(
        problem_statement_id=needs_revision.id,
        type="reminder",
        title="Revision requested",
        description=f"{needs_revision.problem_statement_id} needs changes before resubmission.",
        priority="high",
    ))
    db.session.add(ProblemStatementAlert(
        type="overdue",
        title="Submission window closes soon",
        description="All problem statements must be submitted within 12 days.",
        priority="medium",
    ))


def main():
    parser = argparse.ArgumentParser(description="Problem Statement Portal demo seed")
    parser.add_argument("--identity", required=True, help="Identity provider user id")
    parser.add_argument("--email", default="dept.admin@example.edu")
    parser.add_argument("--no-reset", action="store_true", help="Don't clear existing data")
    args = parser.parse_args()

    app = create_app()
    print(f"  🎯 DB: {app.config['SQLALCHEMY_DATABASE_URI']}\n")

    with app.app_context():
        if not args.no_reset:
            db.drop_all()
            db.create_all()
            print("  ♻️  Database reset complete\n")

        dept, profile = seed_organisation(args.identity, args.email)
        statements = seed_problem_statements(dept, profile)
        seed_activity(statements)
        db.session.commit()

    print(f"  ✅ {len(statements)} problem statements seeded for {args.email}")


if __name__ == "__main__":
    main()
