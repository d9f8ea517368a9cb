"""
Problem Statement Lifecycle Tests — coverage for:
  - create (draft / direct submit, department required)
  - creator-only edit / resubmit / delete, refused before any write
  - status rules per action
  - department scoping (foreign records are "not found")
  - cascade delete, including an aborted cascade
"""

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import CascadeDeleteError, NotFoundError, PermissionDenied, ValidationError
from app.models import db
from app.models.problem_statement import (
    ProblemStatement,
    ProblemStatementAlert,
    ProblemStatementAttachment,
    ProblemStatementMessage,
    ProblemStatementReview,
)
from app.models.submission import SubmissionBatch, SubmissionBatchItem
from app.services import problem_statement_lifecycle as lifecycle
from app.services.problem_statement_lifecycle import TransitionError, get_available_actions, validate_transition
from app.services.profile_service import AppUser, DepartmentInfo


def _reload(ps_id):
    db.session.expire_all()
    return db.session.get(ProblemStatement, ps_id)


# ═══════════════════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_create_draft(self, actor):
        view = lifecycle.create_problem_statement(actor, {"title": "  Smart parking  ", "category": "Software"})
        assert view.status == "draft"
        assert view.title == "Smart parking"
        assert view.created_by == actor.id
        assert view.department_id == actor.department_id
        assert view.submitted_at is None
        assert view.ps_code.startswith("PS-")

    def test_create_and_submit(self, actor):
        view = lifecycle.create_problem_statement(actor, {"title": "Smart parking", "submit": True})
        assert view.status == "pending_review"
        assert view.submitted_at is not None

    def test_department_name_is_recorded(self, actor):
        view = lifecycle.create_problem_statement(actor, {"title": "Smart parking"})
        ps = db.session.get(ProblemStatement, view.id)
        assert ps.department == actor.department.name

    def test_title_required(self, actor):
        with pytest.raises(ValidationError):
            lifecycle.create_problem_statement(actor, {"title": "   "})
        assert ProblemStatement.query.count() == 0

    def test_no_department_refused(self):
        user = AppUser(id="u-1", name="x", email="x@y", role="department_admin", department=DepartmentInfo())
        with pytest.raises(PermissionDenied):
            lifecycle.create_problem_statement(user, {"title": "Anything"})
        assert ProblemStatement.query.count() == 0


# ═══════════════════════════════════════════════════════════════════════════
# Transition rules
# ═══════════════════════════════════════════════════════════════════════════


class TestTransitionRules:
    @pytest.mark.parametrize("status,action,valid", [
        ("draft", "submit", True),
        ("revision_needed", "submit", True),
        ("pending_review", "submit", False),
        ("approved", "submit", False),
        ("revision_needed", "resubmit", True),
        ("pending_review", "resubmit", False),
        ("draft", "resubmit", False),
        ("draft", "edit", True),
        ("submitted", "edit", True),
        ("approved", "edit", False),
        ("revision_needed", "delete", True),
        ("draft", "delete", False),
        ("approved", "delete", False),
    ])
    def test_validate_transition(self, actor, make_ps, status, action, valid):
        ps = make_ps(actor, status=status)
        assert validate_transition(ps, action)["valid"] is valid

    def test_null_status_treated_as_draft(self, actor, make_ps):
        ps = make_ps(actor, status=None)
        assert validate_transition(ps, "submit")["valid"] is True
        assert validate_transition(ps, "submit")["from"] == "draft"

    def test_unknown_action(self, actor, make_ps):
        ps = make_ps(actor)
        result = validate_transition(ps, "approve")
        assert result["valid"] is False
        assert "Unknown action" in result["reason"]

    def test_available_actions_for_creator(self, actor, make_ps):
        ps = make_ps(actor, status="revision_needed")
        assert set(get_available_actions(ps, actor)) == {"submit", "resubmit", "edit", "delete"}

    def test_available_actions_for_non_creator(self, actor, other_actor, make_ps):
        ps = make_ps(actor, status="revision_needed")
        assert get_available_actions(ps, other_actor) == []


# ═══════════════════════════════════════════════════════════════════════════
# Edit
# ═══════════════════════════════════════════════════════════════════════════


class TestEdit:
    def test_creator_edits_draft(self, actor, make_ps):
        ps = make_ps(actor)
        view = lifecycle.update_problem_statement(actor, ps.id, {"title": "Renamed", "faculty_owner": "Dr. Nair"})
        assert view.title == "Renamed"
        assert view.faculty_owner == "Dr. Nair"
        assert view.status == "draft"

    def test_edit_leaves_status_unchanged_in_review(self, actor, make_ps):
        ps = make_ps(actor, status="pending_review")
        view = lifecycle.update_problem_statement(actor, ps.id, {"description": "More detail"})
        assert view.status == "pending_review"

    def test_status_field_is_ignored(self, actor, make_ps):
        ps = make_ps(actor)
        lifecycle.update_problem_statement(actor, ps.id, {"status": "approved", "title": "Still draft"})
        assert _reload(ps.id).status == "draft"

    def test_non_creator_refused_without_write(self, actor, other_actor, make_ps):
        ps = make_ps(actor, title="Original")
        with pytest.raises(PermissionDenied):
            lifecycle.update_problem_statement(other_actor, ps.id, {"title": "Hijacked"})
        assert _reload(ps.id).title == "Original"

    def test_approved_cannot_be_edited(self, actor, make_ps):
        ps = make_ps(actor, status="approved", title="Final")
        with pytest.raises(TransitionError) as exc:
            lifecycle.update_problem_statement(actor, ps.id, {"title": "Changed"})
        assert exc.value.current_status == "approved"
        assert _reload(ps.id).title == "Final"

    def test_empty_title_rejected(self, actor, make_ps):
        ps = make_ps(actor)
        with pytest.raises(ValidationError):
            lifecycle.update_problem_statement(actor, ps.id, {"title": ""})

    def test_null_clears_text_fields(self, actor, make_ps):
        ps = make_ps(actor, faculty_owner="Dr. Nair")
        lifecycle.update_problem_statement(
            actor, ps.id, {"description": None, "category": None, "theme": None, "faculty_owner": None},
        )
        stored = _reload(ps.id)
        assert (stored.description, stored.category, stored.theme) == ("", "", "")
        assert stored.faculty_owner is None

    @pytest.mark.parametrize("data", [{"title": None}, {"description": 42}, {"category": ["IoT"]}])
    def test_invalid_values_rejected_without_write(self, actor, make_ps, data):
        ps = make_ps(actor, title="Original")
        with pytest.raises(ValidationError):
            lifecycle.update_problem_statement(actor, ps.id, data)
        stored = _reload(ps.id)
        assert stored.title == "Original"
        assert stored.description == "Description"

    def test_non_object_body_rejected(self, actor):
        with pytest.raises(ValidationError):
            lifecycle.create_problem_statement(actor, ["Smart parking"])


# ═══════════════════════════════════════════════════════════════════════════
# Resubmit
# ═══════════════════════════════════════════════════════════════════════════


class TestResubmit:
    def test_revision_needed_to_pending_review(self, actor, make_ps):
        ps = make_ps(actor, status="revision_needed")
        view = lifecycle.resubmit_problem_statement(actor, ps.id)
        assert view.status == "pending_review"
        stored = _reload(ps.id)
        assert stored.submitted_at is not None
        assert stored.last_updated is not None

    def test_pending_review_refused_without_write(self, actor, make_ps):
        ps = make_ps(actor, status="pending_review")
        before = _reload(ps.id).last_updated
        with pytest.raises(TransitionError):
            lifecycle.resubmit_problem_statement(actor, ps.id)
        stored = _reload(ps.id)
        assert stored.status == "pending_review"
        assert stored.last_updated == before
        assert stored.submitted_at is None

    def test_non_creator_refused_before_status_check(self, actor, other_actor, make_ps):
        ps = make_ps(actor, status="pending_review")
        with pytest.raises(PermissionDenied):
            lifecycle.resubmit_problem_statement(other_actor, ps.id)


# ═══════════════════════════════════════════════════════════════════════════
# Scoping
# ═══════════════════════════════════════════════════════════════════════════


class TestScoping:
    def test_foreign_record_is_not_found(self, actor, outsider, make_ps):
        ps = make_ps(actor, status="revision_needed")
        with pytest.raises(NotFoundError):
            lifecycle.update_problem_statement(outsider, ps.id, {"title": "x"})
        with pytest.raises(NotFoundError):
            lifecycle.delete_problem_statement(outsider, ps.id)
        assert _reload(ps.id) is not None

    def test_missing_record_is_not_found(self, actor):
        with pytest.raises(NotFoundError):
            lifecycle.resubmit_problem_statement(actor, "does-not-exist")


# ═══════════════════════════════════════════════════════════════════════════
# Delete with cascade
# ═══════════════════════════════════════════════════════════════════════════


def _add_dependents(ps, actor):
    batch = SubmissionBatch(department_id=actor.department_id, submitted_by=actor.id)
    db.session.add(batch)
    db.session.flush()
    db.session.add_all([
        ProblemStatementAttachment(problem_statement_id=ps.id, file_name="a.pdf", object_path="x/a.pdf"),
        ProblemStatementMessage(problem_statement_id=ps.id, content="Please revise",
                                sender_role="institution_admin", recipient_role="department_admin"),
        ProblemStatementReview(problem_statement_id=ps.id, decision="revision_needed"),
        ProblemStatementAlert(problem_statement_id=ps.id, title="Revision requested"),
        SubmissionBatchItem(batch_id=batch.id, problem_statement_id=ps.id),
    ])
    db.session.commit()


def _dependent_counts(ps_id):
    return {
        step: model.query.filter_by(problem_statement_id=ps_id).count()
        for step, model in lifecycle.CASCADE_STEPS
    }


class TestDelete:
    def test_delete_removes_record_and_dependents(self, actor, make_ps):
        ps = make_ps(actor, status="revision_needed")
        _add_dependents(ps, actor)
        ps_id = ps.id

        result = lifecycle.delete_problem_statement(actor, ps_id)

        assert result["removed"] == {step: 1 for step, _ in lifecycle.CASCADE_STEPS}
        assert _reload(ps_id) is None
        assert all(count == 0 for count in _dependent_counts(ps_id).values())

    @pytest.mark.parametrize("status", ["draft", "pending_review", "submitted", "approved"])
    def test_delete_only_from_revision_needed(self, actor, make_ps, status):
        ps = make_ps(actor, status=status)
        with pytest.raises(TransitionError):
            lifecycle.delete_problem_statement(actor, ps.id)
        assert _reload(ps.id) is not None

    def test_non_creator_refused_without_write(self, actor, other_actor, make_ps):
        ps = make_ps(actor, status="revision_needed")
        _add_dependents(ps, actor)
        with pytest.raises(PermissionDenied):
            lifecycle.delete_problem_statement(other_actor, ps.id)
        assert _reload(ps.id) is not None
        assert all(count == 1 for count in _dependent_counts(ps.id).values())

    def test_failed_step_keeps_parent_and_dependents(self, actor, make_ps, monkeypatch):
        ps = make_ps(actor, status="revision_needed")
        _add_dependents(ps, actor)
        real_delete = lifecycle._delete_dependents

        def _failing(model, ps_id):
            if model is ProblemStatementReview:
                raise OperationalError("DELETE", {}, Exception("permission denied for table"))
            return real_delete(model, ps_id)

        monkeypatch.setattr(lifecycle, "_delete_dependents", _failing)

        with pytest.raises(CascadeDeleteError) as exc:
            lifecycle.delete_problem_statement(actor, ps.id)

        assert exc.value.step == "reviews"
        assert _reload(ps.id) is not None
        assert all(count == 1 for count in _dependent_counts(ps.id).values())
