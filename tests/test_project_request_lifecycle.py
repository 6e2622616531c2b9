"""
Tests for ProjectRequestService.

Covers the intake state machine (Draft → Pending → InReview → Approved /
Denied → Converted, plus Cancelled), field validation at the form
boundary, and conversion into a Project with its proposed tasks.
"""
import uuid
from datetime import date

import pytest

from model import (
    Priority,
    ProjectRequestStatus,
    ProjectStatus,
    ProposedTask,
    RequestPriority,
    TaskStatus,
)
from service import (
    AlreadyConvertedError,
    IllegalTransitionError,
    ProjectRequestService,
    ValidationError,
)


DESCRIPTION = "Migrate the reporting database to PostgreSQL 16."
JUSTIFICATION = "The current engine leaves vendor support next quarter."


# ---------------------
# Fixtures
# ---------------------

@pytest.fixture
def svc():
    return ProjectRequestService()


@pytest.fixture
def requester_id():
    return uuid.uuid4()


@pytest.fixture
def reviewer_id():
    return uuid.uuid4()


@pytest.fixture
def draft(svc, requester_id):
    def make(**overrides):
        fields = dict(
            title="DB Migration",
            description=DESCRIPTION,
            business_justification=JUSTIFICATION,
            priority="High",
            requesting_user_id=requester_id,
        )
        fields.update(overrides)
        return svc.create_request(**fields)
    return make


@pytest.fixture
def in_review(svc, draft, reviewer_id):
    request = svc.submit(draft())
    return svc.begin_review(request, reviewer_id)


@pytest.fixture
def approved(svc, in_review, reviewer_id):
    return svc.approve(in_review, reviewer_id, "ok")


# ═════════════════════════════════════════════════════════════════════════
# HAPPY PATH
# ═════════════════════════════════════════════════════════════════════════

class TestDbMigrationScenario:
    def test_full_intake_to_project(self, svc, draft, requester_id, reviewer_id):
        request = draft()
        assert request.status == ProjectRequestStatus.DRAFT
        assert request.priority == RequestPriority.HIGH

        request = svc.submit(request)
        assert request.status == ProjectRequestStatus.PENDING
        assert request.submitted_date is not None

        request = svc.begin_review(request, reviewer_id)
        assert request.status == ProjectRequestStatus.IN_REVIEW
        assert request.reviewed_by_user_id == reviewer_id

        request = svc.approve(request, reviewer_id, "ok")
        assert request.status == ProjectRequestStatus.APPROVED
        assert request.approval_date is not None
        assert request.approved_by_user_id == reviewer_id
        assert request.approval_notes == "ok"

        request, project, tasks = svc.convert(request, reviewer_id)
        assert request.status == ProjectRequestStatus.CONVERTED
        assert project.name == "DB Migration"
        assert project.status == ProjectStatus.PLANNING
        assert project.description == DESCRIPTION
        assert project.priority == RequestPriority.HIGH
        assert project.converted_from_request_id == request.id
        assert request.converted_to_project_id == project.id
        assert tasks == []

    def test_convert_twice_raises_already_converted(self, svc, approved, reviewer_id):
        request, project, _ = svc.convert(approved, reviewer_id)
        with pytest.raises(AlreadyConvertedError) as exc:
            svc.convert(request, reviewer_id)
        assert exc.value.project_id == project.id
        assert request.converted_to_project_id == project.id

    def test_convert_copies_planning_hints_and_tasks(self, svc, draft, reviewer_id):
        request = draft(
            estimated_budget=25000.0,
            proposed_start_date=date(2026, 11, 1),
            proposed_end_date=date(2027, 1, 31),
            proposed_tasks=[
                ProposedTask(title="Schema freeze", priority=Priority.HIGH, estimated_hours=4),
                ProposedTask(title="Dry-run migration", description="Against staging"),
            ],
        )
        request = svc.approve(svc.begin_review(svc.submit(request), reviewer_id), reviewer_id)
        _, project, tasks = svc.convert(request, reviewer_id)

        assert project.budget == 25000.0
        assert project.start_date == date(2026, 11, 1)
        assert project.target_completion_date == date(2027, 1, 31)
        assert [t.title for t in tasks] == ["Schema freeze", "Dry-run migration"]
        assert all(t.project_id == project.id for t in tasks)
        assert all(t.status == TaskStatus.NOT_STARTED for t in tasks)
        assert tasks[0].priority == Priority.HIGH
        assert tasks[0].estimated_hours == 4

    def test_due_date_used_as_target_when_no_end_date(self, svc, draft, reviewer_id):
        request = draft(due_date=date(2026, 12, 15))
        request = svc.approve(svc.begin_review(svc.submit(request), reviewer_id), reviewer_id)
        _, project, _ = svc.convert(request, reviewer_id)
        assert project.target_completion_date == date(2026, 12, 15)


# ═════════════════════════════════════════════════════════════════════════
# ILLEGAL TRANSITIONS
# ═════════════════════════════════════════════════════════════════════════

class TestIllegalTransitions:
    def test_convert_before_approval(self, svc, draft, reviewer_id):
        request = svc.submit(draft())
        with pytest.raises(IllegalTransitionError) as exc:
            svc.convert(request, reviewer_id)
        assert exc.value.current == "Pending"
        assert exc.value.target == "Converted"
        assert request.status == ProjectRequestStatus.PENDING
        assert request.converted_to_project_id is None

    def test_approve_from_pending(self, svc, draft, reviewer_id):
        request = svc.submit(draft())
        with pytest.raises(IllegalTransitionError):
            svc.approve(request, reviewer_id)
        assert request.approval_date is None

    def test_submit_twice(self, svc, draft):
        request = svc.submit(draft())
        with pytest.raises(IllegalTransitionError) as exc:
            svc.submit(request)
        assert exc.value.current == "Pending"

    def test_cannot_cancel_terminal_request(self, svc, in_review, reviewer_id):
        denied = svc.deny(in_review, reviewer_id, "Out of budget")
        with pytest.raises(IllegalTransitionError):
            svc.cancel(denied, "Changed my mind")
        assert denied.status == ProjectRequestStatus.DENIED
        assert denied.cancellation_reason is None

    def test_cannot_cancel_approved_request(self, svc, approved):
        with pytest.raises(IllegalTransitionError):
            svc.cancel(approved, "Too late")

    def test_edit_only_in_draft(self, svc, draft):
        request = svc.submit(draft())
        with pytest.raises(IllegalTransitionError) as exc:
            svc.update_request(request, title="Renamed request")
        assert exc.value.target == "Edit"
        assert request.title == "DB Migration"


# ═════════════════════════════════════════════════════════════════════════
# DENY / CANCEL
# ═════════════════════════════════════════════════════════════════════════

class TestDecisions:
    def test_deny_records_reason(self, svc, in_review, reviewer_id):
        denied = svc.deny(in_review, reviewer_id, "Duplicate of an existing project")
        assert denied.status == ProjectRequestStatus.DENIED
        assert denied.denial_reason == "Duplicate of an existing project"
        assert denied.reviewed_date is not None
        assert denied.approval_date is None
        assert denied.approved_by_user_id is None

    def test_deny_requires_reason(self, svc, in_review, reviewer_id):
        with pytest.raises(ValidationError) as exc:
            svc.deny(in_review, reviewer_id, "   ")
        assert "reason" in exc.value.errors
        assert in_review.status == ProjectRequestStatus.IN_REVIEW
        assert in_review.denial_reason is None

    @pytest.mark.parametrize("steps", [0, 1, 2])
    def test_cancel_before_decision(self, svc, draft, reviewer_id, steps):
        request = draft()
        if steps >= 1:
            request = svc.submit(request)
        if steps >= 2:
            request = svc.begin_review(request, reviewer_id)
        request = svc.cancel(request, "No longer needed")
        assert request.status == ProjectRequestStatus.CANCELLED
        assert request.cancellation_reason == "No longer needed"

    def test_cancel_requires_reason(self, svc, draft):
        request = draft()
        with pytest.raises(ValidationError) as exc:
            svc.cancel(request, "")
        assert "reason" in exc.value.errors
        assert request.status == ProjectRequestStatus.DRAFT


# ═════════════════════════════════════════════════════════════════════════
# VALIDATION
# ═════════════════════════════════════════════════════════════════════════

class TestValidation:
    def test_short_title(self, draft):
        with pytest.raises(ValidationError) as exc:
            draft(title="DB")
        assert exc.value.errors["title"] == "Title must be at least 5 characters"

    def test_collects_every_failing_field(self, draft):
        with pytest.raises(ValidationError) as exc:
            draft(title="x" * 201, description="too short", business_justification="", priority="Whenever")
        assert set(exc.value.errors) == {"title", "description", "business_justification", "priority"}

    def test_end_before_start(self, draft):
        with pytest.raises(ValidationError) as exc:
            draft(proposed_start_date=date(2026, 12, 1), proposed_end_date=date(2026, 11, 1))
        assert "proposed_end_date" in exc.value.errors

    def test_negative_budget(self, draft):
        with pytest.raises(ValidationError) as exc:
            draft(estimated_budget=-1)
        assert "estimated_budget" in exc.value.errors

    def test_invalid_proposed_task_is_reported_by_position(self, draft):
        with pytest.raises(ValidationError) as exc:
            draft(proposed_tasks=[ProposedTask(title="Good title"), ProposedTask(title="Bad")])
        assert "proposed_tasks[1].title" in exc.value.errors

    def test_update_revalidates(self, svc, draft):
        request = draft()
        with pytest.raises(ValidationError):
            svc.update_request(request, description="short")
        assert request.description == DESCRIPTION

    def test_update_in_draft(self, svc, draft):
        request = svc.update_request(draft(), title="Database Migration", priority="Urgent")
        assert request.title == "Database Migration"
        assert request.priority == RequestPriority.URGENT
