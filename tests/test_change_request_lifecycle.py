"""
Tests for ChangeRequestService: the review and execution workflow, CAB
rules and outcome classification.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from model import (
    ChangeOutcome,
    ChangeRequest,
    ChangeRequestStatus,
    ChangeType,
    Priority,
    RiskLevel,
)
from service import (
    ChangeRequestService,
    IllegalTransitionError,
    ValidationError,
    decision_date,
    outcome_of,
)


IMPACT = "Billing is read-only for up to ten minutes while the node restarts."
ROLLBACK = "Restore the previous package from the local mirror and restart."
DESCRIPTION = "Apply the vendor security patch to the CRM application nodes."

START = datetime(2026, 10, 20, 22, 0, tzinfo=timezone.utc)


# ---------------------
# Fixtures
# ---------------------

@pytest.fixture
def svc():
    return ChangeRequestService()


@pytest.fixture
def reviewer_id():
    return uuid.uuid4()


@pytest.fixture
def draft(svc):
    def make(**overrides):
        fields = dict(
            title="Patch CRM nodes",
            description=DESCRIPTION,
            change_type="Normal",
            priority="High",
            risk_level="Medium",
            impact_assessment=IMPACT,
            rollback_plan=ROLLBACK,
            affected_systems="CRM, Billing",
            created_by_user_id=uuid.uuid4(),
        )
        fields.update(overrides)
        return svc.create_change_request(**fields)
    return make


@pytest.fixture
def approved(svc, draft, reviewer_id):
    cr = svc.begin_review(svc.submit(draft()), reviewer_id)
    return svc.approve(cr, reviewer_id, "CAB ok")


@pytest.fixture
def executing(svc, approved):
    cr = svc.schedule(approved, START, START + timedelta(hours=2), "Tue 22:00-00:00 UTC")
    return svc.start_execution(cr)


# ═════════════════════════════════════════════════════════════════════════
# WORKFLOW
# ═════════════════════════════════════════════════════════════════════════

class TestWorkflow:
    def test_create_coerces_enums(self, draft):
        cr = draft()
        assert cr.status == ChangeRequestStatus.DRAFT
        assert cr.change_type == ChangeType.NORMAL
        assert cr.priority == Priority.HIGH
        assert cr.risk_level == RiskLevel.MEDIUM

    def test_full_path_to_completion(self, svc, draft, reviewer_id):
        cr = svc.submit(draft())
        assert cr.status == ChangeRequestStatus.PENDING
        assert cr.submitted_date is not None

        cr = svc.begin_review(cr, reviewer_id)
        assert cr.reviewed_by_user_id == reviewer_id

        cr = svc.approve(cr, reviewer_id)
        assert cr.status == ChangeRequestStatus.APPROVED
        assert cr.approved_date is not None
        assert cr.approved_by_user_id == reviewer_id

        cr = svc.schedule(cr, START, START + timedelta(hours=2), "Tue 22:00-00:00 UTC")
        assert cr.status == ChangeRequestStatus.SCHEDULED
        assert cr.scheduled_start_date == START
        assert cr.change_window == "Tue 22:00-00:00 UTC"

        cr = svc.start_execution(cr)
        assert cr.status == ChangeRequestStatus.EXECUTING
        assert cr.actual_start_date is not None

        cr = svc.complete(cr, "Patched all four nodes")
        assert cr.status == ChangeRequestStatus.COMPLETED
        assert cr.completed_date is not None
        assert cr.actual_end_date == cr.completed_date
        assert cr.implementation_notes == "Patched all four nodes"

    def test_fail_then_roll_back(self, svc, executing):
        cr = svc.mark_failed(executing, "Node 3 did not come back")
        assert cr.status == ChangeRequestStatus.FAILED
        assert cr.failure_reason == "Node 3 did not come back"
        assert cr.failed_date is not None

        cr = svc.rollback(cr, "Restored previous package")
        assert cr.status == ChangeRequestStatus.ROLLED_BACK
        assert cr.rolled_back_date is not None
        assert cr.rollback_reason == "Restored previous package"

    def test_rollback_requires_reason(self, svc, executing):
        cr = svc.mark_failed(executing)
        with pytest.raises(ValidationError) as exc:
            svc.rollback(cr, "")
        assert "reason" in exc.value.errors
        assert cr.status == ChangeRequestStatus.FAILED

    def test_rollback_only_after_failure(self, svc, executing):
        with pytest.raises(IllegalTransitionError):
            svc.rollback(executing, "Just in case")

    def test_deny_requires_reason(self, svc, draft, reviewer_id):
        cr = svc.begin_review(svc.submit(draft()), reviewer_id)
        with pytest.raises(ValidationError):
            svc.deny(cr, reviewer_id, None)
        cr = svc.deny(cr, reviewer_id, "Conflicts with the freeze")
        assert cr.status == ChangeRequestStatus.DENIED
        assert cr.denied_date is not None

    def test_execution_requires_schedule(self, svc, approved):
        with pytest.raises(IllegalTransitionError) as exc:
            svc.start_execution(approved)
        assert exc.value.current == "Approved"
        assert exc.value.target == "Executing"


class TestScheduling:
    def test_end_must_follow_start(self, svc, approved):
        with pytest.raises(ValidationError) as exc:
            svc.schedule(approved, START, START, "Tue night")
        assert "scheduled_end_date" in exc.value.errors
        assert approved.status == ChangeRequestStatus.APPROVED

    def test_window_is_required(self, svc, approved):
        with pytest.raises(ValidationError) as exc:
            svc.schedule(approved, START, START + timedelta(hours=1), "  ")
        assert "change_window" in exc.value.errors

    def test_naive_times_are_treated_as_utc(self, svc, approved):
        naive = datetime(2026, 10, 20, 22, 0)
        cr = svc.schedule(approved, naive, naive + timedelta(hours=1), "Tue night")
        assert cr.scheduled_start_date == START


class TestCancellation:
    @pytest.mark.parametrize("steps", [0, 1, 2, 3, 4])
    def test_cancel_before_execution(self, svc, draft, reviewer_id, steps):
        cr = draft()
        actions = [
            svc.submit,
            lambda c: svc.begin_review(c, reviewer_id),
            lambda c: svc.approve(c, reviewer_id),
            lambda c: svc.schedule(c, START, START + timedelta(hours=1), "Tue night"),
        ]
        for action in actions[:steps]:
            cr = action(cr)
        cr = svc.cancel(cr, "Superseded")
        assert cr.status == ChangeRequestStatus.CANCELLED
        assert cr.cancelled_date is not None
        assert cr.cancellation_reason == "Superseded"

    def test_cannot_cancel_while_executing(self, svc, executing):
        with pytest.raises(IllegalTransitionError):
            svc.cancel(executing, "Abort")
        assert executing.status == ChangeRequestStatus.EXECUTING

    def test_completed_is_terminal(self, svc, executing):
        cr = svc.complete(executing)
        with pytest.raises(IllegalTransitionError):
            svc.cancel(cr)


class TestEditing:
    def test_update_in_draft(self, svc, draft):
        cr = svc.update_change_request(draft(), change_type="Emergency", risk_level="Critical")
        assert cr.change_type == ChangeType.EMERGENCY
        assert cr.risk_level == RiskLevel.CRITICAL
        assert cr.title == "Patch CRM nodes"

    def test_update_after_submit_is_illegal(self, svc, draft):
        cr = svc.submit(draft())
        with pytest.raises(IllegalTransitionError) as exc:
            svc.update_change_request(cr, title="Patch CRM and ERP nodes")
        assert exc.value.target == "Edit"

    def test_unknown_field_rejected(self, svc, draft):
        with pytest.raises(ValidationError) as exc:
            svc.update_change_request(draft(), status="Completed")
        assert exc.value.errors == {"status": "Unknown field"}

    def test_validation_on_create(self, draft):
        with pytest.raises(ValidationError) as exc:
            draft(rollback_plan="none", affected_systems="", change_type="Routine")
        assert set(exc.value.errors) == {"rollback_plan", "affected_systems", "change_type"}


class TestClassification:
    @pytest.mark.parametrize("change_type, expected", [
        (ChangeType.STANDARD, False),
        (ChangeType.NORMAL, True),
        (ChangeType.EMERGENCY, True),
    ])
    def test_requires_cab_approval(self, change_type, expected):
        assert ChangeRequest(change_type=change_type).requires_cab_approval is expected

    @pytest.mark.parametrize("status, outcome", [
        (ChangeRequestStatus.COMPLETED, ChangeOutcome.SUCCESSFUL),
        (ChangeRequestStatus.FAILED, ChangeOutcome.FAILED),
        (ChangeRequestStatus.ROLLED_BACK, ChangeOutcome.ROLLED_BACK),
        (ChangeRequestStatus.EXECUTING, None),
        (ChangeRequestStatus.CANCELLED, None),
    ])
    def test_outcome_of(self, status, outcome):
        assert outcome_of(ChangeRequest(status=status)) == outcome

    def test_decision_date_follows_outcome(self):
        failed_at = START
        rolled_back_at = START + timedelta(hours=1)
        cr = ChangeRequest(
            status=ChangeRequestStatus.ROLLED_BACK,
            failed_date=failed_at,
            rolled_back_date=rolled_back_at,
        )
        assert decision_date(cr) == rolled_back_at
        cr.status = ChangeRequestStatus.FAILED
        assert decision_date(cr) == failed_at
        cr.status = ChangeRequestStatus.SCHEDULED
        assert decision_date(cr) is None
