"""
Tests for TaskService: status machine, time logging, notes, checklist and timeline.
"""
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from model import (
    Priority,
    Project,
    ProjectStatus,
    Task,
    TaskActivity,
    TaskActivityType,
    TaskStatus,
)
from service import (
    IllegalTransitionError,
    TaskService,
    UnassignedError,
    ValidationError,
    is_task_overdue,
)


@pytest.fixture
def svc():
    return TaskService()


@pytest.fixture
def actor_id():
    return uuid.uuid4()


@pytest.fixture
def task():
    return Task(project_id=uuid.uuid4(), title="Rotate TLS certificates")


@pytest.fixture
def assigned(task):
    task.assigned_to_department_id = uuid.uuid4()
    task.assigned_to_user_id = uuid.uuid4()
    return task


@pytest.fixture
def in_progress(svc, assigned, actor_id):
    return svc.start(assigned, actor_id)


class TestCreate:
    def test_create_on_active_project(self, svc, actor_id):
        project = Project(name="Certificates", status=ProjectStatus.ACTIVE)
        task = svc.create_task(project, "Rotate TLS certificates", "", "High", actor_id,
                               estimated_hours=3, due_date=date(2026, 11, 1))
        assert task.project_id == project.id
        assert task.status == TaskStatus.NOT_STARTED
        assert task.priority == Priority.HIGH
        assert task.created_by_user_id == actor_id

    def test_title_validation(self, svc, actor_id):
        project = Project(name="Certificates")
        with pytest.raises(ValidationError) as exc:
            svc.create_task(project, "TLS", "", "Medium", actor_id, estimated_hours=-1)
        assert set(exc.value.errors) == {"title", "estimated_hours"}


class TestStart:
    def test_start_without_assignee(self, svc, task, actor_id):
        with pytest.raises(UnassignedError):
            svc.start(task, actor_id)
        assert task.status == TaskStatus.NOT_STARTED
        assert task.started_date is None

    def test_department_alone_is_not_enough(self, svc, task, actor_id):
        task.assigned_to_department_id = uuid.uuid4()
        with pytest.raises(UnassignedError):
            svc.start(task, actor_id)

    def test_start_with_assignee(self, svc, assigned, actor_id):
        task = svc.start(assigned, actor_id)
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.started_date is not None
        assert task.started_by_user_id == actor_id

    def test_cannot_restart(self, svc, in_progress, actor_id):
        with pytest.raises(IllegalTransitionError):
            svc.start(in_progress, actor_id)


class TestBlocking:
    def test_block_requires_reason(self, svc, in_progress):
        with pytest.raises(ValidationError) as exc:
            svc.block(in_progress, None)
        assert "blocked_reason" in exc.value.errors
        assert in_progress.status == TaskStatus.IN_PROGRESS

    def test_block_and_unblock(self, svc, in_progress):
        task = svc.block(in_progress, "Waiting on CA approval")
        assert task.status == TaskStatus.BLOCKED
        assert task.blocked_reason == "Waiting on CA approval"
        assert task.blocked_date is not None

        task = svc.unblock(task)
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.blocked_reason is None
        assert task.blocked_date is None

    def test_cannot_block_not_started(self, svc, assigned):
        with pytest.raises(IllegalTransitionError):
            svc.block(assigned, "Waiting")

    def test_change_status_in_progress_from_blocked_unblocks(self, svc, in_progress, actor_id):
        task = svc.block(in_progress, "Waiting")
        task = svc.change_status(task, TaskStatus.IN_PROGRESS, actor_id)
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.blocked_reason is None

    def test_change_status_to_not_started_is_illegal(self, svc, in_progress, actor_id):
        with pytest.raises(IllegalTransitionError):
            svc.change_status(in_progress, TaskStatus.NOT_STARTED, actor_id)


class TestCompletion:
    def test_complete(self, svc, in_progress, actor_id):
        task = svc.complete(in_progress, actor_id, "Rotated on all nodes")
        assert task.status == TaskStatus.COMPLETED
        assert task.completed_date is not None
        assert task.completed_by_user_id == actor_id
        assert task.resolution_notes == "Rotated on all nodes"

    def test_cannot_complete_not_started(self, svc, assigned, actor_id):
        with pytest.raises(IllegalTransitionError) as exc:
            svc.complete(assigned, actor_id)
        assert exc.value.current == "NotStarted"
        assert exc.value.target == "Completed"
        assert assigned.completed_date is None

    def test_cancel_blocked_clears_block(self, svc, in_progress):
        task = svc.cancel(svc.block(in_progress, "Vendor outage"))
        assert task.status == TaskStatus.CANCELLED
        assert task.blocked_reason is None

    def test_completed_is_terminal(self, svc, in_progress, actor_id):
        task = svc.complete(in_progress, actor_id)
        with pytest.raises(IllegalTransitionError):
            svc.cancel(task)
        with pytest.raises(IllegalTransitionError):
            svc.update_task(task, title="Renamed task")


class TestTimeAndNotes:
    def test_log_time_accumulates(self, svc, in_progress):
        svc.log_time(in_progress, 1.5)
        task = svc.log_time(in_progress, 2)
        assert task.actual_hours == pytest.approx(3.5)

    def test_log_time_while_blocked(self, svc, in_progress):
        task = svc.log_time(svc.block(in_progress, "Waiting"), 1)
        assert task.actual_hours == 1

    def test_log_time_not_started(self, svc, assigned):
        with pytest.raises(IllegalTransitionError):
            svc.log_time(assigned, 1)

    @pytest.mark.parametrize("hours", [0, -2])
    def test_log_time_must_be_positive(self, svc, in_progress, hours):
        with pytest.raises(ValidationError) as exc:
            svc.log_time(in_progress, hours)
        assert "hours" in exc.value.errors
        assert in_progress.actual_hours == 0

    def test_notes(self, svc, in_progress):
        assert svc.update_implementation_notes(in_progress, "Use the new CA").implementation_notes == "Use the new CA"

    def test_notes_too_long(self, svc, in_progress):
        with pytest.raises(ValidationError):
            svc.update_implementation_notes(in_progress, "x" * 2001)

    def test_resolution_notes_before_completion(self, svc, in_progress):
        task = svc.update_resolution_notes(in_progress, "Renewed via ACME")
        assert task.resolution_notes == "Renewed via ACME"
        assert task.status == TaskStatus.IN_PROGRESS

    def test_resolution_notes_after_completion(self, svc, in_progress, actor_id):
        done = svc.complete(in_progress, actor_id, "Rotated")
        assert svc.update_resolution_notes(done, "Rotated; old certs revoked").resolution_notes == (
            "Rotated; old certs revoked"
        )

    def test_resolution_notes_on_cancelled_task(self, svc, task):
        with pytest.raises(IllegalTransitionError):
            svc.update_resolution_notes(svc.cancel(task), "Too late")

    def test_resolution_notes_too_long(self, svc, in_progress):
        with pytest.raises(ValidationError) as exc:
            svc.update_resolution_notes(in_progress, "x" * 2001)
        assert "resolution_notes" in exc.value.errors
        assert in_progress.resolution_notes is None


class TestChecklist:
    def test_items_get_increasing_order(self, svc, task):
        first = svc.add_checklist_item(task, "Generate CSR")
        second = svc.add_checklist_item(task, "  Submit to CA  ")
        assert (first.order, second.order) == (0, 1)
        assert second.description == "Submit to CA"
        assert not second.is_completed

    def test_listed_by_order(self, svc, task):
        svc.add_checklist_item(task, "Deploy", order=5)
        svc.add_checklist_item(task, "Generate CSR", order=1)
        svc.add_checklist_item(task, "Submit to CA")
        assert [i.description for i in svc.checklist(task)] == ["Generate CSR", "Deploy", "Submit to CA"]

    @pytest.mark.parametrize("description", ["", "   ", None, "x" * 501])
    def test_description_validation(self, svc, task, description):
        with pytest.raises(ValidationError) as exc:
            svc.add_checklist_item(task, description)
        assert "description" in exc.value.errors
        assert task.checklist == []

    def test_negative_order(self, svc, task):
        with pytest.raises(ValidationError) as exc:
            svc.add_checklist_item(task, "Generate CSR", order=-1)
        assert "order" in exc.value.errors

    def test_toggle_stamps_and_clears(self, svc, task, actor_id):
        item = svc.add_checklist_item(task, "Generate CSR")
        svc.toggle_checklist_item(task, item, actor_id)
        assert item.is_completed
        assert item.completed_by_user_id == actor_id
        assert item.completed_date is not None

        svc.toggle_checklist_item(task, item, actor_id)
        assert not item.is_completed
        assert item.completed_by_user_id is None
        assert item.completed_date is None

    def test_closed_task_checklist_is_frozen(self, svc, in_progress, actor_id):
        item = svc.add_checklist_item(in_progress, "Generate CSR")
        svc.complete(in_progress, actor_id)
        with pytest.raises(IllegalTransitionError):
            svc.add_checklist_item(in_progress, "Late step")
        with pytest.raises(IllegalTransitionError):
            svc.toggle_checklist_item(in_progress, item, actor_id)
        assert not item.is_completed


class TestTimeline:
    def test_oldest_first_and_stable(self, svc, task):
        base = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)
        later = TaskActivity(task_id=task.id, activity_type=TaskActivityType.STARTED,
                             timestamp=base + timedelta(hours=1))
        first = TaskActivity(task_id=task.id, activity_type=TaskActivityType.CREATED, timestamp=base)
        same_a = TaskActivity(task_id=task.id, activity_type=TaskActivityType.ASSIGNED,
                              timestamp=base + timedelta(minutes=5))
        same_b = TaskActivity(task_id=task.id, activity_type=TaskActivityType.CLAIMED,
                              timestamp=base + timedelta(minutes=5))
        ordered = svc.timeline([later, same_a, first, same_b])
        assert [a.activity_type for a in ordered] == [
            TaskActivityType.CREATED,
            TaskActivityType.ASSIGNED,
            TaskActivityType.CLAIMED,
            TaskActivityType.STARTED,
        ]

    def test_record_activity(self, svc, task, actor_id):
        activity = svc.record_activity(task, TaskActivityType.TIME_LOGGED, actor_id, "Logged 2 hour(s)")
        assert activity.task_id == task.id
        assert activity.user_id == actor_id
        assert activity.timestamp.tzinfo is not None


class TestOverdue:
    def test_overdue(self, task):
        task.due_date = date(2026, 10, 17)
        assert is_task_overdue(task, date(2026, 10, 18))

    def test_due_today_not_overdue(self, task):
        task.due_date = date(2026, 10, 18)
        assert not is_task_overdue(task, date(2026, 10, 18))

    def test_terminal_not_overdue(self, task):
        task.due_date = date(2026, 1, 1)
        task.status = TaskStatus.CANCELLED
        assert not is_task_overdue(task, date(2026, 10, 18))
