"""
Tests for ProjectService and project overdue detection.
"""
import uuid
from datetime import date, timedelta

import pytest

from model import Project, ProjectStatus, Task, TaskStatus, User
from service import (
    DomainError,
    IllegalTransitionError,
    IncompleteWorkError,
    ProjectService,
    TaskService,
    ValidationError,
    is_project_overdue,
)


@pytest.fixture
def svc():
    return ProjectService()


@pytest.fixture
def project():
    return Project(name="Storage refresh", status=ProjectStatus.PLANNING)


def _task(project, status):
    return Task(project_id=project.id, title="Some unit of work", status=status)


class TestTransitions:
    def test_activate_sets_start_date(self, svc, project):
        project = svc.activate(project)
        assert project.status == ProjectStatus.ACTIVE
        assert project.start_date is not None

    def test_activate_keeps_planned_start_date(self, svc, project):
        project.start_date = date(2026, 11, 2)
        assert svc.activate(project).start_date == date(2026, 11, 2)

    def test_hold_and_resume(self, svc, project):
        project = svc.put_on_hold(svc.activate(project))
        assert project.status == ProjectStatus.ON_HOLD
        assert svc.resume(project).status == ProjectStatus.ACTIVE

    def test_cannot_hold_planning_project(self, svc, project):
        with pytest.raises(IllegalTransitionError) as exc:
            svc.put_on_hold(project)
        assert exc.value.current == "Planning"
        assert exc.value.target == "OnHold"

    def test_cannot_complete_from_planning(self, svc, project):
        with pytest.raises(IllegalTransitionError):
            svc.complete(project, [])

    @pytest.mark.parametrize("status", [ProjectStatus.PLANNING, ProjectStatus.ACTIVE, ProjectStatus.ON_HOLD])
    def test_cancel_from_live_states(self, svc, project, status):
        project.status = status
        assert svc.cancel(project).status == ProjectStatus.CANCELLED

    def test_cancelled_is_terminal(self, svc, project):
        project = svc.cancel(project)
        with pytest.raises(IllegalTransitionError):
            svc.activate(project)


class TestCompletion:
    @pytest.mark.parametrize("open_status", [TaskStatus.NOT_STARTED, TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED])
    def test_open_task_blocks_completion(self, svc, project, open_status):
        project = svc.activate(project)
        done = _task(project, TaskStatus.COMPLETED)
        blocker = _task(project, open_status)
        with pytest.raises(IncompleteWorkError) as exc:
            svc.complete(project, [done, blocker])
        assert exc.value.blocking_task_ids == [blocker.id]
        assert project.status == ProjectStatus.ACTIVE
        assert project.actual_completion_date is None

    def test_lists_every_blocking_task(self, svc, project):
        project = svc.activate(project)
        tasks = [_task(project, TaskStatus.NOT_STARTED) for _ in range(3)]
        with pytest.raises(IncompleteWorkError) as exc:
            svc.complete(project, tasks)
        assert exc.value.blocking_task_ids == sorted((t.id for t in tasks), key=str)

    def test_tasks_of_other_projects_are_ignored(self, svc, project):
        project = svc.activate(project)
        foreign = Task(project_id=uuid.uuid4(), status=TaskStatus.IN_PROGRESS)
        assert svc.complete(project, [foreign]).status == ProjectStatus.COMPLETED

    def test_completes_when_all_tasks_terminal(self, svc, project):
        project = svc.activate(project)
        tasks = [_task(project, TaskStatus.COMPLETED), _task(project, TaskStatus.CANCELLED)]
        project = svc.complete(project, tasks)
        assert project.status == ProjectStatus.COMPLETED
        assert project.actual_completion_date is not None


class TestProjectManager:
    def test_assign_manager(self, svc, project):
        manager = User(full_name="Max Manager", email="max@example.com")
        assert svc.assign_project_manager(project, manager).project_manager_user_id == manager.id

    def test_inactive_manager_rejected(self, svc, project):
        manager = User(full_name="Gone Away", email="gone@example.com", is_active=False)
        with pytest.raises(ValidationError) as exc:
            svc.assign_project_manager(project, manager)
        assert "manager_id" in exc.value.errors

    def test_no_manager_on_closed_project(self, svc, project):
        project = svc.cancel(project)
        with pytest.raises(DomainError):
            svc.assign_project_manager(project, User(full_name="Max", email="max@example.com"))


class TestTasksOnClosedProjects:
    def test_cannot_add_task_to_completed_project(self, project):
        project.status = ProjectStatus.COMPLETED
        with pytest.raises(DomainError):
            TaskService().create_task(project, "Late addition", "", "Medium", uuid.uuid4())


class TestOverdue:
    def test_past_target_is_overdue(self, project):
        today = date(2026, 10, 18)
        project.target_completion_date = today - timedelta(days=1)
        assert is_project_overdue(project, today)

    def test_target_today_is_not_overdue(self, project):
        today = date(2026, 10, 18)
        project.target_completion_date = today
        assert not is_project_overdue(project, today)

    def test_completed_project_is_never_overdue(self, project):
        project.status = ProjectStatus.COMPLETED
        project.target_completion_date = date(2020, 1, 1)
        assert not is_project_overdue(project, date(2026, 10, 18))

    def test_no_target_is_not_overdue(self, project):
        assert not is_project_overdue(project, date(2026, 10, 18))
