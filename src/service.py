"""
service.py

Service layer for the APEX Operations Console.

Responsibilities
----------------
Each service class encapsulates all business logic for its domain.
Services receive and return domain model instances (from model.py).
No persistence is handled here; callers are responsible for storing
and retrieving models via a repository / unit of work.

Services
--------
- ProjectRequestService   – Request intake state machine and conversion
- ProjectService          – Project state machine and completion guard
- TaskService             – Task creation, status machine, time and notes
- AssignmentService       – Department routing, direct assignment, claiming
- DepartmentService       – Department configuration
- UserService             – User directory records
- ChangeRequestService    – Change review and execution state machine
- ChangeAnalyticsService  – Metrics, success rates, trends, affected systems
- DashboardService        – Dashboard counters and recent activity

Design notes
------------
- Every guard runs before the first mutation, so a rejected call leaves
  the entity exactly as it was.
- UTC datetimes are used throughout.
- Business rule violations raise a DomainError subclass (which is also a
  ValueError) naming the entity, its current state and what was attempted.
- Role and permission checks are not made here; the acting user's id is
  only recorded.
- Analytics are pure functions of the population they are given and
  return plain dicts ready for the application layer to wrap in DTOs.
"""

from __future__ import annotations

import calendar
import re
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from model import (
    TERMINAL_PROJECT_STATUSES,
    TERMINAL_TASK_STATUSES,
    ChangeOutcome,
    ChangeRequest,
    ChangeRequestStatus,
    ChangeType,
    ChecklistItem,
    Department,
    Priority,
    Project,
    ProjectRequest,
    ProjectRequestStatus,
    ProjectStatus,
    ProposedTask,
    RequestPriority,
    RiskLevel,
    Task,
    TaskActivity,
    TaskActivityType,
    TaskStatus,
    User,
)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class DomainError(ValueError):
    """Base class for business rule violations raised by the service layer."""


class ValidationError(DomainError):
    """One or more fields failed validation.  `errors` maps field → message."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        summary = "; ".join(f"{k}: {v}" for k, v in sorted(self.errors.items()))
        super().__init__(f"Validation failed: {summary}")


class IllegalTransitionError(DomainError):
    """The attempted transition is not defined for the entity's current state."""

    def __init__(self, entity: str, current, target):
        self.entity = entity
        self.current = current.value if isinstance(current, Enum) else str(current)
        self.target = target.value if isinstance(target, Enum) else str(target)
        super().__init__(
            f"{entity} cannot move from '{self.current}' to '{self.target}'."
        )


class AlreadyConvertedError(DomainError):
    def __init__(self, request_id: uuid.UUID, project_id: Optional[uuid.UUID]):
        self.request_id = request_id
        self.project_id = project_id
        super().__init__(
            f"ProjectRequest {request_id} has already been converted"
            + (f" to project {project_id}." if project_id else ".")
        )


class NotClaimableError(DomainError):
    """The task is not sitting unclaimed in a department pool."""


class UnassignedError(DomainError):
    """The task needs an individual assignee for the requested change."""


class IncompleteWorkError(DomainError):
    def __init__(self, project_id: uuid.UUID, task_ids: Iterable[uuid.UUID]):
        self.project_id = project_id
        self.blocking_task_ids = sorted(task_ids, key=str)
        super().__init__(
            f"Project {project_id} still has {len(self.blocking_task_ids)} open task(s): "
            + ", ".join(str(t) for t in self.blocking_task_ids)
        )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

TITLE_LENGTH = (5, 200)
LONG_TEXT_LENGTH = (20, 2000)
AFFECTED_SYSTEMS_LENGTH = (3, 500)
NAME_LENGTH = (1, 100)
CHECKLIST_ITEM_LENGTH = (1, 500)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _check_length(
    errors: Dict[str, str],
    field_name: str,
    value: Optional[str],
    limits: Tuple[int, int],
    label: str,
) -> None:
    minimum, maximum = limits
    text = value or ""
    if len(text) < minimum:
        errors[field_name] = f"{label} must be at least {minimum} characters"
    elif len(text) > maximum:
        errors[field_name] = f"{label} must not exceed {maximum} characters"


def _check_max_length(
    errors: Dict[str, str],
    field_name: str,
    value: Optional[str],
    maximum: int,
    label: str,
) -> None:
    if value is not None and len(value) > maximum:
        errors[field_name] = f"{label} must not exceed {maximum} characters"


def _coerce_enum(errors: Dict[str, str], field_name: str, value, enum_cls, label: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(m.value for m in enum_cls)
        errors[field_name] = f"{label} must be one of: {valid}"
        return None


def _require_text(errors: Dict[str, str], field_name: str, value: Optional[str], label: str) -> None:
    if not (value or "").strip():
        errors[field_name] = f"{label} is required"


def _raise_if(errors: Dict[str, str]) -> None:
    if errors:
        raise ValidationError(errors)


def _guard(
    entity: str,
    transitions: Dict[Enum, frozenset],
    current: Enum,
    target: Enum,
) -> None:
    if target not in transitions.get(current, frozenset()):
        raise IllegalTransitionError(entity, current, target)


# ---------------------------------------------------------------------------
# Field validation (form boundary)
# ---------------------------------------------------------------------------

def validate_project_request_fields(
    title: Optional[str],
    description: Optional[str],
    business_justification: Optional[str],
    priority,
    estimated_budget: Optional[float] = None,
    proposed_start_date: Optional[date] = None,
    proposed_end_date: Optional[date] = None,
    proposed_tasks: Sequence[ProposedTask] = (),
) -> RequestPriority:
    """Validate request form fields; returns the coerced priority."""
    errors: Dict[str, str] = {}
    _check_length(errors, "title", title, TITLE_LENGTH, "Title")
    _check_length(errors, "description", description, LONG_TEXT_LENGTH, "Description")
    _check_length(
        errors, "business_justification", business_justification,
        LONG_TEXT_LENGTH, "Business justification",
    )
    coerced = _coerce_enum(errors, "priority", priority, RequestPriority, "Priority")
    if estimated_budget is not None and estimated_budget < 0:
        errors["estimated_budget"] = "Estimated budget must be a positive number"
    if proposed_start_date and proposed_end_date and proposed_end_date < proposed_start_date:
        errors["proposed_end_date"] = "Proposed end date must not be before the proposed start date"
    for i, proposed in enumerate(proposed_tasks):
        try:
            validate_task_fields(proposed.title, proposed.description, proposed.priority,
                                 proposed.estimated_hours)
        except ValidationError as exc:
            for key, msg in exc.errors.items():
                errors[f"proposed_tasks[{i}].{key}"] = msg
    _raise_if(errors)
    return coerced


def validate_task_fields(
    title: Optional[str],
    description: Optional[str],
    priority,
    estimated_hours: Optional[float] = None,
) -> Priority:
    errors: Dict[str, str] = {}
    _check_length(errors, "title", title, TITLE_LENGTH, "Title")
    _check_max_length(errors, "description", description, LONG_TEXT_LENGTH[1], "Description")
    coerced = _coerce_enum(errors, "priority", priority, Priority, "Priority")
    if estimated_hours is not None and estimated_hours < 0:
        errors["estimated_hours"] = "Estimated hours must not be negative"
    _raise_if(errors)
    return coerced


def validate_change_request_fields(
    title: Optional[str],
    description: Optional[str],
    change_type,
    priority,
    risk_level,
    impact_assessment: Optional[str],
    rollback_plan: Optional[str],
    affected_systems: Optional[str],
) -> Tuple[ChangeType, Priority, RiskLevel]:
    errors: Dict[str, str] = {}
    _check_length(errors, "title", title, TITLE_LENGTH, "Title")
    _check_length(errors, "description", description, LONG_TEXT_LENGTH, "Description")
    ct = _coerce_enum(errors, "change_type", change_type, ChangeType, "Change type")
    pr = _coerce_enum(errors, "priority", priority, Priority, "Priority")
    rl = _coerce_enum(errors, "risk_level", risk_level, RiskLevel, "Risk level")
    _check_length(errors, "impact_assessment", impact_assessment, LONG_TEXT_LENGTH, "Impact assessment")
    _check_length(errors, "rollback_plan", rollback_plan, LONG_TEXT_LENGTH, "Rollback plan")
    _check_length(errors, "affected_systems", affected_systems, AFFECTED_SYSTEMS_LENGTH, "Affected systems")
    _raise_if(errors)
    return ct, pr, rl


# ---------------------------------------------------------------------------
# ProjectRequestService
# ---------------------------------------------------------------------------

_REQUEST_TRANSITIONS: Dict[Enum, frozenset] = {
    ProjectRequestStatus.DRAFT: frozenset({
        ProjectRequestStatus.PENDING, ProjectRequestStatus.CANCELLED,
    }),
    ProjectRequestStatus.PENDING: frozenset({
        ProjectRequestStatus.IN_REVIEW, ProjectRequestStatus.CANCELLED,
    }),
    ProjectRequestStatus.IN_REVIEW: frozenset({
        ProjectRequestStatus.APPROVED,
        ProjectRequestStatus.DENIED,
        ProjectRequestStatus.CANCELLED,
    }),
    ProjectRequestStatus.APPROVED: frozenset({ProjectRequestStatus.CONVERTED}),
}


class ProjectRequestService:
    """
    Enforces the project intake workflow:

        Draft → Pending → InReview → Approved → Converted
                                   ↘ Denied
        Draft / Pending / InReview → Cancelled
    """

    def create_request(
        self,
        title: str,
        description: str,
        business_justification: str,
        priority,
        requesting_user_id: uuid.UUID,
        due_date: Optional[date] = None,
        estimated_budget: Optional[float] = None,
        proposed_start_date: Optional[date] = None,
        proposed_end_date: Optional[date] = None,
        proposed_tasks: Optional[List[ProposedTask]] = None,
    ) -> ProjectRequest:
        """Create and return a DRAFT request (unsaved)."""
        proposed_tasks = list(proposed_tasks or [])
        coerced = validate_project_request_fields(
            title, description, business_justification, priority,
            estimated_budget, proposed_start_date, proposed_end_date, proposed_tasks,
        )
        now = _utcnow()
        return ProjectRequest(
            title=title,
            description=description,
            business_justification=business_justification,
            priority=coerced,
            requesting_user_id=requesting_user_id,
            due_date=due_date,
            estimated_budget=estimated_budget,
            proposed_start_date=proposed_start_date,
            proposed_end_date=proposed_end_date,
            proposed_tasks=proposed_tasks,
            status=ProjectRequestStatus.DRAFT,
            created_date=now,
            last_modified_date=now,
        )

    def update_request(
        self,
        request: ProjectRequest,
        title: Optional[str] = None,
        description: Optional[str] = None,
        business_justification: Optional[str] = None,
        priority=None,
        due_date: Optional[date] = None,
        estimated_budget: Optional[float] = None,
        proposed_start_date: Optional[date] = None,
        proposed_end_date: Optional[date] = None,
        proposed_tasks: Optional[List[ProposedTask]] = None,
    ) -> ProjectRequest:
        """Apply field-level edits.  Only DRAFT requests are editable."""
        if request.status != ProjectRequestStatus.DRAFT:
            raise IllegalTransitionError("ProjectRequest", request.status, "Edit")
        merged = {
            "title": title if title is not None else request.title,
            "description": description if description is not None else request.description,
            "business_justification": (
                business_justification if business_justification is not None
                else request.business_justification
            ),
            "priority": priority if priority is not None else request.priority,
            "estimated_budget": (
                estimated_budget if estimated_budget is not None else request.estimated_budget
            ),
            "proposed_start_date": proposed_start_date or request.proposed_start_date,
            "proposed_end_date": proposed_end_date or request.proposed_end_date,
            "proposed_tasks": (
                list(proposed_tasks) if proposed_tasks is not None else request.proposed_tasks
            ),
        }
        merged["priority"] = validate_project_request_fields(**merged)
        for key, value in merged.items():
            setattr(request, key, value)
        if due_date is not None:
            request.due_date = due_date
        request.last_modified_date = _utcnow()
        return request

    def submit(self, request: ProjectRequest) -> ProjectRequest:
        """Draft → Pending.  Required fields are re-validated first."""
        _guard("ProjectRequest", _REQUEST_TRANSITIONS, request.status, ProjectRequestStatus.PENDING)
        validate_project_request_fields(
            request.title, request.description, request.business_justification,
            request.priority, request.estimated_budget, request.proposed_start_date,
            request.proposed_end_date, request.proposed_tasks,
        )
        now = _utcnow()
        request.status = ProjectRequestStatus.PENDING
        request.submitted_date = now
        request.last_modified_date = now
        return request

    def begin_review(
        self,
        request: ProjectRequest,
        reviewer_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> ProjectRequest:
        """Pending → InReview."""
        _guard("ProjectRequest", _REQUEST_TRANSITIONS, request.status, ProjectRequestStatus.IN_REVIEW)
        request.status = ProjectRequestStatus.IN_REVIEW
        request.reviewed_by_user_id = reviewer_id
        if notes:
            request.review_notes = notes
        request.last_modified_date = _utcnow()
        return request

    def approve(
        self,
        request: ProjectRequest,
        reviewer_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> ProjectRequest:
        """InReview → Approved."""
        _guard("ProjectRequest", _REQUEST_TRANSITIONS, request.status, ProjectRequestStatus.APPROVED)
        now = _utcnow()
        request.status = ProjectRequestStatus.APPROVED
        request.reviewed_date = now
        request.approval_date = now
        request.approved_by_user_id = reviewer_id
        request.approval_notes = notes or ""
        request.last_modified_date = now
        return request

    def deny(
        self,
        request: ProjectRequest,
        reviewer_id: uuid.UUID,
        reason: str,
    ) -> ProjectRequest:
        """InReview → Denied (terminal).  A reason is mandatory."""
        _guard("ProjectRequest", _REQUEST_TRANSITIONS, request.status, ProjectRequestStatus.DENIED)
        errors: Dict[str, str] = {}
        _require_text(errors, "reason", reason, "A denial reason")
        _raise_if(errors)
        now = _utcnow()
        request.status = ProjectRequestStatus.DENIED
        request.reviewed_date = now
        request.reviewed_by_user_id = reviewer_id
        request.denial_reason = reason
        request.last_modified_date = now
        return request

    def cancel(self, request: ProjectRequest, reason: str) -> ProjectRequest:
        """Draft / Pending / InReview → Cancelled (terminal)."""
        _guard("ProjectRequest", _REQUEST_TRANSITIONS, request.status, ProjectRequestStatus.CANCELLED)
        errors: Dict[str, str] = {}
        _require_text(errors, "reason", reason, "A cancellation reason")
        _raise_if(errors)
        request.status = ProjectRequestStatus.CANCELLED
        request.cancellation_reason = reason
        request.last_modified_date = _utcnow()
        return request

    def convert(
        self,
        request: ProjectRequest,
        acting_user_id: uuid.UUID,
    ) -> Tuple[ProjectRequest, Project, List[Task]]:
        """
        Approved → Converted.

        Materialises exactly one PLANNING project (title → name, description,
        priority, budget and proposed dates) plus one NOT_STARTED task per
        proposed task, and links request and project both ways.

        Returns (request, project, tasks); all unsaved.
        """
        if request.status == ProjectRequestStatus.CONVERTED:
            raise AlreadyConvertedError(request.id, request.converted_to_project_id)
        _guard("ProjectRequest", _REQUEST_TRANSITIONS, request.status, ProjectRequestStatus.CONVERTED)

        now = _utcnow()
        project = Project(
            name=request.title,
            description=request.description,
            priority=request.priority,
            budget=request.estimated_budget,
            status=ProjectStatus.PLANNING,
            start_date=request.proposed_start_date,
            target_completion_date=request.proposed_end_date or request.due_date,
            created_by_user_id=acting_user_id,
            converted_from_request_id=request.id,
            created_date=now,
            last_modified_date=now,
        )
        tasks = [
            Task(
                project_id=project.id,
                title=proposed.title,
                description=proposed.description,
                priority=Priority(proposed.priority),
                estimated_hours=proposed.estimated_hours,
                due_date=proposed.due_date,
                created_by_user_id=acting_user_id,
                created_date=now,
                last_modified_date=now,
            )
            for proposed in request.proposed_tasks
        ]

        request.status = ProjectRequestStatus.CONVERTED
        request.converted_to_project_id = project.id
        request.last_modified_date = now
        return request, project, tasks


# ---------------------------------------------------------------------------
# ProjectService
# ---------------------------------------------------------------------------

_PROJECT_TRANSITIONS: Dict[Enum, frozenset] = {
    ProjectStatus.PLANNING: frozenset({ProjectStatus.ACTIVE, ProjectStatus.CANCELLED}),
    ProjectStatus.ACTIVE: frozenset({
        ProjectStatus.ON_HOLD, ProjectStatus.COMPLETED, ProjectStatus.CANCELLED,
    }),
    ProjectStatus.ON_HOLD: frozenset({ProjectStatus.ACTIVE, ProjectStatus.CANCELLED}),
}


def is_project_overdue(project: Project, today: date) -> bool:
    return (
        project.target_completion_date is not None
        and project.target_completion_date < today
        and project.status not in TERMINAL_PROJECT_STATUSES
    )


class ProjectService:
    """
    Planning → Active ⇄ OnHold ; Active → Completed ;
    Planning / Active / OnHold → Cancelled
    """

    def activate(self, project: Project) -> Project:
        _guard("Project", _PROJECT_TRANSITIONS, project.status, ProjectStatus.ACTIVE)
        if project.status == ProjectStatus.PLANNING and project.start_date is None:
            project.start_date = _utcnow().date()
        project.status = ProjectStatus.ACTIVE
        project.last_modified_date = _utcnow()
        return project

    def put_on_hold(self, project: Project) -> Project:
        if project.status != ProjectStatus.ACTIVE:
            raise IllegalTransitionError("Project", project.status, ProjectStatus.ON_HOLD)
        project.status = ProjectStatus.ON_HOLD
        project.last_modified_date = _utcnow()
        return project

    def resume(self, project: Project) -> Project:
        if project.status != ProjectStatus.ON_HOLD:
            raise IllegalTransitionError("Project", project.status, ProjectStatus.ACTIVE)
        project.status = ProjectStatus.ACTIVE
        project.last_modified_date = _utcnow()
        return project

    def complete(self, project: Project, tasks: List[Task]) -> Project:
        """
        Active → Completed.  Every owned task must already be COMPLETED or
        CANCELLED; otherwise IncompleteWorkError lists the open ones.
        """
        _guard("Project", _PROJECT_TRANSITIONS, project.status, ProjectStatus.COMPLETED)
        blocking = [
            t.id for t in tasks
            if t.project_id == project.id and t.status not in TERMINAL_TASK_STATUSES
        ]
        if blocking:
            raise IncompleteWorkError(project.id, blocking)
        now = _utcnow()
        project.status = ProjectStatus.COMPLETED
        project.actual_completion_date = now
        project.last_modified_date = now
        return project

    def cancel(self, project: Project) -> Project:
        _guard("Project", _PROJECT_TRANSITIONS, project.status, ProjectStatus.CANCELLED)
        project.status = ProjectStatus.CANCELLED
        project.last_modified_date = _utcnow()
        return project

    def assign_project_manager(self, project: Project, manager: User) -> Project:
        if project.status in TERMINAL_PROJECT_STATUSES:
            raise DomainError(
                f"Cannot assign a manager to a {project.status.value} project."
            )
        if not manager.is_active:
            raise ValidationError({"manager_id": f"User {manager.id} is inactive"})
        project.project_manager_user_id = manager.id
        project.last_modified_date = _utcnow()
        return project


# ---------------------------------------------------------------------------
# TaskService
# ---------------------------------------------------------------------------

_TASK_TRANSITIONS: Dict[Enum, frozenset] = {
    TaskStatus.NOT_STARTED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset({
        TaskStatus.BLOCKED, TaskStatus.COMPLETED, TaskStatus.CANCELLED,
    }),
    TaskStatus.BLOCKED: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
}


def is_task_overdue(task: Task, today: date) -> bool:
    return (
        task.due_date is not None
        and task.due_date < today
        and task.status not in TERMINAL_TASK_STATUSES
    )


class TaskService:
    """
    Task status machine:

        NotStarted → InProgress ⇄ Blocked
        InProgress → Completed
        any non-terminal → Cancelled

    Entering InProgress requires an individual assignee.
    Entering Blocked requires a reason in the same call.
    """

    def create_task(
        self,
        project: Project,
        title: str,
        description: str,
        priority,
        created_by_user_id: uuid.UUID,
        estimated_hours: Optional[float] = None,
        due_date: Optional[date] = None,
    ) -> Task:
        if project.status in TERMINAL_PROJECT_STATUSES:
            raise DomainError(
                f"Tasks cannot be added to a {project.status.value} project."
            )
        coerced = validate_task_fields(title, description, priority, estimated_hours)
        now = _utcnow()
        # adding a task is a write to its project
        project.last_modified_date = now
        return Task(
            project_id=project.id,
            title=title,
            description=description or "",
            priority=coerced,
            created_by_user_id=created_by_user_id,
            estimated_hours=estimated_hours,
            due_date=due_date,
            created_date=now,
            last_modified_date=now,
        )

    def update_task(
        self,
        task: Task,
        title: Optional[str] = None,
        description: Optional[str] = None,
        priority=None,
        estimated_hours: Optional[float] = None,
        due_date: Optional[date] = None,
    ) -> Task:
        self._require_open(task, "Edit")
        coerced = validate_task_fields(
            title if title is not None else task.title,
            description if description is not None else task.description,
            priority if priority is not None else task.priority,
            estimated_hours if estimated_hours is not None else task.estimated_hours,
        )
        if title is not None:
            task.title = title
        if description is not None:
            task.description = description
        task.priority = coerced
        if estimated_hours is not None:
            task.estimated_hours = estimated_hours
        if due_date is not None:
            task.due_date = due_date
        task.last_modified_date = _utcnow()
        return task

    # --- Status transitions -------------------------------------------------

    def start(self, task: Task, acting_user_id: uuid.UUID) -> Task:
        _guard("Task", _TASK_TRANSITIONS, task.status, TaskStatus.IN_PROGRESS)
        if task.status != TaskStatus.NOT_STARTED:
            raise IllegalTransitionError("Task", task.status, "Start")
        self._require_assignee(task)
        now = _utcnow()
        task.status = TaskStatus.IN_PROGRESS
        task.started_date = now
        task.started_by_user_id = acting_user_id
        task.last_modified_date = now
        return task

    def block(self, task: Task, reason: Optional[str]) -> Task:
        _guard("Task", _TASK_TRANSITIONS, task.status, TaskStatus.BLOCKED)
        errors: Dict[str, str] = {}
        _require_text(errors, "blocked_reason", reason, "A blocked reason")
        _raise_if(errors)
        now = _utcnow()
        task.status = TaskStatus.BLOCKED
        task.blocked_reason = reason
        task.blocked_date = now
        task.last_modified_date = now
        return task

    def unblock(self, task: Task) -> Task:
        if task.status != TaskStatus.BLOCKED:
            raise IllegalTransitionError("Task", task.status, "Unblock")
        self._require_assignee(task)
        task.status = TaskStatus.IN_PROGRESS
        task.blocked_reason = None
        task.blocked_date = None
        task.last_modified_date = _utcnow()
        return task

    def complete(
        self,
        task: Task,
        acting_user_id: uuid.UUID,
        resolution_notes: Optional[str] = None,
    ) -> Task:
        _guard("Task", _TASK_TRANSITIONS, task.status, TaskStatus.COMPLETED)
        now = _utcnow()
        task.status = TaskStatus.COMPLETED
        task.completed_date = now
        task.completed_by_user_id = acting_user_id
        if resolution_notes:
            task.resolution_notes = resolution_notes
        task.last_modified_date = now
        return task

    def cancel(self, task: Task) -> Task:
        _guard("Task", _TASK_TRANSITIONS, task.status, TaskStatus.CANCELLED)
        task.status = TaskStatus.CANCELLED
        task.blocked_reason = None
        task.blocked_date = None
        task.last_modified_date = _utcnow()
        return task

    def change_status(
        self,
        task: Task,
        target: TaskStatus,
        acting_user_id: uuid.UUID,
        blocked_reason: Optional[str] = None,
        resolution_notes: Optional[str] = None,
    ) -> Task:
        """Dispatch a generic status change to the matching transition."""
        target = TaskStatus(target)
        if target == TaskStatus.IN_PROGRESS:
            if task.status == TaskStatus.BLOCKED:
                return self.unblock(task)
            return self.start(task, acting_user_id)
        if target == TaskStatus.BLOCKED:
            return self.block(task, blocked_reason)
        if target == TaskStatus.COMPLETED:
            return self.complete(task, acting_user_id, resolution_notes)
        if target == TaskStatus.CANCELLED:
            return self.cancel(task)
        raise IllegalTransitionError("Task", task.status, target)

    # --- Time & notes -------------------------------------------------------

    def log_time(self, task: Task, hours: float) -> Task:
        if task.status not in (TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED):
            raise IllegalTransitionError("Task", task.status, "LogTime")
        if hours is None or hours <= 0:
            raise ValidationError({"hours": "Logged hours must be greater than zero"})
        task.actual_hours = (task.actual_hours or 0.0) + hours
        task.last_modified_date = _utcnow()
        return task

    def update_implementation_notes(self, task: Task, notes: Optional[str]) -> Task:
        self._require_open(task, "UpdateNotes")
        errors: Dict[str, str] = {}
        _check_max_length(errors, "notes", notes, LONG_TEXT_LENGTH[1], "Notes")
        _raise_if(errors)
        task.implementation_notes = notes
        task.last_modified_date = _utcnow()
        return task

    def update_resolution_notes(self, task: Task, notes: Optional[str]) -> Task:
        """Allowed until the task is cancelled, so a completed task can be annotated."""
        if task.status == TaskStatus.CANCELLED:
            raise IllegalTransitionError("Task", task.status, "UpdateResolutionNotes")
        errors: Dict[str, str] = {}
        _check_max_length(errors, "resolution_notes", notes, LONG_TEXT_LENGTH[1], "Resolution notes")
        _raise_if(errors)
        task.resolution_notes = notes
        task.last_modified_date = _utcnow()
        return task

    # --- Checklist ----------------------------------------------------------

    def add_checklist_item(
        self,
        task: Task,
        description: str,
        order: Optional[int] = None,
    ) -> ChecklistItem:
        self._require_open(task, "AddChecklistItem")
        errors: Dict[str, str] = {}
        _require_text(errors, "description", description, "Description")
        if "description" not in errors:
            _check_length(errors, "description", description.strip(), CHECKLIST_ITEM_LENGTH, "Description")
        if order is not None and order < 0:
            errors["order"] = "Order must not be negative"
        _raise_if(errors)
        if order is None:
            order = max((i.order for i in task.checklist), default=-1) + 1
        now = _utcnow()
        item = ChecklistItem(description=description.strip(), order=order, created_date=now)
        task.checklist.append(item)
        task.last_modified_date = now
        return item

    def toggle_checklist_item(
        self,
        task: Task,
        item: ChecklistItem,
        acting_user_id: uuid.UUID,
    ) -> ChecklistItem:
        """Flip completion; completing stamps who and when, reopening clears both."""
        self._require_open(task, "ToggleChecklistItem")
        now = _utcnow()
        item.is_completed = not item.is_completed
        if item.is_completed:
            item.completed_by_user_id = acting_user_id
            item.completed_date = now
        else:
            item.completed_by_user_id = None
            item.completed_date = None
        task.last_modified_date = now
        return item

    @staticmethod
    def checklist(task: Task) -> List[ChecklistItem]:
        return sorted(task.checklist, key=lambda i: (i.order, _as_utc(i.created_date), str(i.id)))

    # --- Timeline -----------------------------------------------------------

    def record_activity(
        self,
        task: Task,
        activity_type: TaskActivityType,
        user_id: uuid.UUID,
        description: str,
        details: Optional[str] = None,
    ) -> TaskActivity:
        return TaskActivity(
            task_id=task.id,
            activity_type=activity_type,
            description=description,
            details=details,
            user_id=user_id,
            timestamp=_utcnow(),
        )

    def timeline(self, activities: List[TaskActivity]) -> List[TaskActivity]:
        """Oldest first; entries with equal timestamps keep recording order."""
        return sorted(activities, key=lambda a: _as_utc(a.timestamp))

    # --- Private helpers ----------------------------------------------------

    @staticmethod
    def _require_open(task: Task, action: str) -> None:
        if task.status in TERMINAL_TASK_STATUSES:
            raise IllegalTransitionError("Task", task.status, action)

    @staticmethod
    def _require_assignee(task: Task) -> None:
        if task.assigned_to_user_id is None:
            raise UnassignedError(
                f"Task {task.id} has no individual assignee and cannot be In Progress."
            )


# ---------------------------------------------------------------------------
# AssignmentService
# ---------------------------------------------------------------------------

class AssignmentService:
    """
    Routes tasks:

        unassigned ──assign_to_department──▶ department pool ──claim──▶ claimed
                    ──assign_to_user (direct)─────────────────────────▶ assigned

    Re-routing to a department always returns the task to that department's
    pool, dropping any individual owner.  `unassign` clears both fields and
    is legal from any status.
    """

    def assign_to_department(self, task: Task, department: Department) -> Task:
        TaskService._require_open(task, "AssignToDepartment")
        if not department.is_active:
            raise ValidationError(
                {"department_id": f"Department '{department.name}' is inactive"}
            )
        task.assigned_to_department_id = department.id
        task.assigned_to_user_id = None
        task.last_modified_date = _utcnow()
        return task

    def assign_to_user(self, task: Task, user: User, direct: bool = False) -> Task:
        """
        Give the task to an individual, leaving its department untouched.
        Without a department this is only allowed as a direct override.
        """
        TaskService._require_open(task, "AssignToUser")
        if task.assigned_to_department_id is None and not direct:
            raise ValidationError({
                "department_id": (
                    "Route the task to a department first, or make a direct assignment"
                )
            })
        if not user.is_active:
            raise ValidationError({"user_id": f"User {user.id} is inactive"})
        task.assigned_to_user_id = user.id
        task.last_modified_date = _utcnow()
        return task

    def claim(self, task: Task, user: User) -> Task:
        """Take an unclaimed task out of its department pool."""
        TaskService._require_open(task, "Claim")
        if task.assigned_to_department_id is None:
            raise NotClaimableError(
                f"Task {task.id} is not in a department pool and cannot be claimed."
            )
        if task.assigned_to_user_id is not None:
            raise NotClaimableError(
                f"Task {task.id} has already been claimed by user {task.assigned_to_user_id}."
            )
        if not user.is_active:
            raise ValidationError({"user_id": f"User {user.id} is inactive"})
        task.assigned_to_user_id = user.id
        task.last_modified_date = _utcnow()
        return task

    def unassign(self, task: Task) -> Task:
        task.assigned_to_department_id = None
        task.assigned_to_user_id = None
        task.last_modified_date = _utcnow()
        return task

    @staticmethod
    def department_pool(tasks: List[Task], department_id: uuid.UUID) -> List[Task]:
        """Open tasks routed to the department that nobody has claimed yet."""
        return sorted(
            (
                t for t in tasks
                if t.assigned_to_department_id == department_id
                and t.assigned_to_user_id is None
                and t.status not in TERMINAL_TASK_STATUSES
            ),
            key=lambda t: (t.due_date or date.max, str(t.id)),
        )


# ---------------------------------------------------------------------------
# DepartmentService / UserService
# ---------------------------------------------------------------------------

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class DepartmentService:
    def create_department(
        self,
        name: str,
        description: str = "",
        department_manager_user_id: Optional[uuid.UUID] = None,
        existing: Sequence[Department] = (),
    ) -> Department:
        errors: Dict[str, str] = {}
        _check_length(errors, "name", (name or "").strip(), NAME_LENGTH, "Department name")
        _check_max_length(errors, "description", description, 500, "Description")
        if any(d.name.casefold() == (name or "").strip().casefold() for d in existing):
            errors["name"] = f"A department named '{name}' already exists"
        _raise_if(errors)
        now = _utcnow()
        return Department(
            name=name.strip(),
            description=description or "",
            department_manager_user_id=department_manager_user_id,
            is_active=True,
            created_at=now,
            updated_at=now,
        )

    def update_department(
        self,
        department: Department,
        name: Optional[str] = None,
        description: Optional[str] = None,
        department_manager_user_id: Optional[uuid.UUID] = None,
        is_active: Optional[bool] = None,
        existing: Sequence[Department] = (),
    ) -> Department:
        errors: Dict[str, str] = {}
        if name is not None:
            _check_length(errors, "name", name.strip(), NAME_LENGTH, "Department name")
            if any(
                d.id != department.id and d.name.casefold() == name.strip().casefold()
                for d in existing
            ):
                errors["name"] = f"A department named '{name}' already exists"
        _check_max_length(errors, "description", description, 500, "Description")
        _raise_if(errors)
        if name is not None:
            department.name = name.strip()
        if description is not None:
            department.description = description
        if department_manager_user_id is not None:
            department.department_manager_user_id = department_manager_user_id
        if is_active is not None:
            department.is_active = is_active
        department.updated_at = _utcnow()
        return department


class UserService:
    def create_user(
        self,
        full_name: str,
        email: str,
        department_id: Optional[uuid.UUID] = None,
    ) -> User:
        errors: Dict[str, str] = {}
        _require_text(errors, "full_name", full_name, "Full name")
        if not _EMAIL_RE.match(email or ""):
            errors["email"] = f"'{email}' does not appear to be a valid email address"
        _raise_if(errors)
        return User(
            full_name=full_name.strip(),
            email=email.strip().lower(),
            department_id=department_id,
            created_at=_utcnow(),
        )

    def assign_department(self, user: User, department: Department) -> User:
        if not department.is_active:
            raise ValidationError(
                {"department_id": f"Department '{department.name}' is inactive"}
            )
        user.department_id = department.id
        return user


# ---------------------------------------------------------------------------
# ChangeRequestService
# ---------------------------------------------------------------------------

_CHANGE_TRANSITIONS: Dict[Enum, frozenset] = {
    ChangeRequestStatus.DRAFT: frozenset({
        ChangeRequestStatus.PENDING, ChangeRequestStatus.CANCELLED,
    }),
    ChangeRequestStatus.PENDING: frozenset({
        ChangeRequestStatus.IN_REVIEW, ChangeRequestStatus.CANCELLED,
    }),
    ChangeRequestStatus.IN_REVIEW: frozenset({
        ChangeRequestStatus.APPROVED,
        ChangeRequestStatus.DENIED,
        ChangeRequestStatus.CANCELLED,
    }),
    ChangeRequestStatus.APPROVED: frozenset({
        ChangeRequestStatus.SCHEDULED, ChangeRequestStatus.CANCELLED,
    }),
    ChangeRequestStatus.SCHEDULED: frozenset({
        ChangeRequestStatus.EXECUTING, ChangeRequestStatus.CANCELLED,
    }),
    ChangeRequestStatus.EXECUTING: frozenset({
        ChangeRequestStatus.COMPLETED, ChangeRequestStatus.FAILED,
    }),
    ChangeRequestStatus.FAILED: frozenset({ChangeRequestStatus.ROLLED_BACK}),
}


def outcome_of(cr: ChangeRequest) -> Optional[ChangeOutcome]:
    """Execution outcome class, or None while the change has no outcome."""
    return {
        ChangeRequestStatus.COMPLETED: ChangeOutcome.SUCCESSFUL,
        ChangeRequestStatus.FAILED: ChangeOutcome.FAILED,
        ChangeRequestStatus.ROLLED_BACK: ChangeOutcome.ROLLED_BACK,
    }.get(cr.status)


def decision_date(cr: ChangeRequest) -> Optional[datetime]:
    """When the change reached its current outcome."""
    outcome = outcome_of(cr)
    if outcome == ChangeOutcome.SUCCESSFUL:
        return cr.completed_date
    if outcome == ChangeOutcome.FAILED:
        return cr.failed_date
    if outcome == ChangeOutcome.ROLLED_BACK:
        return cr.rolled_back_date
    return None


class ChangeRequestService:
    """
    Enforces the change workflow.

        Draft → Pending → InReview → Approved → Scheduled → Executing
                                   ↘ Denied                ↘ Completed
                                                           ↘ Failed → RolledBack
        Draft / Pending / InReview / Approved / Scheduled → Cancelled
    """

    def create_change_request(
        self,
        title: str,
        description: str,
        change_type,
        priority,
        risk_level,
        impact_assessment: str,
        rollback_plan: str,
        affected_systems: str,
        created_by_user_id: uuid.UUID,
    ) -> ChangeRequest:
        ct, pr, rl = validate_change_request_fields(
            title, description, change_type, priority, risk_level,
            impact_assessment, rollback_plan, affected_systems,
        )
        now = _utcnow()
        return ChangeRequest(
            title=title,
            description=description,
            change_type=ct,
            priority=pr,
            risk_level=rl,
            impact_assessment=impact_assessment,
            rollback_plan=rollback_plan,
            affected_systems=affected_systems,
            status=ChangeRequestStatus.DRAFT,
            created_by_user_id=created_by_user_id,
            created_date=now,
            last_modified_date=now,
        )

    def update_change_request(self, cr: ChangeRequest, **changes) -> ChangeRequest:
        """Edit any form field of a DRAFT change; None values are ignored."""
        if cr.status != ChangeRequestStatus.DRAFT:
            raise IllegalTransitionError("ChangeRequest", cr.status, "Edit")
        fields = (
            "title", "description", "change_type", "priority", "risk_level",
            "impact_assessment", "rollback_plan", "affected_systems",
        )
        unknown = set(changes) - set(fields)
        if unknown:
            raise ValidationError({k: "Unknown field" for k in unknown})
        merged = {
            f: changes[f] if changes.get(f) is not None else getattr(cr, f)
            for f in fields
        }
        ct, pr, rl = validate_change_request_fields(**merged)
        merged.update(change_type=ct, priority=pr, risk_level=rl)
        for key, value in merged.items():
            setattr(cr, key, value)
        cr.last_modified_date = _utcnow()
        return cr

    def submit(self, cr: ChangeRequest) -> ChangeRequest:
        self._guard(cr, ChangeRequestStatus.PENDING)
        validate_change_request_fields(
            cr.title, cr.description, cr.change_type, cr.priority, cr.risk_level,
            cr.impact_assessment, cr.rollback_plan, cr.affected_systems,
        )
        now = _utcnow()
        cr.status = ChangeRequestStatus.PENDING
        cr.submitted_date = now
        cr.last_modified_date = now
        return cr

    def begin_review(self, cr: ChangeRequest, reviewer_id: uuid.UUID) -> ChangeRequest:
        self._guard(cr, ChangeRequestStatus.IN_REVIEW)
        cr.status = ChangeRequestStatus.IN_REVIEW
        cr.reviewed_by_user_id = reviewer_id
        cr.last_modified_date = _utcnow()
        return cr

    def approve(
        self,
        cr: ChangeRequest,
        reviewer_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> ChangeRequest:
        self._guard(cr, ChangeRequestStatus.APPROVED)
        now = _utcnow()
        cr.status = ChangeRequestStatus.APPROVED
        cr.approved_date = now
        cr.approved_by_user_id = reviewer_id
        cr.approval_notes = notes or ""
        cr.last_modified_date = now
        return cr

    def deny(self, cr: ChangeRequest, reviewer_id: uuid.UUID, reason: str) -> ChangeRequest:
        self._guard(cr, ChangeRequestStatus.DENIED)
        errors: Dict[str, str] = {}
        _require_text(errors, "reason", reason, "A denial reason")
        _raise_if(errors)
        now = _utcnow()
        cr.status = ChangeRequestStatus.DENIED
        cr.denied_date = now
        cr.reviewed_by_user_id = reviewer_id
        cr.denial_reason = reason
        cr.last_modified_date = now
        return cr

    def schedule(
        self,
        cr: ChangeRequest,
        scheduled_start_date: datetime,
        scheduled_end_date: datetime,
        change_window: str,
    ) -> ChangeRequest:
        self._guard(cr, ChangeRequestStatus.SCHEDULED)
        errors: Dict[str, str] = {}
        if _as_utc(scheduled_end_date) <= _as_utc(scheduled_start_date):
            errors["scheduled_end_date"] = "Scheduled end must be after scheduled start"
        _require_text(errors, "change_window", change_window, "A change window")
        _raise_if(errors)
        cr.status = ChangeRequestStatus.SCHEDULED
        cr.scheduled_start_date = _as_utc(scheduled_start_date)
        cr.scheduled_end_date = _as_utc(scheduled_end_date)
        cr.change_window = change_window
        cr.last_modified_date = _utcnow()
        return cr

    def start_execution(self, cr: ChangeRequest) -> ChangeRequest:
        self._guard(cr, ChangeRequestStatus.EXECUTING)
        now = _utcnow()
        cr.status = ChangeRequestStatus.EXECUTING
        cr.actual_start_date = now
        cr.last_modified_date = now
        return cr

    def complete(self, cr: ChangeRequest, notes: Optional[str] = None) -> ChangeRequest:
        self._guard(cr, ChangeRequestStatus.COMPLETED)
        now = _utcnow()
        cr.status = ChangeRequestStatus.COMPLETED
        cr.actual_end_date = now
        cr.completed_date = now
        if notes:
            cr.implementation_notes = notes
        cr.last_modified_date = now
        return cr

    def mark_failed(self, cr: ChangeRequest, reason: Optional[str] = None) -> ChangeRequest:
        self._guard(cr, ChangeRequestStatus.FAILED)
        now = _utcnow()
        cr.status = ChangeRequestStatus.FAILED
        cr.actual_end_date = now
        cr.failed_date = now
        cr.failure_reason = reason
        cr.last_modified_date = now
        return cr

    def rollback(self, cr: ChangeRequest, reason: str) -> ChangeRequest:
        self._guard(cr, ChangeRequestStatus.ROLLED_BACK)
        errors: Dict[str, str] = {}
        _require_text(errors, "reason", reason, "A rollback reason")
        _raise_if(errors)
        now = _utcnow()
        cr.status = ChangeRequestStatus.ROLLED_BACK
        cr.rolled_back_date = now
        cr.rollback_reason = reason
        cr.last_modified_date = now
        return cr

    def cancel(self, cr: ChangeRequest, reason: Optional[str] = None) -> ChangeRequest:
        self._guard(cr, ChangeRequestStatus.CANCELLED)
        now = _utcnow()
        cr.status = ChangeRequestStatus.CANCELLED
        cr.cancelled_date = now
        cr.cancellation_reason = reason
        cr.last_modified_date = now
        return cr

    @staticmethod
    def _guard(cr: ChangeRequest, target: ChangeRequestStatus) -> None:
        _guard("ChangeRequest", _CHANGE_TRANSITIONS, cr.status, target)


# ---------------------------------------------------------------------------
# ChangeAnalyticsService
# ---------------------------------------------------------------------------

# Free-text affected systems are split on commas, semicolons, pipes and
# line breaks.  Names are compared case-insensitively after collapsing
# internal whitespace.
_SYSTEM_SEPARATORS = re.compile(r"[,;|\r\n]+")
_WHITESPACE = re.compile(r"\s+")


def parse_affected_systems(text: Optional[str]) -> Dict[str, str]:
    """
    Parse an affected-systems field into {normalised key: display name}.

    Duplicates within one field collapse to a single entry; when spellings
    differ only by case the alphabetically smallest one is kept.
    """
    systems: Dict[str, str] = {}
    for raw in _SYSTEM_SEPARATORS.split(text or ""):
        name = _WHITESPACE.sub(" ", raw).strip()
        if not name:
            continue
        key = name.casefold()
        systems[key] = min(systems.get(key, name), name)
    return systems


def _rate(successful: int, failed: int) -> float:
    """successful / (successful + failed) as a percentage; 0.0 when empty."""
    denominator = successful + failed
    return successful * 100.0 / denominator if denominator else 0.0


def _share(part: int, whole: int) -> float:
    return part * 100.0 / whole if whole else 0.0


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _hours_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return (_as_utc(end) - _as_utc(start)).total_seconds() / 3600.0


def _in_range(dt: datetime, start: Optional[date], end: Optional[date]) -> bool:
    day = _as_utc(dt).date()
    if start is not None and day < start:
        return False
    if end is not None and day > end:
        return False
    return True


def _trailing_months(today: date, months_back: int) -> List[Tuple[int, int]]:
    """(year, month) pairs ending at today's month, oldest first."""
    months = []
    year, month = today.year, today.month
    for _ in range(months_back):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(months))


class ChangeAnalyticsService:
    """
    Read-only analytics over a population of change requests.

    All methods are pure: same population in, same result out, regardless
    of the order the population is supplied in.
    """

    def filter_by_created(
        self,
        changes: Iterable[ChangeRequest],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[ChangeRequest]:
        return [c for c in changes if _in_range(c.created_date, start, end)]

    def metrics(
        self,
        changes: Iterable[ChangeRequest],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Dict:
        population = self.filter_by_created(changes, start, end)
        by_status: Dict[ChangeRequestStatus, int] = {s: 0 for s in ChangeRequestStatus}
        for c in population:
            by_status[c.status] += 1

        completed = by_status[ChangeRequestStatus.COMPLETED]
        failed = by_status[ChangeRequestStatus.FAILED]
        rolled_back = by_status[ChangeRequestStatus.ROLLED_BACK]
        approved_ever = sum(1 for c in population if c.approved_date is not None)
        denied = by_status[ChangeRequestStatus.DENIED]

        approval_hours = [
            h for h in (_hours_between(c.submitted_date, c.approved_date) for c in population)
            if h is not None
        ]
        completion_hours = [
            h for h in (
                _hours_between(c.actual_start_date, c.completed_date)
                for c in population if c.status == ChangeRequestStatus.COMPLETED
            )
            if h is not None
        ]

        def _tally(attr: str, enum_cls) -> Dict[str, int]:
            counts = {m.value.lower(): 0 for m in enum_cls}
            for c in population:
                counts[getattr(c, attr).value.lower()] += 1
            return counts

        return {
            "total_changes": len(population),
            "completed_changes": completed,
            "failed_changes": failed,
            "rolled_back_changes": rolled_back,
            "in_progress_changes": by_status[ChangeRequestStatus.EXECUTING],
            "scheduled_changes": by_status[ChangeRequestStatus.SCHEDULED],
            "pending_approval_changes": (
                by_status[ChangeRequestStatus.PENDING] + by_status[ChangeRequestStatus.IN_REVIEW]
            ),
            "success_rate": _rate(completed, failed + rolled_back),
            "rollback_rate": _share(rolled_back, completed + failed + rolled_back),
            "approval_rate": _rate(approved_ever, denied),
            "average_completion_time_hours": _mean(completion_hours),
            "average_approval_time_hours": _mean(approval_hours),
            "by_type": _tally("change_type", ChangeType),
            "by_risk": _tally("risk_level", RiskLevel),
            "by_priority": _tally("priority", Priority),
        }

    def success_rate(
        self,
        changes: Iterable[ChangeRequest],
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Dict:
        """
        Outcome split for the success-rate pie.  The three percentages share
        one denominator, so they sum to 100 whenever any outcome exists.
        """
        population = self.filter_by_created(changes, start, end)
        counts = {o: 0 for o in ChangeOutcome}
        by_type = {ct: {o: 0 for o in ChangeOutcome} for ct in ChangeType}
        for c in population:
            outcome = outcome_of(c)
            if outcome is None:
                continue
            counts[outcome] += 1
            by_type[c.change_type][outcome] += 1

        successful = counts[ChangeOutcome.SUCCESSFUL]
        failed = counts[ChangeOutcome.FAILED]
        rolled_back = counts[ChangeOutcome.ROLLED_BACK]
        total = successful + failed + rolled_back

        type_rows = {}
        for ct, tally in by_type.items():
            ok = tally[ChangeOutcome.SUCCESSFUL]
            bad = tally[ChangeOutcome.FAILED] + tally[ChangeOutcome.ROLLED_BACK]
            type_rows[ct.value.lower()] = {
                "total": ok + bad,
                "successful": ok,
                "failed": bad,
                "success_percentage": _rate(ok, bad),
            }

        return {
            "total_changes": total,
            "successful_changes": successful,
            "failed_changes": failed,
            "rolled_back_changes": rolled_back,
            "success_percentage": _share(successful, total),
            "failure_percentage": _share(failed, total),
            "rollback_percentage": _share(rolled_back, total),
            "by_type": type_rows,
        }

    def monthly_trends(
        self,
        changes: Iterable[ChangeRequest],
        months_back: int = 12,
        now: Optional[datetime] = None,
    ) -> List[Dict]:
        """
        Outcomes bucketed by the calendar month of their decision date over a
        trailing window ending with the current month, oldest month first.
        Months without activity are present with zero counts.
        """
        if months_back < 1:
            raise ValidationError({"months_back": "months_back must be at least 1"})
        today = _as_utc(now or _utcnow()).date()
        window = _trailing_months(today, months_back)
        buckets = {
            ym: {o: 0 for o in ChangeOutcome} for ym in window
        }
        completion_hours: Dict[Tuple[int, int], List[float]] = {ym: [] for ym in window}

        for c in changes:
            outcome = outcome_of(c)
            decided = decision_date(c)
            if outcome is None or decided is None:
                continue
            decided = _as_utc(decided)
            ym = (decided.year, decided.month)
            if ym not in buckets:
                continue
            buckets[ym][outcome] += 1
            if outcome == ChangeOutcome.SUCCESSFUL:
                hours = _hours_between(c.actual_start_date, c.completed_date)
                if hours is not None:
                    completion_hours[ym].append(hours)

        rows = []
        for year, month in window:
            tally = buckets[(year, month)]
            completed = tally[ChangeOutcome.SUCCESSFUL]
            failed = tally[ChangeOutcome.FAILED]
            rolled_back = tally[ChangeOutcome.ROLLED_BACK]
            rows.append({
                "year": year,
                "month": month,
                "month_name": f"{calendar.month_abbr[month]} {year}",
                "total_changes": completed + failed + rolled_back,
                "completed": completed,
                "failed": failed,
                "rolled_back": rolled_back,
                "success_rate": _rate(completed, failed + rolled_back),
                "average_completion_time_hours": _mean(completion_hours[(year, month)]),
            })
        return rows

    def top_affected_systems(
        self,
        changes: Iterable[ChangeRequest],
        top_count: int = 10,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Dict]:
        """
        Rank systems by number of changes touching them (descending), ties
        broken alphabetically by normalised name, truncated to `top_count`.
        """
        if top_count < 1:
            raise ValidationError({"top_count": "top_count must be at least 1"})
        stats: Dict[str, Dict] = {}
        for c in self.filter_by_created(changes, start, end):
            outcome = outcome_of(c)
            for key, name in parse_affected_systems(c.affected_systems).items():
                row = stats.setdefault(key, {
                    "system_name": name,
                    "change_count": 0,
                    "successful_changes": 0,
                    "failed_changes": 0,
                    "last_change_date": None,
                })
                row["system_name"] = min(row["system_name"], name)
                row["change_count"] += 1
                if outcome == ChangeOutcome.SUCCESSFUL:
                    row["successful_changes"] += 1
                elif outcome in (ChangeOutcome.FAILED, ChangeOutcome.ROLLED_BACK):
                    row["failed_changes"] += 1
                created = _as_utc(c.created_date)
                if row["last_change_date"] is None or created > row["last_change_date"]:
                    row["last_change_date"] = created

        ranked = sorted(stats.items(), key=lambda kv: (-kv[1]["change_count"], kv[0]))
        rows = []
        for _, row in ranked[:top_count]:
            row["success_rate"] = _rate(row["successful_changes"], row["failed_changes"])
            rows.append(row)
        return rows


# ---------------------------------------------------------------------------
# DashboardService
# ---------------------------------------------------------------------------

def _most_recent(items: Iterable, page_size: int, stamp=lambda x: x.created_date) -> List:
    return sorted(items, key=lambda x: (_as_utc(stamp(x)), str(x.id)), reverse=True)[:page_size]


class DashboardService:
    """Derives the dashboard counters from the full entity population."""

    def build_stats(
        self,
        change_requests: List[ChangeRequest],
        project_requests: List[ProjectRequest],
        projects: List[Project],
        tasks: List[Task],
        current_user_id: Optional[uuid.UUID] = None,
        page_size: int = 5,
        now: Optional[datetime] = None,
    ) -> Dict:
        today = _as_utc(now or _utcnow()).date()
        return {
            "change_management": self._change_stats(change_requests, today),
            "project_management": self._project_stats(projects, project_requests, today),
            "task_management": self._task_stats(tasks, current_user_id, today),
            "recent_activity": {
                "recent_changes": [
                    {"id": c.id, "title": c.title, "status": c.status.value,
                     "created_date": c.created_date}
                    for c in _most_recent(change_requests, page_size)
                ],
                "recent_projects": [
                    {"id": p.id, "name": p.name, "status": p.status.value,
                     "created_date": p.created_date}
                    for p in _most_recent(projects, page_size)
                ],
                "recent_tasks": [
                    {"id": t.id, "title": t.title, "status": t.status.value,
                     "due_date": t.due_date}
                    for t in _most_recent(tasks, page_size)
                ],
            },
        }

    @staticmethod
    def _change_stats(changes: List[ChangeRequest], today: date) -> Dict:
        def count(*statuses: ChangeRequestStatus) -> int:
            return sum(1 for c in changes if c.status in statuses)

        completed = count(ChangeRequestStatus.COMPLETED)
        failed = count(ChangeRequestStatus.FAILED, ChangeRequestStatus.ROLLED_BACK)
        return {
            "total_changes": len(changes),
            "draft_changes": count(ChangeRequestStatus.DRAFT),
            "pending_approval": count(ChangeRequestStatus.PENDING, ChangeRequestStatus.IN_REVIEW),
            "approved": count(ChangeRequestStatus.APPROVED),
            "in_progress": count(ChangeRequestStatus.EXECUTING),
            "completed": completed,
            "failed": failed,
            "success_rate": _rate(completed, failed),
            "scheduled_today": sum(
                1 for c in changes
                if c.status == ChangeRequestStatus.SCHEDULED
                and c.scheduled_start_date is not None
                and _as_utc(c.scheduled_start_date).date() == today
            ),
        }

    @staticmethod
    def _project_stats(
        projects: List[Project],
        requests: List[ProjectRequest],
        today: date,
    ) -> Dict:
        def count(status: ProjectStatus) -> int:
            return sum(1 for p in projects if p.status == status)

        completed = count(ProjectStatus.COMPLETED)
        return {
            "total_projects": len(projects),
            "pending_requests": sum(
                1 for r in requests
                if r.status in (ProjectRequestStatus.PENDING, ProjectRequestStatus.IN_REVIEW)
            ),
            "active_projects": count(ProjectStatus.ACTIVE),
            "on_hold_projects": count(ProjectStatus.ON_HOLD),
            "completed_projects": completed,
            "overdue_projects": sum(1 for p in projects if is_project_overdue(p, today)),
            "completion_rate": _share(completed, len(projects)),
        }

    @staticmethod
    def _task_stats(
        tasks: List[Task],
        current_user_id: Optional[uuid.UUID],
        today: date,
    ) -> Dict:
        open_tasks = [t for t in tasks if t.status not in TERMINAL_TASK_STATUSES]
        completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED)
        return {
            "total_tasks": len(tasks),
            "open_tasks": len(open_tasks),
            "in_progress_tasks": sum(1 for t in tasks if t.status == TaskStatus.IN_PROGRESS),
            "completed_tasks": completed,
            "overdue_tasks": sum(1 for t in tasks if is_task_overdue(t, today)),
            "my_tasks": sum(
                1 for t in open_tasks
                if current_user_id is not None and t.assigned_to_user_id == current_user_id
            ),
            "due_today": sum(1 for t in open_tasks if t.due_date == today),
            "completion_rate": _share(completed, len(tasks)),
        }
