"""
application.py

Application layer for the APEX Operations Console.

Overview
--------
The application layer sits between the presentation layer (API / UI) and the
domain / service layer.  It is responsible for:

  1. Defining clean output DTOs (dataclasses) that carry only the data
     the presentation layer needs; no raw domain objects are leaked upward.
  2. Declaring abstract Repository interfaces so that the application layer
     remains fully persistence-agnostic (implementations live in infrastructure.py).
  3. Declaring the UnitOfWork abstraction so that multiple repository mutations
     inside a single use case are wrapped in one atomic transaction.
  4. Implementing Use Case handlers, one class per user-facing operation,
     that orchestrate service calls, repository reads/writes, and side-effects
     (task activity entries, transition logging) in the correct order.

Structure
---------
DTOs
    UserDTO, DepartmentDTO
    ProjectRequestDTO, ProposedTaskDTO, ConversionResultDTO
    ProjectDTO, TaskDTO, TaskActivityDTO, ChecklistItemDTO
    ChangeRequestDTO
    ChangeMetricsDTO, SuccessRateDTO, MonthlyTrendDTO, TopAffectedSystemDTO
    DashboardStatsDTO (+ nested section DTOs)

Repository interfaces
    AbstractUserRepository
    AbstractDepartmentRepository
    AbstractProjectRequestRepository
    AbstractProjectRepository
    AbstractTaskRepository
    AbstractTaskActivityRepository
    AbstractChangeRequestRepository

Unit of Work
    AbstractUnitOfWork

Use Cases
    --- Directory ---
    CreateUserUseCase, GetUserUseCase, ListUsersUseCase, AssignUserDepartmentUseCase
    CreateDepartmentUseCase, UpdateDepartmentUseCase, GetDepartmentUseCase,
    ListDepartmentsUseCase, ListDepartmentMembersUseCase, GetDepartmentPoolUseCase

    --- Project intake ---
    CreateProjectRequestUseCase, UpdateProjectRequestUseCase,
    GetProjectRequestUseCase, ListProjectRequestsUseCase,
    SubmitProjectRequestUseCase, BeginProjectRequestReviewUseCase,
    ApproveProjectRequestUseCase, DenyProjectRequestUseCase,
    CancelProjectRequestUseCase, ConvertProjectRequestUseCase

    --- Project delivery ---
    GetProjectUseCase, ListProjectsUseCase, ChangeProjectStatusUseCase,
    AssignProjectManagerUseCase, AddTaskUseCase, ListProjectTasksUseCase

    --- Tasks ---
    GetTaskUseCase, ListTasksUseCase, UpdateTaskUseCase, ChangeTaskStatusUseCase,
    LogTaskTimeUseCase, UpdateTaskNotesUseCase, UpdateResolutionNotesUseCase,
    GetTaskTimelineUseCase, ListChecklistUseCase, AddChecklistItemUseCase,
    ToggleChecklistItemUseCase

    --- Assignment ---
    AssignTaskToDepartmentUseCase, AssignTaskToUserUseCase,
    ClaimTaskUseCase, UnassignTaskUseCase

    --- Change management ---
    CreateChangeRequestUseCase, UpdateChangeRequestUseCase,
    GetChangeRequestUseCase, ListChangeRequestsUseCase,
    Submit / BeginReview / Approve / Deny / Schedule / StartExecution /
    Complete / MarkFailed / Rollback / Cancel ChangeRequestUseCase

    --- Reporting ---
    GetChangeMetricsUseCase, GetSuccessRateUseCase, GetMonthlyTrendsUseCase,
    GetTopAffectedSystemsUseCase, GetDashboardStatsUseCase

Design notes
------------
- Use cases receive commands and return DTOs only; no domain objects cross
  the application boundary.
- Each use case accepts a UnitOfWork as its sole dependency.  The UoW
  exposes all repositories and handles commit/rollback.
- All timestamps flowing out are ISO-8601 strings (UTC) for easy JSON
  serialisation.
- Errors bubble up as ApplicationError (lookup, authorization, concurrency)
  or as the service layer's DomainError subclasses (business rules).
- Every committed state transition is logged once at INFO.
"""

from __future__ import annotations

import abc
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from model import (
    TERMINAL_PROJECT_STATUSES,
    ChangeRequest,
    ChangeRequestStatus,
    ChecklistItem,
    Department,
    Project,
    ProjectRequest,
    ProjectRequestStatus,
    ProjectStatus,
    ProposedTask,
    Task,
    TaskActivity,
    TaskActivityType,
    TaskStatus,
    User,
)
from service import (
    AlreadyConvertedError,
    AssignmentService,
    ChangeAnalyticsService,
    ChangeRequestService,
    DashboardService,
    DepartmentService,
    DomainError,
    NotClaimableError,
    ProjectRequestService,
    ProjectService,
    TaskService,
    UserService,
    ValidationError,
    is_project_overdue,
    is_task_overdue,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ApplicationError(Exception):
    """Raised when a use case cannot complete for a non-domain reason."""


class NotFoundError(ApplicationError):
    """Raised when a requested entity does not exist."""


class AuthorizationError(ApplicationError):
    """Raised when the acting user may not perform the operation."""


class ConcurrencyConflictError(ApplicationError):
    """Raised on commit when an entity changed since it was read."""

    def __init__(self, entity: str, entity_id: uuid.UUID):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} {entity_id} was modified by another transaction; reload and retry."
        )


# ---------------------------------------------------------------------------
# Actor
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Actor:
    """The authenticated caller.  Roles are carried, never interpreted here."""
    user_id: uuid.UUID
    roles: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _fmt_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


def _id(value: Optional[uuid.UUID]) -> Optional[str]:
    return str(value) if value else None


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _log_transition(
    entity: str,
    entity_id: uuid.UUID,
    old_status,
    new_status,
    actor: Actor,
    event_type: str,
) -> None:
    old = getattr(old_status, "value", old_status)
    new = getattr(new_status, "value", new_status)
    logger.info(
        "%s %s: %s -> %s (actor %s)",
        entity, entity_id, old, new, actor.user_id,
        extra={
            "entity_id": str(entity_id),
            "actor_id": str(actor.user_id),
            "event_type": event_type,
        },
    )


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

# ---------------------------------------------------------------------------
# Directory DTOs
# ---------------------------------------------------------------------------

@dataclass
class UserDTO:
    id: str
    full_name: str
    email: str
    department_id: Optional[str]
    is_active: bool
    created_at: str


@dataclass
class DepartmentDTO:
    id: str
    name: str
    description: str
    department_manager_user_id: Optional[str]
    is_active: bool
    member_count: int
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Project intake DTOs
# ---------------------------------------------------------------------------

@dataclass
class ProposedTaskDTO:
    title: str
    description: str
    priority: str
    estimated_hours: Optional[float]
    due_date: Optional[str]


@dataclass
class ProjectRequestDTO:
    id: str
    title: str
    description: str
    business_justification: str
    status: str
    priority: str
    requesting_user_id: str
    due_date: Optional[str]
    estimated_budget: Optional[float]
    proposed_start_date: Optional[str]
    proposed_end_date: Optional[str]
    proposed_tasks: List[ProposedTaskDTO]
    submitted_date: Optional[str]
    reviewed_date: Optional[str]
    reviewed_by_user_id: Optional[str]
    review_notes: Optional[str]
    approval_date: Optional[str]
    approved_by_user_id: Optional[str]
    approval_notes: Optional[str]
    denial_reason: Optional[str]
    cancellation_reason: Optional[str]
    converted_to_project_id: Optional[str]
    created_date: str
    last_modified_date: str


# ---------------------------------------------------------------------------
# Project / Task DTOs
# ---------------------------------------------------------------------------

@dataclass
class ProjectDTO:
    id: str
    name: str
    description: str
    status: str
    priority: str
    budget: Optional[float]
    project_manager_user_id: Optional[str]
    start_date: Optional[str]
    target_completion_date: Optional[str]
    actual_completion_date: Optional[str]
    created_by_user_id: str
    converted_from_request_id: Optional[str]
    total_tasks: int
    completed_tasks: int
    is_overdue: bool
    created_date: str
    last_modified_date: str


@dataclass
class TaskDTO:
    id: str
    project_id: str
    title: str
    description: str
    status: str
    priority: str
    assigned_to_department_id: Optional[str]
    assigned_to_user_id: Optional[str]
    created_by_user_id: str
    estimated_hours: Optional[float]
    actual_hours: float
    due_date: Optional[str]
    started_date: Optional[str]
    started_by_user_id: Optional[str]
    completed_date: Optional[str]
    completed_by_user_id: Optional[str]
    blocked_reason: Optional[str]
    blocked_date: Optional[str]
    implementation_notes: Optional[str]
    resolution_notes: Optional[str]
    is_overdue: bool
    created_date: str
    last_modified_date: str


@dataclass
class TaskActivityDTO:
    id: str
    task_id: str
    activity_type: str
    description: str
    details: Optional[str]
    user_id: str
    timestamp: str


@dataclass
class ChecklistItemDTO:
    id: str
    task_id: str
    description: str
    order: int
    is_completed: bool
    completed_by_user_id: Optional[str]
    completed_date: Optional[str]
    created_date: str


@dataclass
class ConversionResultDTO:
    request: ProjectRequestDTO
    project: ProjectDTO
    tasks: List[TaskDTO]


# ---------------------------------------------------------------------------
# Change management DTOs
# ---------------------------------------------------------------------------

@dataclass
class ChangeRequestDTO:
    id: str
    title: str
    description: str
    change_type: str
    priority: str
    risk_level: str
    status: str
    requires_cab_approval: bool
    impact_assessment: str
    rollback_plan: str
    affected_systems: str
    submitted_date: Optional[str]
    reviewed_by_user_id: Optional[str]
    approved_date: Optional[str]
    approved_by_user_id: Optional[str]
    approval_notes: Optional[str]
    denied_date: Optional[str]
    denial_reason: Optional[str]
    scheduled_start_date: Optional[str]
    scheduled_end_date: Optional[str]
    change_window: Optional[str]
    actual_start_date: Optional[str]
    actual_end_date: Optional[str]
    implementation_notes: Optional[str]
    completed_date: Optional[str]
    failed_date: Optional[str]
    failure_reason: Optional[str]
    rolled_back_date: Optional[str]
    rollback_reason: Optional[str]
    cancelled_date: Optional[str]
    cancellation_reason: Optional[str]
    created_by_user_id: str
    created_date: str
    last_modified_date: str


# ---------------------------------------------------------------------------
# Reporting DTOs
# ---------------------------------------------------------------------------

@dataclass
class ChangeMetricsDTO:
    total_changes: int
    completed_changes: int
    failed_changes: int
    rolled_back_changes: int
    in_progress_changes: int
    scheduled_changes: int
    pending_approval_changes: int
    success_rate: float
    rollback_rate: float
    approval_rate: float
    average_completion_time_hours: float
    average_approval_time_hours: float
    by_type: Dict[str, int]
    by_risk: Dict[str, int]
    by_priority: Dict[str, int]


@dataclass
class ChangeTypeSuccessDTO:
    total: int
    successful: int
    failed: int
    success_percentage: float


@dataclass
class SuccessRateDTO:
    total_changes: int
    successful_changes: int
    failed_changes: int
    rolled_back_changes: int
    success_percentage: float
    failure_percentage: float
    rollback_percentage: float
    by_type: Dict[str, ChangeTypeSuccessDTO]


@dataclass
class MonthlyTrendDTO:
    year: int
    month: int
    month_name: str
    total_changes: int
    completed: int
    failed: int
    rolled_back: int
    success_rate: float
    average_completion_time_hours: float


@dataclass
class TopAffectedSystemDTO:
    system_name: str
    change_count: int
    successful_changes: int
    failed_changes: int
    success_rate: float
    last_change_date: Optional[str]


@dataclass
class ChangeManagementStatsDTO:
    total_changes: int
    draft_changes: int
    pending_approval: int
    approved: int
    in_progress: int
    completed: int
    failed: int
    success_rate: float
    scheduled_today: int


@dataclass
class ProjectManagementStatsDTO:
    total_projects: int
    pending_requests: int
    active_projects: int
    on_hold_projects: int
    completed_projects: int
    overdue_projects: int
    completion_rate: float


@dataclass
class TaskManagementStatsDTO:
    total_tasks: int
    open_tasks: int
    in_progress_tasks: int
    completed_tasks: int
    overdue_tasks: int
    my_tasks: int
    due_today: int
    completion_rate: float


@dataclass
class RecentChangeDTO:
    id: str
    title: str
    status: str
    created_date: str


@dataclass
class RecentProjectDTO:
    id: str
    name: str
    status: str
    created_date: str


@dataclass
class RecentTaskDTO:
    id: str
    title: str
    status: str
    due_date: Optional[str]


@dataclass
class RecentActivityDTO:
    recent_changes: List[RecentChangeDTO] = field(default_factory=list)
    recent_projects: List[RecentProjectDTO] = field(default_factory=list)
    recent_tasks: List[RecentTaskDTO] = field(default_factory=list)


@dataclass
class DashboardStatsDTO:
    change_management: ChangeManagementStatsDTO
    project_management: ProjectManagementStatsDTO
    task_management: TaskManagementStatsDTO
    recent_activity: RecentActivityDTO


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

class _Assembler:
    """Converts domain model instances into DTOs."""

    @staticmethod
    def user(u: User) -> UserDTO:
        return UserDTO(
            id=str(u.id),
            full_name=u.full_name,
            email=u.email,
            department_id=_id(u.department_id),
            is_active=u.is_active,
            created_at=_fmt(u.created_at),
        )

    @staticmethod
    def department(d: Department, member_count: int) -> DepartmentDTO:
        return DepartmentDTO(
            id=str(d.id),
            name=d.name,
            description=d.description,
            department_manager_user_id=_id(d.department_manager_user_id),
            is_active=d.is_active,
            member_count=member_count,
            created_at=_fmt(d.created_at),
            updated_at=_fmt(d.updated_at),
        )

    @staticmethod
    def project_request(r: ProjectRequest) -> ProjectRequestDTO:
        return ProjectRequestDTO(
            id=str(r.id),
            title=r.title,
            description=r.description,
            business_justification=r.business_justification,
            status=r.status.value,
            priority=r.priority.value,
            requesting_user_id=str(r.requesting_user_id),
            due_date=_fmt_date(r.due_date),
            estimated_budget=r.estimated_budget,
            proposed_start_date=_fmt_date(r.proposed_start_date),
            proposed_end_date=_fmt_date(r.proposed_end_date),
            proposed_tasks=[
                ProposedTaskDTO(
                    title=p.title,
                    description=p.description,
                    priority=getattr(p.priority, "value", p.priority),
                    estimated_hours=p.estimated_hours,
                    due_date=_fmt_date(p.due_date),
                )
                for p in r.proposed_tasks
            ],
            submitted_date=_fmt(r.submitted_date),
            reviewed_date=_fmt(r.reviewed_date),
            reviewed_by_user_id=_id(r.reviewed_by_user_id),
            review_notes=r.review_notes,
            approval_date=_fmt(r.approval_date),
            approved_by_user_id=_id(r.approved_by_user_id),
            approval_notes=r.approval_notes,
            denial_reason=r.denial_reason,
            cancellation_reason=r.cancellation_reason,
            converted_to_project_id=_id(r.converted_to_project_id),
            created_date=_fmt(r.created_date),
            last_modified_date=_fmt(r.last_modified_date),
        )

    @staticmethod
    def project(p: Project, tasks: List[Task], today: Optional[date] = None) -> ProjectDTO:
        owned = [t for t in tasks if t.project_id == p.id]
        return ProjectDTO(
            id=str(p.id),
            name=p.name,
            description=p.description,
            status=p.status.value,
            priority=p.priority.value,
            budget=p.budget,
            project_manager_user_id=_id(p.project_manager_user_id),
            start_date=_fmt_date(p.start_date),
            target_completion_date=_fmt_date(p.target_completion_date),
            actual_completion_date=_fmt(p.actual_completion_date),
            created_by_user_id=str(p.created_by_user_id),
            converted_from_request_id=_id(p.converted_from_request_id),
            total_tasks=len(owned),
            completed_tasks=sum(1 for t in owned if t.status == TaskStatus.COMPLETED),
            is_overdue=is_project_overdue(p, today or _today()),
            created_date=_fmt(p.created_date),
            last_modified_date=_fmt(p.last_modified_date),
        )

    @staticmethod
    def task(t: Task, today: Optional[date] = None) -> TaskDTO:
        return TaskDTO(
            id=str(t.id),
            project_id=str(t.project_id),
            title=t.title,
            description=t.description,
            status=t.status.value,
            priority=t.priority.value,
            assigned_to_department_id=_id(t.assigned_to_department_id),
            assigned_to_user_id=_id(t.assigned_to_user_id),
            created_by_user_id=str(t.created_by_user_id),
            estimated_hours=t.estimated_hours,
            actual_hours=t.actual_hours,
            due_date=_fmt_date(t.due_date),
            started_date=_fmt(t.started_date),
            started_by_user_id=_id(t.started_by_user_id),
            completed_date=_fmt(t.completed_date),
            completed_by_user_id=_id(t.completed_by_user_id),
            blocked_reason=t.blocked_reason,
            blocked_date=_fmt(t.blocked_date),
            implementation_notes=t.implementation_notes,
            resolution_notes=t.resolution_notes,
            is_overdue=is_task_overdue(t, today or _today()),
            created_date=_fmt(t.created_date),
            last_modified_date=_fmt(t.last_modified_date),
        )

    @staticmethod
    def task_activity(a: TaskActivity) -> TaskActivityDTO:
        return TaskActivityDTO(
            id=str(a.id),
            task_id=str(a.task_id),
            activity_type=a.activity_type.value,
            description=a.description,
            details=a.details,
            user_id=str(a.user_id),
            timestamp=_fmt(a.timestamp),
        )

    @staticmethod
    def checklist_item(task: Task, item: ChecklistItem) -> ChecklistItemDTO:
        return ChecklistItemDTO(
            id=str(item.id),
            task_id=str(task.id),
            description=item.description,
            order=item.order,
            is_completed=item.is_completed,
            completed_by_user_id=_id(item.completed_by_user_id),
            completed_date=_fmt(item.completed_date),
            created_date=_fmt(item.created_date),
        )

    @staticmethod
    def change_request(c: ChangeRequest) -> ChangeRequestDTO:
        return ChangeRequestDTO(
            id=str(c.id),
            title=c.title,
            description=c.description,
            change_type=c.change_type.value,
            priority=c.priority.value,
            risk_level=c.risk_level.value,
            status=c.status.value,
            requires_cab_approval=c.requires_cab_approval,
            impact_assessment=c.impact_assessment,
            rollback_plan=c.rollback_plan,
            affected_systems=c.affected_systems,
            submitted_date=_fmt(c.submitted_date),
            reviewed_by_user_id=_id(c.reviewed_by_user_id),
            approved_date=_fmt(c.approved_date),
            approved_by_user_id=_id(c.approved_by_user_id),
            approval_notes=c.approval_notes,
            denied_date=_fmt(c.denied_date),
            denial_reason=c.denial_reason,
            scheduled_start_date=_fmt(c.scheduled_start_date),
            scheduled_end_date=_fmt(c.scheduled_end_date),
            change_window=c.change_window,
            actual_start_date=_fmt(c.actual_start_date),
            actual_end_date=_fmt(c.actual_end_date),
            implementation_notes=c.implementation_notes,
            completed_date=_fmt(c.completed_date),
            failed_date=_fmt(c.failed_date),
            failure_reason=c.failure_reason,
            rolled_back_date=_fmt(c.rolled_back_date),
            rollback_reason=c.rollback_reason,
            cancelled_date=_fmt(c.cancelled_date),
            cancellation_reason=c.cancellation_reason,
            created_by_user_id=str(c.created_by_user_id),
            created_date=_fmt(c.created_date),
            last_modified_date=_fmt(c.last_modified_date),
        )

    @staticmethod
    def success_rate(data: Dict[str, Any]) -> SuccessRateDTO:
        by_type = {k: ChangeTypeSuccessDTO(**v) for k, v in data["by_type"].items()}
        return SuccessRateDTO(**{**data, "by_type": by_type})

    @staticmethod
    def top_system(row: Dict[str, Any]) -> TopAffectedSystemDTO:
        return TopAffectedSystemDTO(**{**row, "last_change_date": _fmt(row["last_change_date"])})

    @staticmethod
    def dashboard(data: Dict[str, Any]) -> DashboardStatsDTO:
        recent = data["recent_activity"]
        return DashboardStatsDTO(
            change_management=ChangeManagementStatsDTO(**data["change_management"]),
            project_management=ProjectManagementStatsDTO(**data["project_management"]),
            task_management=TaskManagementStatsDTO(**data["task_management"]),
            recent_activity=RecentActivityDTO(
                recent_changes=[
                    RecentChangeDTO(id=str(c["id"]), title=c["title"], status=c["status"],
                                    created_date=_fmt(c["created_date"]))
                    for c in recent["recent_changes"]
                ],
                recent_projects=[
                    RecentProjectDTO(id=str(p["id"]), name=p["name"], status=p["status"],
                                     created_date=_fmt(p["created_date"]))
                    for p in recent["recent_projects"]
                ],
                recent_tasks=[
                    RecentTaskDTO(id=str(t["id"]), title=t["title"], status=t["status"],
                                  due_date=_fmt_date(t["due_date"]))
                    for t in recent["recent_tasks"]
                ],
            ),
        )


# ===========================================================================
# REPOSITORY INTERFACES
# ===========================================================================

class AbstractUserRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, user_id: uuid.UUID) -> Optional[User]: ...
    @abc.abstractmethod
    def get_by_email(self, email: str) -> Optional[User]: ...
    @abc.abstractmethod
    def list_all(self) -> List[User]: ...
    @abc.abstractmethod
    def list_for_department(self, department_id: uuid.UUID) -> List[User]: ...
    @abc.abstractmethod
    def save(self, user: User) -> None: ...


class AbstractDepartmentRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, department_id: uuid.UUID) -> Optional[Department]: ...
    @abc.abstractmethod
    def list_all(self) -> List[Department]: ...
    @abc.abstractmethod
    def save(self, department: Department) -> None: ...


class AbstractProjectRequestRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, request_id: uuid.UUID) -> Optional[ProjectRequest]: ...
    @abc.abstractmethod
    def list_all(self) -> List[ProjectRequest]: ...
    @abc.abstractmethod
    def save(self, request: ProjectRequest) -> None: ...


class AbstractProjectRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, project_id: uuid.UUID) -> Optional[Project]: ...
    @abc.abstractmethod
    def list_all(self) -> List[Project]: ...
    @abc.abstractmethod
    def save(self, project: Project) -> None: ...


class AbstractTaskRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, task_id: uuid.UUID) -> Optional[Task]: ...
    @abc.abstractmethod
    def list_all(self) -> List[Task]: ...
    @abc.abstractmethod
    def list_for_project(self, project_id: uuid.UUID) -> List[Task]: ...
    @abc.abstractmethod
    def save(self, task: Task) -> None: ...


class AbstractTaskActivityRepository(abc.ABC):
    @abc.abstractmethod
    def list_for_task(self, task_id: uuid.UUID) -> List[TaskActivity]: ...
    @abc.abstractmethod
    def save(self, activity: TaskActivity) -> None: ...


class AbstractChangeRequestRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, cr_id: uuid.UUID) -> Optional[ChangeRequest]: ...
    @abc.abstractmethod
    def list_all(self) -> List[ChangeRequest]: ...
    @abc.abstractmethod
    def save(self, cr: ChangeRequest) -> None: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single transactional boundary.
    Use as a context manager:

        with uow:
            uow.tasks.save(task)
            uow.commit()

    commit() applies every buffered save or none of them, raising
    ConcurrencyConflictError if any entity changed since it was read.
    """
    users: AbstractUserRepository
    departments: AbstractDepartmentRepository
    project_requests: AbstractProjectRequestRepository
    projects: AbstractProjectRepository
    tasks: AbstractTaskRepository
    task_activities: AbstractTaskActivityRepository
    change_requests: AbstractChangeRequestRepository

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# SERVICE SINGLETONS (shared across use cases)
# ===========================================================================

_request_svc = ProjectRequestService()
_project_svc = ProjectService()
_task_svc = TaskService()
_assignment_svc = AssignmentService()
_department_svc = DepartmentService()
_user_svc = UserService()
_change_svc = ChangeRequestService()
_analytics_svc = ChangeAnalyticsService()
_dashboard_svc = DashboardService()


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

def _get_user_or_raise(uow: AbstractUnitOfWork, user_id: uuid.UUID) -> User:
    user = uow.users.get(user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found.")
    return user


def _get_department_or_raise(uow: AbstractUnitOfWork, department_id: uuid.UUID) -> Department:
    department = uow.departments.get(department_id)
    if department is None:
        raise NotFoundError(f"Department {department_id} not found.")
    return department


def _get_request_or_raise(uow: AbstractUnitOfWork, request_id: uuid.UUID) -> ProjectRequest:
    request = uow.project_requests.get(request_id)
    if request is None:
        raise NotFoundError(f"ProjectRequest {request_id} not found.")
    return request


def _get_project_or_raise(uow: AbstractUnitOfWork, project_id: uuid.UUID) -> Project:
    project = uow.projects.get(project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found.")
    return project


def _get_task_or_raise(uow: AbstractUnitOfWork, task_id: uuid.UUID) -> Task:
    task = uow.tasks.get(task_id)
    if task is None:
        raise NotFoundError(f"Task {task_id} not found.")
    return task


def _get_change_request_or_raise(uow: AbstractUnitOfWork, cr_id: uuid.UUID) -> ChangeRequest:
    cr = uow.change_requests.get(cr_id)
    if cr is None:
        raise NotFoundError(f"ChangeRequest {cr_id} not found.")
    return cr


def _department_dto(uow: AbstractUnitOfWork, department: Department) -> DepartmentDTO:
    return _Assembler.department(department, len(uow.users.list_for_department(department.id)))


def _project_dto(uow: AbstractUnitOfWork, project: Project) -> ProjectDTO:
    return _Assembler.project(project, uow.tasks.list_for_project(project.id))


def _record(
    uow: AbstractUnitOfWork,
    task: Task,
    activity_type: TaskActivityType,
    actor: Actor,
    description: str,
    details: Optional[str] = None,
) -> None:
    uow.task_activities.save(
        _task_svc.record_activity(task, activity_type, actor.user_id, description, details)
    )


# ===========================================================================
# USE CASES: DIRECTORY
# ===========================================================================

@dataclass
class CreateUserCommand:
    full_name: str
    email: str
    department_id: Optional[uuid.UUID] = None


class CreateUserUseCase:
    def execute(self, cmd: CreateUserCommand, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            if uow.users.get_by_email(cmd.email) is not None:
                raise ValidationError({"email": f"A user with email '{cmd.email}' already exists"})
            if cmd.department_id is not None:
                _get_department_or_raise(uow, cmd.department_id)
            user = _user_svc.create_user(cmd.full_name, cmd.email, cmd.department_id)
            uow.users.save(user)
            uow.commit()
            return _Assembler.user(user)


class GetUserUseCase:
    def execute(self, user_id: uuid.UUID, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            return _Assembler.user(_get_user_or_raise(uow, user_id))


class ListUsersUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[UserDTO]:
        with uow:
            users = sorted(uow.users.list_all(), key=lambda u: (u.full_name, str(u.id)))
            return [_Assembler.user(u) for u in users]


@dataclass
class AssignUserDepartmentCommand:
    user_id: uuid.UUID
    department_id: uuid.UUID


class AssignUserDepartmentUseCase:
    def execute(self, cmd: AssignUserDepartmentCommand, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            user = _get_user_or_raise(uow, cmd.user_id)
            department = _get_department_or_raise(uow, cmd.department_id)
            user = _user_svc.assign_department(user, department)
            uow.users.save(user)
            uow.commit()
            return _Assembler.user(user)


@dataclass
class CreateDepartmentCommand:
    name: str
    description: str = ""
    department_manager_user_id: Optional[uuid.UUID] = None


class CreateDepartmentUseCase:
    def execute(self, cmd: CreateDepartmentCommand, uow: AbstractUnitOfWork) -> DepartmentDTO:
        with uow:
            if cmd.department_manager_user_id is not None:
                _get_user_or_raise(uow, cmd.department_manager_user_id)
            department = _department_svc.create_department(
                name=cmd.name,
                description=cmd.description,
                department_manager_user_id=cmd.department_manager_user_id,
                existing=uow.departments.list_all(),
            )
            uow.departments.save(department)
            uow.commit()
            return _Assembler.department(department, 0)


@dataclass
class UpdateDepartmentCommand:
    department_id: uuid.UUID
    name: Optional[str] = None
    description: Optional[str] = None
    department_manager_user_id: Optional[uuid.UUID] = None
    is_active: Optional[bool] = None


class UpdateDepartmentUseCase:
    def execute(self, cmd: UpdateDepartmentCommand, uow: AbstractUnitOfWork) -> DepartmentDTO:
        with uow:
            department = _get_department_or_raise(uow, cmd.department_id)
            if cmd.department_manager_user_id is not None:
                _get_user_or_raise(uow, cmd.department_manager_user_id)
            department = _department_svc.update_department(
                department,
                name=cmd.name,
                description=cmd.description,
                department_manager_user_id=cmd.department_manager_user_id,
                is_active=cmd.is_active,
                existing=uow.departments.list_all(),
            )
            uow.departments.save(department)
            uow.commit()
            return _department_dto(uow, department)


class GetDepartmentUseCase:
    def execute(self, department_id: uuid.UUID, uow: AbstractUnitOfWork) -> DepartmentDTO:
        with uow:
            return _department_dto(uow, _get_department_or_raise(uow, department_id))


class ListDepartmentsUseCase:
    def execute(self, uow: AbstractUnitOfWork, include_inactive: bool = True) -> List[DepartmentDTO]:
        with uow:
            departments = sorted(uow.departments.list_all(), key=lambda d: d.name.casefold())
            return [
                _department_dto(uow, d) for d in departments
                if include_inactive or d.is_active
            ]


class ListDepartmentMembersUseCase:
    def execute(self, department_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[UserDTO]:
        with uow:
            _get_department_or_raise(uow, department_id)
            members = sorted(
                uow.users.list_for_department(department_id),
                key=lambda u: (u.full_name, str(u.id)),
            )
            return [_Assembler.user(u) for u in members]


class GetDepartmentPoolUseCase:
    """Open, unclaimed tasks routed to a department."""

    def execute(self, department_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[TaskDTO]:
        with uow:
            _get_department_or_raise(uow, department_id)
            pool = AssignmentService.department_pool(uow.tasks.list_all(), department_id)
            return [_Assembler.task(t) for t in pool]


# ===========================================================================
# USE CASES: PROJECT INTAKE
# ===========================================================================

@dataclass
class CreateProjectRequestCommand:
    title: str
    description: str
    business_justification: str
    priority: str
    actor: Actor
    due_date: Optional[date] = None
    estimated_budget: Optional[float] = None
    proposed_start_date: Optional[date] = None
    proposed_end_date: Optional[date] = None
    proposed_tasks: List[ProposedTask] = field(default_factory=list)


class CreateProjectRequestUseCase:
    def execute(self, cmd: CreateProjectRequestCommand, uow: AbstractUnitOfWork) -> ProjectRequestDTO:
        with uow:
            request = _request_svc.create_request(
                title=cmd.title,
                description=cmd.description,
                business_justification=cmd.business_justification,
                priority=cmd.priority,
                requesting_user_id=cmd.actor.user_id,
                due_date=cmd.due_date,
                estimated_budget=cmd.estimated_budget,
                proposed_start_date=cmd.proposed_start_date,
                proposed_end_date=cmd.proposed_end_date,
                proposed_tasks=cmd.proposed_tasks,
            )
            uow.project_requests.save(request)
            uow.commit()
            _log_transition("ProjectRequest", request.id, None, request.status,
                            cmd.actor, "project_request.created")
            return _Assembler.project_request(request)


@dataclass
class UpdateProjectRequestCommand:
    request_id: uuid.UUID
    actor: Actor
    title: Optional[str] = None
    description: Optional[str] = None
    business_justification: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[date] = None
    estimated_budget: Optional[float] = None
    proposed_start_date: Optional[date] = None
    proposed_end_date: Optional[date] = None
    proposed_tasks: Optional[List[ProposedTask]] = None


class UpdateProjectRequestUseCase:
    def execute(self, cmd: UpdateProjectRequestCommand, uow: AbstractUnitOfWork) -> ProjectRequestDTO:
        with uow:
            request = _get_request_or_raise(uow, cmd.request_id)
            request = _request_svc.update_request(
                request,
                title=cmd.title,
                description=cmd.description,
                business_justification=cmd.business_justification,
                priority=cmd.priority,
                due_date=cmd.due_date,
                estimated_budget=cmd.estimated_budget,
                proposed_start_date=cmd.proposed_start_date,
                proposed_end_date=cmd.proposed_end_date,
                proposed_tasks=cmd.proposed_tasks,
            )
            uow.project_requests.save(request)
            uow.commit()
            return _Assembler.project_request(request)


class GetProjectRequestUseCase:
    def execute(self, request_id: uuid.UUID, uow: AbstractUnitOfWork) -> ProjectRequestDTO:
        with uow:
            return _Assembler.project_request(_get_request_or_raise(uow, request_id))


class ListProjectRequestsUseCase:
    def execute(
        self,
        uow: AbstractUnitOfWork,
        requesting_user_id: Optional[uuid.UUID] = None,
        status: Optional[ProjectRequestStatus] = None,
    ) -> List[ProjectRequestDTO]:
        with uow:
            requests = [
                r for r in uow.project_requests.list_all()
                if (requesting_user_id is None or r.requesting_user_id == requesting_user_id)
                and (status is None or r.status == status)
            ]
            requests.sort(key=lambda r: (r.created_date, str(r.id)), reverse=True)
            return [_Assembler.project_request(r) for r in requests]


def _transition_request(
    uow: AbstractUnitOfWork,
    request_id: uuid.UUID,
    actor: Actor,
    event_type: str,
    apply: Callable[[ProjectRequest], ProjectRequest],
) -> ProjectRequestDTO:
    with uow:
        request = _get_request_or_raise(uow, request_id)
        old_status = request.status
        request = apply(request)
        uow.project_requests.save(request)
        uow.commit()
        _log_transition("ProjectRequest", request.id, old_status, request.status, actor, event_type)
        return _Assembler.project_request(request)


@dataclass
class ProjectRequestActionCommand:
    request_id: uuid.UUID
    actor: Actor
    notes: Optional[str] = None
    reason: Optional[str] = None


class SubmitProjectRequestUseCase:
    def execute(self, cmd: ProjectRequestActionCommand, uow: AbstractUnitOfWork) -> ProjectRequestDTO:
        return _transition_request(
            uow, cmd.request_id, cmd.actor, "project_request.submitted", _request_svc.submit,
        )


class BeginProjectRequestReviewUseCase:
    def execute(self, cmd: ProjectRequestActionCommand, uow: AbstractUnitOfWork) -> ProjectRequestDTO:
        return _transition_request(
            uow, cmd.request_id, cmd.actor, "project_request.review_started",
            lambda r: _request_svc.begin_review(r, cmd.actor.user_id, cmd.notes),
        )


class DenyProjectRequestUseCase:
    def execute(self, cmd: ProjectRequestActionCommand, uow: AbstractUnitOfWork) -> ProjectRequestDTO:
        return _transition_request(
            uow, cmd.request_id, cmd.actor, "project_request.denied",
            lambda r: _request_svc.deny(r, cmd.actor.user_id, cmd.reason),
        )


class CancelProjectRequestUseCase:
    """Only the requester may withdraw their own request."""

    def execute(self, cmd: ProjectRequestActionCommand, uow: AbstractUnitOfWork) -> ProjectRequestDTO:
        def _cancel(request: ProjectRequest) -> ProjectRequest:
            if request.requesting_user_id != cmd.actor.user_id:
                raise AuthorizationError(
                    f"Only the requester may cancel ProjectRequest {request.id}."
                )
            return _request_svc.cancel(request, cmd.reason)

        return _transition_request(
            uow, cmd.request_id, cmd.actor, "project_request.cancelled", _cancel,
        )


def _materialise(
    uow: AbstractUnitOfWork,
    request: ProjectRequest,
    actor: Actor,
) -> Tuple[ProjectRequest, Project, List[Task]]:
    """Convert and buffer the request, the new project and its tasks."""
    request, project, tasks = _request_svc.convert(request, actor.user_id)
    uow.project_requests.save(request)
    uow.projects.save(project)
    for task in tasks:
        uow.tasks.save(task)
        _record(uow, task, TaskActivityType.CREATED, actor,
                f"Task created from project request '{request.title}'")
    return request, project, tasks


def _commit_conversion(uow: AbstractUnitOfWork, request_id: uuid.UUID) -> None:
    """Commit; a lost race against another conversion surfaces as AlreadyConverted."""
    try:
        uow.commit()
    except ConcurrencyConflictError:
        uow.rollback()
        current = uow.project_requests.get(request_id)
        if current is not None and current.status == ProjectRequestStatus.CONVERTED:
            logger.warning(
                "ProjectRequest %s converted concurrently to project %s",
                request_id, current.converted_to_project_id,
                extra={"entity_id": str(request_id), "event_type": "project_request.convert_conflict"},
            )
            raise AlreadyConvertedError(request_id, current.converted_to_project_id)
        raise


@dataclass
class ApproveProjectRequestCommand:
    request_id: uuid.UUID
    actor: Actor
    notes: Optional[str] = None
    auto_convert: bool = False


class ApproveProjectRequestUseCase:
    """
    InReview → Approved.  With `auto_convert` the approved request is
    converted into a project in the same transaction.
    """

    def execute(self, cmd: ApproveProjectRequestCommand, uow: AbstractUnitOfWork) -> ProjectRequestDTO:
        with uow:
            request = _get_request_or_raise(uow, cmd.request_id)
            old_status = request.status
            request = _request_svc.approve(request, cmd.actor.user_id, cmd.notes)
            uow.project_requests.save(request)
            if cmd.auto_convert:
                request, project, _ = _materialise(uow, request, cmd.actor)
                _commit_conversion(uow, request.id)
                _log_transition("ProjectRequest", request.id, old_status, ProjectRequestStatus.APPROVED,
                                cmd.actor, "project_request.approved")
                _log_transition("ProjectRequest", request.id, ProjectRequestStatus.APPROVED,
                                request.status, cmd.actor, "project_request.converted")
                _log_transition("Project", project.id, None, project.status,
                                cmd.actor, "project.created")
            else:
                uow.commit()
                _log_transition("ProjectRequest", request.id, old_status, request.status,
                                cmd.actor, "project_request.approved")
            return _Assembler.project_request(request)


class ConvertProjectRequestUseCase:
    """
    Approved → Converted: creates the project and its proposed tasks.
    Exactly one of any number of concurrent conversions succeeds.
    """

    def execute(self, cmd: ProjectRequestActionCommand, uow: AbstractUnitOfWork) -> ConversionResultDTO:
        with uow:
            request = _get_request_or_raise(uow, cmd.request_id)
            old_status = request.status
            request, project, tasks = _materialise(uow, request, cmd.actor)
            _commit_conversion(uow, request.id)
            _log_transition("ProjectRequest", request.id, old_status, request.status,
                            cmd.actor, "project_request.converted")
            _log_transition("Project", project.id, None, project.status,
                            cmd.actor, "project.created")
            return ConversionResultDTO(
                request=_Assembler.project_request(request),
                project=_Assembler.project(project, tasks),
                tasks=[_Assembler.task(t) for t in tasks],
            )


# ===========================================================================
# USE CASES: PROJECT DELIVERY
# ===========================================================================

class GetProjectUseCase:
    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> ProjectDTO:
        with uow:
            return _project_dto(uow, _get_project_or_raise(uow, project_id))


class ListProjectsUseCase:
    def execute(
        self,
        uow: AbstractUnitOfWork,
        status: Optional[ProjectStatus] = None,
    ) -> List[ProjectDTO]:
        with uow:
            tasks = uow.tasks.list_all()
            projects = [p for p in uow.projects.list_all() if status is None or p.status == status]
            projects.sort(key=lambda p: (p.created_date, str(p.id)), reverse=True)
            return [_Assembler.project(p, tasks) for p in projects]


@dataclass
class ChangeProjectStatusCommand:
    project_id: uuid.UUID
    target_status: ProjectStatus
    actor: Actor


class ChangeProjectStatusUseCase:
    """activate / put on hold / resume / complete / cancel."""

    def execute(self, cmd: ChangeProjectStatusCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            old_status = project.status
            target = ProjectStatus(cmd.target_status)
            if target == ProjectStatus.ACTIVE and project.status == ProjectStatus.ON_HOLD:
                project = _project_svc.resume(project)
            elif target == ProjectStatus.ACTIVE:
                project = _project_svc.activate(project)
            elif target == ProjectStatus.ON_HOLD:
                project = _project_svc.put_on_hold(project)
            elif target == ProjectStatus.COMPLETED:
                project = _project_svc.complete(project, uow.tasks.list_for_project(project.id))
            elif target == ProjectStatus.CANCELLED:
                project = _project_svc.cancel(project)
            else:
                raise ValidationError({"status": f"Projects cannot be moved to '{target.value}'"})
            uow.projects.save(project)
            uow.commit()
            _log_transition("Project", project.id, old_status, project.status, cmd.actor,
                            f"project.{project.status.value.lower()}")
            return _project_dto(uow, project)


@dataclass
class AssignProjectManagerCommand:
    project_id: uuid.UUID
    manager_user_id: uuid.UUID
    actor: Actor


class AssignProjectManagerUseCase:
    def execute(self, cmd: AssignProjectManagerCommand, uow: AbstractUnitOfWork) -> ProjectDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            manager = _get_user_or_raise(uow, cmd.manager_user_id)
            project = _project_svc.assign_project_manager(project, manager)
            uow.projects.save(project)
            uow.commit()
            return _project_dto(uow, project)


@dataclass
class AddTaskCommand:
    project_id: uuid.UUID
    title: str
    actor: Actor
    description: str = ""
    priority: str = "Medium"
    estimated_hours: Optional[float] = None
    due_date: Optional[date] = None
    assigned_to_department_id: Optional[uuid.UUID] = None


class AddTaskUseCase:
    """Create a task on a live project, optionally routed to a department."""

    def execute(self, cmd: AddTaskCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            task = _task_svc.create_task(
                project,
                title=cmd.title,
                description=cmd.description,
                priority=cmd.priority,
                created_by_user_id=cmd.actor.user_id,
                estimated_hours=cmd.estimated_hours,
                due_date=cmd.due_date,
            )
            _record(uow, task, TaskActivityType.CREATED, cmd.actor, "Task created")
            if cmd.assigned_to_department_id is not None:
                department = _get_department_or_raise(uow, cmd.assigned_to_department_id)
                task = _assignment_svc.assign_to_department(task, department)
                _record(uow, task, TaskActivityType.ASSIGNED, cmd.actor,
                        f"Assigned to department '{department.name}'")
            uow.projects.save(project)
            uow.tasks.save(task)
            try:
                uow.commit()
            except ConcurrencyConflictError:
                uow.rollback()
                current = uow.projects.get(project.id)
                logger.warning(
                    "Task for project %s lost a race with a project update",
                    project.id,
                    extra={"entity_id": str(project.id), "event_type": "task.create_conflict"},
                )
                if current is not None and current.status in TERMINAL_PROJECT_STATUSES:
                    raise DomainError(
                        f"Tasks cannot be added to a {current.status.value} project."
                    )
                raise
            _log_transition("Task", task.id, None, task.status, cmd.actor, "task.created")
            return _Assembler.task(task)


class ListProjectTasksUseCase:
    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[TaskDTO]:
        with uow:
            _get_project_or_raise(uow, project_id)
            tasks = sorted(
                uow.tasks.list_for_project(project_id),
                key=lambda t: (t.created_date, str(t.id)),
            )
            return [_Assembler.task(t) for t in tasks]


# ===========================================================================
# USE CASES: TASKS
# ===========================================================================

class GetTaskUseCase:
    def execute(self, task_id: uuid.UUID, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            return _Assembler.task(_get_task_or_raise(uow, task_id))


class ListTasksUseCase:
    def execute(
        self,
        uow: AbstractUnitOfWork,
        assigned_to_user_id: Optional[uuid.UUID] = None,
        assigned_to_department_id: Optional[uuid.UUID] = None,
        status: Optional[TaskStatus] = None,
    ) -> List[TaskDTO]:
        with uow:
            tasks = [
                t for t in uow.tasks.list_all()
                if (assigned_to_user_id is None or t.assigned_to_user_id == assigned_to_user_id)
                and (assigned_to_department_id is None
                     or t.assigned_to_department_id == assigned_to_department_id)
                and (status is None or t.status == status)
            ]
            tasks.sort(key=lambda t: (t.due_date or date.max, str(t.id)))
            return [_Assembler.task(t) for t in tasks]


@dataclass
class UpdateTaskCommand:
    task_id: uuid.UUID
    actor: Actor
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    estimated_hours: Optional[float] = None
    due_date: Optional[date] = None


class UpdateTaskUseCase:
    def execute(self, cmd: UpdateTaskCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.task_id)
            task = _task_svc.update_task(
                task,
                title=cmd.title,
                description=cmd.description,
                priority=cmd.priority,
                estimated_hours=cmd.estimated_hours,
                due_date=cmd.due_date,
            )
            _record(uow, task, TaskActivityType.UPDATED, cmd.actor, "Task details updated")
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.task(task)


_STATUS_ACTIVITY = {
    TaskStatus.IN_PROGRESS: TaskActivityType.STARTED,
    TaskStatus.BLOCKED: TaskActivityType.BLOCKED,
    TaskStatus.COMPLETED: TaskActivityType.COMPLETED,
    TaskStatus.CANCELLED: TaskActivityType.CANCELLED,
}


@dataclass
class ChangeTaskStatusCommand:
    task_id: uuid.UUID
    target_status: TaskStatus
    actor: Actor
    blocked_reason: Optional[str] = None
    resolution_notes: Optional[str] = None


class ChangeTaskStatusUseCase:
    """start / block / unblock / complete / cancel."""

    def execute(self, cmd: ChangeTaskStatusCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.task_id)
            old_status = task.status
            task = _task_svc.change_status(
                task,
                cmd.target_status,
                cmd.actor.user_id,
                blocked_reason=cmd.blocked_reason,
                resolution_notes=cmd.resolution_notes,
            )
            if old_status == TaskStatus.BLOCKED and task.status == TaskStatus.IN_PROGRESS:
                activity = TaskActivityType.UNBLOCKED
            else:
                activity = _STATUS_ACTIVITY[task.status]
            _record(uow, task, activity, cmd.actor,
                    f"Status changed from {old_status.value} to {task.status.value}",
                    cmd.blocked_reason or cmd.resolution_notes)
            uow.tasks.save(task)
            uow.commit()
            _log_transition("Task", task.id, old_status, task.status, cmd.actor,
                            f"task.{activity.value.lower()}")
            return _Assembler.task(task)


@dataclass
class LogTaskTimeCommand:
    task_id: uuid.UUID
    hours: float
    actor: Actor
    description: Optional[str] = None


class LogTaskTimeUseCase:
    def execute(self, cmd: LogTaskTimeCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.task_id)
            task = _task_svc.log_time(task, cmd.hours)
            _record(uow, task, TaskActivityType.TIME_LOGGED, cmd.actor,
                    f"Logged {cmd.hours:g} hour(s)", cmd.description)
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.task(task)


@dataclass
class UpdateTaskNotesCommand:
    task_id: uuid.UUID
    notes: str
    actor: Actor


class UpdateTaskNotesUseCase:
    def execute(self, cmd: UpdateTaskNotesCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.task_id)
            task = _task_svc.update_implementation_notes(task, cmd.notes)
            _record(uow, task, TaskActivityType.NOTES_UPDATED, cmd.actor,
                    "Implementation notes updated")
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.task(task)


class GetTaskTimelineUseCase:
    def execute(self, task_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[TaskActivityDTO]:
        with uow:
            task = _get_task_or_raise(uow, task_id)
            activities = _task_svc.timeline(uow.task_activities.list_for_task(task.id))
            return [_Assembler.task_activity(a) for a in activities]


@dataclass
class UpdateResolutionNotesCommand:
    task_id: uuid.UUID
    notes: Optional[str]
    actor: Actor


class UpdateResolutionNotesUseCase:
    def execute(self, cmd: UpdateResolutionNotesCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.task_id)
            task = _task_svc.update_resolution_notes(task, cmd.notes)
            _record(uow, task, TaskActivityType.NOTES_UPDATED, cmd.actor,
                    "Resolution notes updated")
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.task(task)


# --- Checklist ---------------------------------------------------------------

def _get_checklist_item_or_raise(task: Task, item_id: uuid.UUID) -> ChecklistItem:
    for item in task.checklist:
        if item.id == item_id:
            return item
    raise NotFoundError(f"Checklist item {item_id} not found on task {task.id}.")


class ListChecklistUseCase:
    def execute(self, task_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[ChecklistItemDTO]:
        with uow:
            task = _get_task_or_raise(uow, task_id)
            return [_Assembler.checklist_item(task, i) for i in _task_svc.checklist(task)]


@dataclass
class AddChecklistItemCommand:
    task_id: uuid.UUID
    description: str
    actor: Actor
    order: Optional[int] = None


class AddChecklistItemUseCase:
    def execute(self, cmd: AddChecklistItemCommand, uow: AbstractUnitOfWork) -> ChecklistItemDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.task_id)
            item = _task_svc.add_checklist_item(task, cmd.description, cmd.order)
            _record(uow, task, TaskActivityType.CHECKLIST_ITEM_ADDED, cmd.actor,
                    f"Checklist item added: {item.description}")
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.checklist_item(task, item)


@dataclass
class ToggleChecklistItemCommand:
    task_id: uuid.UUID
    item_id: uuid.UUID
    actor: Actor


class ToggleChecklistItemUseCase:
    """Completing an item is a timeline event; reopening one is an update."""

    def execute(self, cmd: ToggleChecklistItemCommand, uow: AbstractUnitOfWork) -> ChecklistItemDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.task_id)
            item = _get_checklist_item_or_raise(task, cmd.item_id)
            item = _task_svc.toggle_checklist_item(task, item, cmd.actor.user_id)
            if item.is_completed:
                _record(uow, task, TaskActivityType.CHECKLIST_ITEM_COMPLETED, cmd.actor,
                        f"Checklist item completed: {item.description}")
            else:
                _record(uow, task, TaskActivityType.UPDATED, cmd.actor,
                        f"Checklist item reopened: {item.description}")
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.checklist_item(task, item)


# ===========================================================================
# USE CASES: ASSIGNMENT
# ===========================================================================

@dataclass
class AssignTaskToDepartmentCommand:
    task_id: uuid.UUID
    department_id: uuid.UUID
    actor: Actor


class AssignTaskToDepartmentUseCase:
    def execute(self, cmd: AssignTaskToDepartmentCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.task_id)
            department = _get_department_or_raise(uow, cmd.department_id)
            previous_user = task.assigned_to_user_id
            task = _assignment_svc.assign_to_department(task, department)
            _record(uow, task, TaskActivityType.ASSIGNED, cmd.actor,
                    f"Assigned to department '{department.name}'",
                    f"Released from user {previous_user}" if previous_user else None)
            uow.tasks.save(task)
            uow.commit()
            logger.info(
                "Task %s routed to department %s", task.id, department.id,
                extra={"entity_id": str(task.id), "actor_id": str(cmd.actor.user_id),
                       "event_type": "task.assigned_to_department"},
            )
            return _Assembler.task(task)


@dataclass
class AssignTaskToUserCommand:
    task_id: uuid.UUID
    user_id: uuid.UUID
    actor: Actor
    direct: bool = False


class AssignTaskToUserUseCase:
    def execute(self, cmd: AssignTaskToUserCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.task_id)
            user = _get_user_or_raise(uow, cmd.user_id)
            task = _assignment_svc.assign_to_user(task, user, direct=cmd.direct)
            _record(uow, task, TaskActivityType.ASSIGNED, cmd.actor,
                    f"Assigned to {user.full_name}")
            uow.tasks.save(task)
            uow.commit()
            logger.info(
                "Task %s assigned to user %s", task.id, user.id,
                extra={"entity_id": str(task.id), "actor_id": str(cmd.actor.user_id),
                       "event_type": "task.assigned_to_user"},
            )
            return _Assembler.task(task)


@dataclass
class ClaimTaskCommand:
    task_id: uuid.UUID
    actor: Actor


class ClaimTaskUseCase:
    """
    The acting user takes an unclaimed task from its department pool.
    When several users race, exactly one claim is committed; the others
    get NotClaimableError.
    """

    def execute(self, cmd: ClaimTaskCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.task_id)
            user = _get_user_or_raise(uow, cmd.actor.user_id)
            task = _assignment_svc.claim(task, user)
            _record(uow, task, TaskActivityType.CLAIMED, cmd.actor,
                    f"Claimed by {user.full_name}")
            uow.tasks.save(task)
            try:
                uow.commit()
            except ConcurrencyConflictError as exc:
                logger.warning(
                    "Claim of task %s by %s lost a race", task.id, user.id,
                    extra={"entity_id": str(task.id), "actor_id": str(user.id),
                           "event_type": "task.claim_conflict"},
                )
                raise NotClaimableError(
                    f"Task {task.id} was claimed or re-routed by someone else."
                ) from exc
            logger.info(
                "Task %s claimed by user %s", task.id, user.id,
                extra={"entity_id": str(task.id), "actor_id": str(user.id),
                       "event_type": "task.claimed"},
            )
            return _Assembler.task(task)


@dataclass
class UnassignTaskCommand:
    task_id: uuid.UUID
    actor: Actor


class UnassignTaskUseCase:
    def execute(self, cmd: UnassignTaskCommand, uow: AbstractUnitOfWork) -> TaskDTO:
        with uow:
            task = _get_task_or_raise(uow, cmd.task_id)
            task = _assignment_svc.unassign(task)
            _record(uow, task, TaskActivityType.UNASSIGNED, cmd.actor, "Assignment cleared")
            uow.tasks.save(task)
            uow.commit()
            return _Assembler.task(task)


# ===========================================================================
# USE CASES: CHANGE MANAGEMENT
# ===========================================================================

@dataclass
class CreateChangeRequestCommand:
    title: str
    description: str
    change_type: str
    priority: str
    risk_level: str
    impact_assessment: str
    rollback_plan: str
    affected_systems: str
    actor: Actor


class CreateChangeRequestUseCase:
    def execute(self, cmd: CreateChangeRequestCommand, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        with uow:
            cr = _change_svc.create_change_request(
                title=cmd.title,
                description=cmd.description,
                change_type=cmd.change_type,
                priority=cmd.priority,
                risk_level=cmd.risk_level,
                impact_assessment=cmd.impact_assessment,
                rollback_plan=cmd.rollback_plan,
                affected_systems=cmd.affected_systems,
                created_by_user_id=cmd.actor.user_id,
            )
            uow.change_requests.save(cr)
            uow.commit()
            _log_transition("ChangeRequest", cr.id, None, cr.status, cmd.actor,
                            "change_request.created")
            return _Assembler.change_request(cr)


@dataclass
class UpdateChangeRequestCommand:
    cr_id: uuid.UUID
    actor: Actor
    changes: Dict[str, Any] = field(default_factory=dict)


class UpdateChangeRequestUseCase:
    def execute(self, cmd: UpdateChangeRequestCommand, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        with uow:
            cr = _get_change_request_or_raise(uow, cmd.cr_id)
            cr = _change_svc.update_change_request(cr, **cmd.changes)
            uow.change_requests.save(cr)
            uow.commit()
            return _Assembler.change_request(cr)


class GetChangeRequestUseCase:
    def execute(self, cr_id: uuid.UUID, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        with uow:
            return _Assembler.change_request(_get_change_request_or_raise(uow, cr_id))


class ListChangeRequestsUseCase:
    def execute(
        self,
        uow: AbstractUnitOfWork,
        status: Optional[ChangeRequestStatus] = None,
        created_by_user_id: Optional[uuid.UUID] = None,
    ) -> List[ChangeRequestDTO]:
        with uow:
            changes = [
                c for c in uow.change_requests.list_all()
                if (status is None or c.status == status)
                and (created_by_user_id is None or c.created_by_user_id == created_by_user_id)
            ]
            changes.sort(key=lambda c: (c.created_date, str(c.id)), reverse=True)
            return [_Assembler.change_request(c) for c in changes]


@dataclass
class ChangeRequestActionCommand:
    cr_id: uuid.UUID
    actor: Actor
    notes: Optional[str] = None
    reason: Optional[str] = None
    scheduled_start_date: Optional[datetime] = None
    scheduled_end_date: Optional[datetime] = None
    change_window: Optional[str] = None


def _transition_change(
    uow: AbstractUnitOfWork,
    cmd: ChangeRequestActionCommand,
    event_type: str,
    apply: Callable[[ChangeRequest], ChangeRequest],
) -> ChangeRequestDTO:
    with uow:
        cr = _get_change_request_or_raise(uow, cmd.cr_id)
        old_status = cr.status
        cr = apply(cr)
        uow.change_requests.save(cr)
        uow.commit()
        _log_transition("ChangeRequest", cr.id, old_status, cr.status, cmd.actor, event_type)
        return _Assembler.change_request(cr)


class SubmitChangeRequestUseCase:
    def execute(self, cmd: ChangeRequestActionCommand, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        return _transition_change(uow, cmd, "change_request.submitted", _change_svc.submit)


class BeginChangeReviewUseCase:
    def execute(self, cmd: ChangeRequestActionCommand, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        return _transition_change(
            uow, cmd, "change_request.review_started",
            lambda cr: _change_svc.begin_review(cr, cmd.actor.user_id),
        )


class ApproveChangeRequestUseCase:
    def execute(self, cmd: ChangeRequestActionCommand, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        return _transition_change(
            uow, cmd, "change_request.approved",
            lambda cr: _change_svc.approve(cr, cmd.actor.user_id, cmd.notes),
        )


class DenyChangeRequestUseCase:
    def execute(self, cmd: ChangeRequestActionCommand, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        return _transition_change(
            uow, cmd, "change_request.denied",
            lambda cr: _change_svc.deny(cr, cmd.actor.user_id, cmd.reason),
        )


class ScheduleChangeRequestUseCase:
    def execute(self, cmd: ChangeRequestActionCommand, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        return _transition_change(
            uow, cmd, "change_request.scheduled",
            lambda cr: _change_svc.schedule(
                cr, cmd.scheduled_start_date, cmd.scheduled_end_date, cmd.change_window,
            ),
        )


class StartChangeExecutionUseCase:
    def execute(self, cmd: ChangeRequestActionCommand, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        return _transition_change(uow, cmd, "change_request.executing", _change_svc.start_execution)


class CompleteChangeRequestUseCase:
    def execute(self, cmd: ChangeRequestActionCommand, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        return _transition_change(
            uow, cmd, "change_request.completed",
            lambda cr: _change_svc.complete(cr, cmd.notes),
        )


class FailChangeRequestUseCase:
    def execute(self, cmd: ChangeRequestActionCommand, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        return _transition_change(
            uow, cmd, "change_request.failed",
            lambda cr: _change_svc.mark_failed(cr, cmd.reason),
        )


class RollbackChangeRequestUseCase:
    def execute(self, cmd: ChangeRequestActionCommand, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        return _transition_change(
            uow, cmd, "change_request.rolled_back",
            lambda cr: _change_svc.rollback(cr, cmd.reason),
        )


class CancelChangeRequestUseCase:
    def execute(self, cmd: ChangeRequestActionCommand, uow: AbstractUnitOfWork) -> ChangeRequestDTO:
        return _transition_change(
            uow, cmd, "change_request.cancelled",
            lambda cr: _change_svc.cancel(cr, cmd.reason),
        )


# ===========================================================================
# USE CASES: REPORTING
# ===========================================================================

class GetChangeMetricsUseCase:
    def execute(
        self,
        uow: AbstractUnitOfWork,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> ChangeMetricsDTO:
        with uow:
            data = _analytics_svc.metrics(uow.change_requests.list_all(), start, end)
            return ChangeMetricsDTO(**data)


class GetSuccessRateUseCase:
    def execute(
        self,
        uow: AbstractUnitOfWork,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> SuccessRateDTO:
        with uow:
            data = _analytics_svc.success_rate(uow.change_requests.list_all(), start, end)
            return _Assembler.success_rate(data)


class GetMonthlyTrendsUseCase:
    def execute(
        self,
        uow: AbstractUnitOfWork,
        months_back: int = 12,
        now: Optional[datetime] = None,
    ) -> List[MonthlyTrendDTO]:
        with uow:
            rows = _analytics_svc.monthly_trends(uow.change_requests.list_all(), months_back, now)
            return [MonthlyTrendDTO(**row) for row in rows]


class GetTopAffectedSystemsUseCase:
    def execute(
        self,
        uow: AbstractUnitOfWork,
        top_count: int = 10,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[TopAffectedSystemDTO]:
        with uow:
            rows = _analytics_svc.top_affected_systems(
                uow.change_requests.list_all(), top_count, start, end,
            )
            return [_Assembler.top_system(row) for row in rows]


class GetDashboardStatsUseCase:
    def execute(
        self,
        uow: AbstractUnitOfWork,
        actor: Optional[Actor] = None,
        page_size: int = 5,
        now: Optional[datetime] = None,
    ) -> DashboardStatsDTO:
        with uow:
            data = _dashboard_svc.build_stats(
                change_requests=uow.change_requests.list_all(),
                project_requests=uow.project_requests.list_all(),
                projects=uow.projects.list_all(),
                tasks=uow.tasks.list_all(),
                current_user_id=actor.user_id if actor else None,
                page_size=page_size,
                now=now,
            )
            return _Assembler.dashboard(data)
