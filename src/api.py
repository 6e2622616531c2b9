"""
api.py

REST API layer for the APEX Operations Console.

Framework : FastAPI
Auth      : Identity is asserted by an upstream gateway through the
            X-User-Id (UUID) and X-User-Roles (comma-separated) headers.
            The get_actor dependency turns them into an Actor that is passed
            into every mutating use case command.  Read endpoints accept an
            anonymous caller.

Structure
---------
  Routers (all prefixed under /api/v1)
  ├── /users                           user directory
  ├── /departments                     departments, members, claim pools
  ├── /project-requests                intake workflow and conversion
  ├── /projects                        project lifecycle
  │   └── /{project_id}/tasks          tasks owned by a project
  ├── /tasks                           task lifecycle, assignment, checklist, timeline
  ├── /change-requests                 change workflow
  ├── /reports                         change analytics
  └── /dashboard                       dashboard counters

Error handling
--------------
  ValidationError (domain or request body) → 422  { detail, errors }
  NotFoundError                            → 404
  AuthorizationError                       → 403
  IllegalTransitionError                   → 409  { detail, entity, current, target }
  AlreadyConvertedError                    → 409  { detail, project_id }
  IncompleteWorkError                      → 409  { detail, blocking_task_ids }
  NotClaimable / Unassigned / Concurrency  → 409
  other DomainError                        → 409
  other ApplicationError / ValueError      → 422
  Unhandled                                → 500 (FastAPI default)

Response envelope
-----------------
  Success  : { "data": <payload> }
  Error    : { "detail": "<message>", ... }

Running
-------
  uvicorn api:app --reload
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Path, Query, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_mcp import FastApiMCP
from pydantic import BaseModel, EmailStr, Field, field_validator

from application import (
    # Exceptions
    ApplicationError,
    AuthorizationError,
    ConcurrencyConflictError,
    NotFoundError,
    # Context
    AbstractUnitOfWork,
    Actor,
    # Commands
    AddChecklistItemCommand,
    AddTaskCommand,
    ApproveProjectRequestCommand,
    AssignProjectManagerCommand,
    AssignTaskToDepartmentCommand,
    AssignTaskToUserCommand,
    AssignUserDepartmentCommand,
    ChangeProjectStatusCommand,
    ChangeRequestActionCommand,
    ChangeTaskStatusCommand,
    ClaimTaskCommand,
    CreateChangeRequestCommand,
    CreateDepartmentCommand,
    CreateProjectRequestCommand,
    CreateUserCommand,
    LogTaskTimeCommand,
    ProjectRequestActionCommand,
    ToggleChecklistItemCommand,
    UnassignTaskCommand,
    UpdateChangeRequestCommand,
    UpdateDepartmentCommand,
    UpdateProjectRequestCommand,
    UpdateResolutionNotesCommand,
    UpdateTaskCommand,
    UpdateTaskNotesCommand,
    # Use cases
    AddChecklistItemUseCase,
    AddTaskUseCase,
    ApproveChangeRequestUseCase,
    ApproveProjectRequestUseCase,
    AssignProjectManagerUseCase,
    AssignTaskToDepartmentUseCase,
    AssignTaskToUserUseCase,
    AssignUserDepartmentUseCase,
    BeginChangeReviewUseCase,
    BeginProjectRequestReviewUseCase,
    CancelChangeRequestUseCase,
    CancelProjectRequestUseCase,
    ChangeProjectStatusUseCase,
    ChangeTaskStatusUseCase,
    ClaimTaskUseCase,
    CompleteChangeRequestUseCase,
    ConvertProjectRequestUseCase,
    CreateChangeRequestUseCase,
    CreateDepartmentUseCase,
    CreateProjectRequestUseCase,
    CreateUserUseCase,
    DenyChangeRequestUseCase,
    DenyProjectRequestUseCase,
    FailChangeRequestUseCase,
    GetChangeMetricsUseCase,
    GetChangeRequestUseCase,
    GetDashboardStatsUseCase,
    GetDepartmentPoolUseCase,
    GetDepartmentUseCase,
    GetMonthlyTrendsUseCase,
    GetProjectRequestUseCase,
    GetProjectUseCase,
    GetSuccessRateUseCase,
    GetTaskTimelineUseCase,
    GetTaskUseCase,
    GetTopAffectedSystemsUseCase,
    GetUserUseCase,
    ListChangeRequestsUseCase,
    ListChecklistUseCase,
    ListDepartmentMembersUseCase,
    ListDepartmentsUseCase,
    ListProjectRequestsUseCase,
    ListProjectTasksUseCase,
    ListProjectsUseCase,
    ListTasksUseCase,
    ListUsersUseCase,
    LogTaskTimeUseCase,
    RollbackChangeRequestUseCase,
    ScheduleChangeRequestUseCase,
    StartChangeExecutionUseCase,
    SubmitChangeRequestUseCase,
    SubmitProjectRequestUseCase,
    ToggleChecklistItemUseCase,
    UnassignTaskUseCase,
    UpdateChangeRequestUseCase,
    UpdateDepartmentUseCase,
    UpdateProjectRequestUseCase,
    UpdateResolutionNotesUseCase,
    UpdateTaskNotesUseCase,
    UpdateTaskUseCase,
)
from config import Config, get_config
from infrastructure import InMemoryUnitOfWork
from logging_config import configure_logging
from model import (
    ChangeRequestStatus,
    ChangeType,
    Priority,
    ProjectRequestStatus,
    ProjectStatus,
    ProposedTask,
    RequestPriority,
    RiskLevel,
    TaskStatus,
)
from service import (
    AlreadyConvertedError,
    DomainError,
    IllegalTransitionError,
    IncompleteWorkError,
    NotClaimableError,
    UnassignedError,
    ValidationError as DomainValidationError,
)

settings = get_config()
configure_logging(settings)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title="APEX Operations Console API",
    version="1.0.0",
    description=(
        "REST API for project intake, project delivery, departmental task "
        "assignment, change management and operational dashboards."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def announce_startup():
    logger.info(
        "APEX Operations Console API starting (env=%s, auto_convert_on_approval=%s)",
        settings.APP_ENV, settings.AUTO_CONVERT_ON_APPROVAL,
    )


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

def _conflict(exc: Exception, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc), **extra})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    errors: Dict[str, str] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header")]
        errors[".".join(loc) or "body"] = err.get("msg", "Invalid value")
    return JSONResponse(status_code=422, content={"detail": "Validation failed", "errors": errors})


@app.exception_handler(DomainValidationError)
async def domain_validation_handler(request, exc: DomainValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(AuthorizationError)
async def authorization_handler(request, exc: AuthorizationError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(IllegalTransitionError)
async def illegal_transition_handler(request, exc: IllegalTransitionError):
    return _conflict(exc, entity=exc.entity, current=exc.current, target=exc.target)


@app.exception_handler(AlreadyConvertedError)
async def already_converted_handler(request, exc: AlreadyConvertedError):
    return _conflict(exc, project_id=str(exc.project_id) if exc.project_id else None)


@app.exception_handler(IncompleteWorkError)
async def incomplete_work_handler(request, exc: IncompleteWorkError):
    return _conflict(exc, blocking_task_ids=[str(t) for t in exc.blocking_task_ids])


@app.exception_handler(NotClaimableError)
async def not_claimable_handler(request, exc: NotClaimableError):
    return _conflict(exc)


@app.exception_handler(UnassignedError)
async def unassigned_handler(request, exc: UnassignedError):
    return _conflict(exc)


@app.exception_handler(ConcurrencyConflictError)
async def concurrency_handler(request, exc: ConcurrencyConflictError):
    return _conflict(exc)


@app.exception_handler(DomainError)
async def domain_error_handler(request, exc: DomainError):
    return _conflict(exc)


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_uow() -> AbstractUnitOfWork:
    """Returns the in-memory Unit of Work (no database required)."""
    return InMemoryUnitOfWork()


def get_settings() -> Config:
    return settings


def get_optional_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_roles: Optional[str] = Header(default=None),
) -> Optional[Actor]:
    if not x_user_id:
        return None
    try:
        user_id = uuid.UUID(x_user_id)
    except ValueError as exc:
        raise AuthorizationError("X-User-Id must be a UUID.") from exc
    roles = tuple(r.strip() for r in (x_user_roles or "").split(",") if r.strip())
    return Actor(user_id=user_id, roles=roles)


def get_actor(actor: Optional[Actor] = Depends(get_optional_actor)) -> Actor:
    if actor is None:
        raise AuthorizationError("The X-User-Id header is required for this operation.")
    return actor


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any) -> Dict:
    """Wrap a DTO or list of DTOs in the standard success envelope."""
    if dataclasses.is_dataclass(data):
        return {"data": dataclasses.asdict(data)}
    if isinstance(data, list):
        return {
            "data": [
                dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
                for item in data
            ]
        }
    return {"data": data}


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

# ---------------------------------------------------------------------------
# Directory schemas
# ---------------------------------------------------------------------------

class CreateUserRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    department_id: Optional[uuid.UUID] = None


class AssignDepartmentRequest(BaseModel):
    department_id: uuid.UUID


class CreateDepartmentRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    department_manager_user_id: Optional[uuid.UUID] = None


class UpdateDepartmentRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    department_manager_user_id: Optional[uuid.UUID] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Project request schemas
# ---------------------------------------------------------------------------

class ProposedTaskRequest(BaseModel):
    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(default="", max_length=2000)
    priority: Priority = Priority.MEDIUM
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    due_date: Optional[date] = None

    def to_domain(self) -> ProposedTask:
        return ProposedTask(
            title=self.title,
            description=self.description,
            priority=self.priority,
            estimated_hours=self.estimated_hours,
            due_date=self.due_date,
        )


class CreateProjectRequestBody(BaseModel):
    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=20, max_length=2000)
    business_justification: str = Field(..., min_length=20, max_length=2000)
    priority: RequestPriority = RequestPriority.MEDIUM
    due_date: Optional[date] = None
    estimated_budget: Optional[float] = Field(default=None, ge=0)
    proposed_start_date: Optional[date] = None
    proposed_end_date: Optional[date] = None
    proposed_tasks: List[ProposedTaskRequest] = Field(default_factory=list)


class UpdateProjectRequestBody(BaseModel):
    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, min_length=20, max_length=2000)
    business_justification: Optional[str] = Field(default=None, min_length=20, max_length=2000)
    priority: Optional[RequestPriority] = None
    due_date: Optional[date] = None
    estimated_budget: Optional[float] = Field(default=None, ge=0)
    proposed_start_date: Optional[date] = None
    proposed_end_date: Optional[date] = None
    proposed_tasks: Optional[List[ProposedTaskRequest]] = None


class NotesRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)


class ReasonRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class OptionalReasonRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Project / task schemas
# ---------------------------------------------------------------------------

class AssignManagerRequest(BaseModel):
    user_id: uuid.UUID


class CreateTaskRequest(BaseModel):
    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(default="", max_length=2000)
    priority: Priority = Priority.MEDIUM
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    due_date: Optional[date] = None
    assigned_to_department_id: Optional[uuid.UUID] = None


class UpdateTaskRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    priority: Optional[Priority] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    due_date: Optional[date] = None


class BlockTaskRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class CompleteTaskRequest(BaseModel):
    resolution_notes: Optional[str] = Field(default=None, max_length=2000)


class LogTimeRequest(BaseModel):
    hours: float = Field(..., gt=0, le=24 * 7)
    description: Optional[str] = Field(default=None, max_length=500)


class TaskNotesRequest(BaseModel):
    notes: str = Field(..., max_length=2000)


class ResolutionNotesRequest(BaseModel):
    resolution_notes: Optional[str] = Field(default=None, max_length=2000)


class AddChecklistItemRequest(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    order: Optional[int] = Field(default=None, ge=0)


class AssignTaskDepartmentRequest(BaseModel):
    department_id: uuid.UUID


class AssignTaskUserRequest(BaseModel):
    user_id: uuid.UUID
    direct: bool = Field(
        default=False,
        description="Allow assigning a task that has not been routed to a department.",
    )


# ---------------------------------------------------------------------------
# Change request schemas
# ---------------------------------------------------------------------------

class CreateChangeRequestRequest(BaseModel):
    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=20, max_length=2000)
    change_type: ChangeType
    priority: Priority = Priority.MEDIUM
    risk_level: RiskLevel = RiskLevel.LOW
    impact_assessment: str = Field(..., min_length=20, max_length=2000)
    rollback_plan: str = Field(..., min_length=20, max_length=2000)
    affected_systems: str = Field(..., min_length=3, max_length=500)


class UpdateChangeRequestRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    description: Optional[str] = Field(default=None, min_length=20, max_length=2000)
    change_type: Optional[ChangeType] = None
    priority: Optional[Priority] = None
    risk_level: Optional[RiskLevel] = None
    impact_assessment: Optional[str] = Field(default=None, min_length=20, max_length=2000)
    rollback_plan: Optional[str] = Field(default=None, min_length=20, max_length=2000)
    affected_systems: Optional[str] = Field(default=None, min_length=3, max_length=500)


class ScheduleChangeRequest(BaseModel):
    scheduled_start_date: datetime
    scheduled_end_date: datetime
    change_window: str = Field(..., min_length=1, max_length=200)

    @field_validator("scheduled_end_date")
    @classmethod
    def validate_window(cls, v: datetime, info) -> datetime:
        start = info.data.get("scheduled_start_date")
        if start is not None and v <= start:
            raise ValueError("scheduled_end_date must be after scheduled_start_date")
        return v


# ===========================================================================
# ROUTERS
# ===========================================================================

api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

user_router = APIRouter(prefix="/users", tags=["Users"])


@user_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Register a user",
)
def create_user(
    body: CreateUserRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CreateUserCommand(
        full_name=body.full_name,
        email=str(body.email),
        department_id=body.department_id,
    )
    return _ok(CreateUserUseCase().execute(cmd, uow))


@user_router.get("", summary="List all users")
def list_users(uow: AbstractUnitOfWork = Depends(get_uow)):
    return _ok(ListUsersUseCase().execute(uow))


@user_router.get("/{user_id}", summary="Get a user by ID")
def get_user(
    user_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetUserUseCase().execute(user_id, uow))


@user_router.post("/{user_id}/department", summary="Move a user into a department")
def assign_user_department(
    body: AssignDepartmentRequest,
    user_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AssignUserDepartmentCommand(user_id=user_id, department_id=body.department_id)
    return _ok(AssignUserDepartmentUseCase().execute(cmd, uow))


# ---------------------------------------------------------------------------
# Departments
# ---------------------------------------------------------------------------

department_router = APIRouter(prefix="/departments", tags=["Departments"])


@department_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a department",
)
def create_department(
    body: CreateDepartmentRequest,
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CreateDepartmentCommand(
        name=body.name,
        description=body.description,
        department_manager_user_id=body.department_manager_user_id,
    )
    return _ok(CreateDepartmentUseCase().execute(cmd, uow))


@department_router.get("", summary="List departments with member counts")
def list_departments(
    include_inactive: bool = Query(True),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListDepartmentsUseCase().execute(uow, include_inactive=include_inactive))


@department_router.get("/{department_id}", summary="Get a department by ID")
def get_department(
    department_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetDepartmentUseCase().execute(department_id, uow))


@department_router.put("/{department_id}", summary="Update a department")
def update_department(
    body: UpdateDepartmentRequest,
    department_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateDepartmentCommand(
        department_id=department_id,
        name=body.name,
        description=body.description,
        department_manager_user_id=body.department_manager_user_id,
        is_active=body.is_active,
    )
    return _ok(UpdateDepartmentUseCase().execute(cmd, uow))


@department_router.get("/{department_id}/members", summary="List department members")
def list_department_members(
    department_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListDepartmentMembersUseCase().execute(department_id, uow))


@department_router.get("/{department_id}/pool", summary="Unclaimed tasks waiting in a department")
def get_department_pool(
    department_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetDepartmentPoolUseCase().execute(department_id, uow))


# ---------------------------------------------------------------------------
# Project requests
# ---------------------------------------------------------------------------

request_router = APIRouter(prefix="/project-requests", tags=["Project Requests"])


@request_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Draft a new project request",
)
def create_project_request(
    body: CreateProjectRequestBody,
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CreateProjectRequestCommand(
        title=body.title,
        description=body.description,
        business_justification=body.business_justification,
        priority=body.priority,
        actor=actor,
        due_date=body.due_date,
        estimated_budget=body.estimated_budget,
        proposed_start_date=body.proposed_start_date,
        proposed_end_date=body.proposed_end_date,
        proposed_tasks=[t.to_domain() for t in body.proposed_tasks],
    )
    return _ok(CreateProjectRequestUseCase().execute(cmd, uow))


@request_router.get("", summary="List project requests")
def list_project_requests(
    requesting_user_id: Optional[uuid.UUID] = Query(None),
    request_status: Optional[ProjectRequestStatus] = Query(None, alias="status"),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListProjectRequestsUseCase().execute(
        uow, requesting_user_id=requesting_user_id, status=request_status,
    ))


@request_router.get("/{request_id}", summary="Get a project request by ID")
def get_project_request(
    request_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetProjectRequestUseCase().execute(request_id, uow))


@request_router.put("/{request_id}", summary="Edit a draft project request")
def update_project_request(
    body: UpdateProjectRequestBody,
    request_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateProjectRequestCommand(
        request_id=request_id,
        actor=actor,
        title=body.title,
        description=body.description,
        business_justification=body.business_justification,
        priority=body.priority,
        due_date=body.due_date,
        estimated_budget=body.estimated_budget,
        proposed_start_date=body.proposed_start_date,
        proposed_end_date=body.proposed_end_date,
        proposed_tasks=(
            [t.to_domain() for t in body.proposed_tasks]
            if body.proposed_tasks is not None else None
        ),
    )
    return _ok(UpdateProjectRequestUseCase().execute(cmd, uow))


@request_router.post("/{request_id}/submit", summary="Submit a draft for review")
def submit_project_request(
    request_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ProjectRequestActionCommand(request_id=request_id, actor=actor)
    return _ok(SubmitProjectRequestUseCase().execute(cmd, uow))


@request_router.post("/{request_id}/begin-review", summary="Start reviewing a pending request")
def begin_project_request_review(
    body: Optional[NotesRequest] = None,
    request_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ProjectRequestActionCommand(
        request_id=request_id, actor=actor, notes=body.notes if body else None,
    )
    return _ok(BeginProjectRequestReviewUseCase().execute(cmd, uow))


@request_router.post("/{request_id}/approve", summary="Approve a request under review")
def approve_project_request(
    body: Optional[NotesRequest] = None,
    request_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    config: Config = Depends(get_settings),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    With AUTO_CONVERT_ON_APPROVAL enabled the request is converted into a
    project in the same transaction.
    """
    cmd = ApproveProjectRequestCommand(
        request_id=request_id,
        actor=actor,
        notes=body.notes if body else None,
        auto_convert=config.AUTO_CONVERT_ON_APPROVAL,
    )
    return _ok(ApproveProjectRequestUseCase().execute(cmd, uow))


@request_router.post("/{request_id}/deny", summary="Deny a request under review")
def deny_project_request(
    body: ReasonRequest,
    request_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ProjectRequestActionCommand(request_id=request_id, actor=actor, reason=body.reason)
    return _ok(DenyProjectRequestUseCase().execute(cmd, uow))


@request_router.post("/{request_id}/cancel", summary="Withdraw your own request")
def cancel_project_request(
    body: ReasonRequest,
    request_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ProjectRequestActionCommand(request_id=request_id, actor=actor, reason=body.reason)
    return _ok(CancelProjectRequestUseCase().execute(cmd, uow))


@request_router.post(
    "/{request_id}/convert",
    status_code=status.HTTP_201_CREATED,
    summary="Convert an approved request into a project",
)
def convert_project_request(
    request_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ProjectRequestActionCommand(request_id=request_id, actor=actor)
    return _ok(ConvertProjectRequestUseCase().execute(cmd, uow))


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

project_router = APIRouter(prefix="/projects", tags=["Projects"])


@project_router.get("", summary="List projects")
def list_projects(
    project_status: Optional[ProjectStatus] = Query(None, alias="status"),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListProjectsUseCase().execute(uow, status=project_status))


@project_router.get("/{project_id}", summary="Get a project by ID")
def get_project(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetProjectUseCase().execute(project_id, uow))


def _change_project_status(
    project_id: uuid.UUID,
    target: ProjectStatus,
    actor: Actor,
    uow: AbstractUnitOfWork,
) -> Dict:
    cmd = ChangeProjectStatusCommand(project_id=project_id, target_status=target, actor=actor)
    return _ok(ChangeProjectStatusUseCase().execute(cmd, uow))


@project_router.post("/{project_id}/activate", summary="Start delivery of a planned project")
def activate_project(
    project_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _change_project_status(project_id, ProjectStatus.ACTIVE, actor, uow)


@project_router.post("/{project_id}/hold", summary="Put an active project on hold")
def hold_project(
    project_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _change_project_status(project_id, ProjectStatus.ON_HOLD, actor, uow)


@project_router.post("/{project_id}/resume", summary="Resume a project that is on hold")
def resume_project(
    project_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _change_project_status(project_id, ProjectStatus.ACTIVE, actor, uow)


@project_router.post("/{project_id}/complete", summary="Complete a project with no open tasks")
def complete_project(
    project_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _change_project_status(project_id, ProjectStatus.COMPLETED, actor, uow)


@project_router.post("/{project_id}/cancel", summary="Cancel a project")
def cancel_project(
    project_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _change_project_status(project_id, ProjectStatus.CANCELLED, actor, uow)


@project_router.post("/{project_id}/manager", summary="Assign the project manager")
def assign_project_manager(
    body: AssignManagerRequest,
    project_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AssignProjectManagerCommand(
        project_id=project_id, manager_user_id=body.user_id, actor=actor,
    )
    return _ok(AssignProjectManagerUseCase().execute(cmd, uow))


@project_router.post(
    "/{project_id}/tasks",
    status_code=status.HTTP_201_CREATED,
    summary="Add a task to a project",
)
def add_task(
    body: CreateTaskRequest,
    project_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddTaskCommand(
        project_id=project_id,
        title=body.title,
        actor=actor,
        description=body.description,
        priority=body.priority,
        estimated_hours=body.estimated_hours,
        due_date=body.due_date,
        assigned_to_department_id=body.assigned_to_department_id,
    )
    return _ok(AddTaskUseCase().execute(cmd, uow))


@project_router.get("/{project_id}/tasks", summary="List a project's tasks")
def list_project_tasks(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListProjectTasksUseCase().execute(project_id, uow))


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

task_router = APIRouter(prefix="/tasks", tags=["Tasks"])


@task_router.get("", summary="List tasks")
def list_tasks(
    mine: bool = Query(False, description="Only tasks assigned to the calling user"),
    department_id: Optional[uuid.UUID] = Query(None),
    task_status: Optional[TaskStatus] = Query(None, alias="status"),
    actor: Optional[Actor] = Depends(get_optional_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    if mine and actor is None:
        raise AuthorizationError("The X-User-Id header is required to list your tasks.")
    return _ok(ListTasksUseCase().execute(
        uow,
        assigned_to_user_id=actor.user_id if mine else None,
        assigned_to_department_id=department_id,
        status=task_status,
    ))


@task_router.get("/{task_id}", summary="Get a task by ID")
def get_task(
    task_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetTaskUseCase().execute(task_id, uow))


@task_router.put("/{task_id}", summary="Edit task details")
def update_task(
    body: UpdateTaskRequest,
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateTaskCommand(
        task_id=task_id,
        actor=actor,
        title=body.title,
        description=body.description,
        priority=body.priority,
        estimated_hours=body.estimated_hours,
        due_date=body.due_date,
    )
    return _ok(UpdateTaskUseCase().execute(cmd, uow))


@task_router.get("/{task_id}/timeline", summary="Task activity, oldest first")
def get_task_timeline(
    task_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetTaskTimelineUseCase().execute(task_id, uow))


def _change_task_status(
    task_id: uuid.UUID,
    target: TaskStatus,
    actor: Actor,
    uow: AbstractUnitOfWork,
    blocked_reason: Optional[str] = None,
    resolution_notes: Optional[str] = None,
) -> Dict:
    cmd = ChangeTaskStatusCommand(
        task_id=task_id,
        target_status=target,
        actor=actor,
        blocked_reason=blocked_reason,
        resolution_notes=resolution_notes,
    )
    return _ok(ChangeTaskStatusUseCase().execute(cmd, uow))


@task_router.post("/{task_id}/start", summary="Start work on an assigned task")
def start_task(
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _change_task_status(task_id, TaskStatus.IN_PROGRESS, actor, uow)


@task_router.post("/{task_id}/block", summary="Mark a task as blocked")
def block_task(
    body: BlockTaskRequest,
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _change_task_status(task_id, TaskStatus.BLOCKED, actor, uow, blocked_reason=body.reason)


@task_router.post("/{task_id}/unblock", summary="Resume a blocked task")
def unblock_task(
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _change_task_status(task_id, TaskStatus.IN_PROGRESS, actor, uow)


@task_router.post("/{task_id}/complete", summary="Complete a task in progress")
def complete_task(
    body: Optional[CompleteTaskRequest] = None,
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _change_task_status(
        task_id, TaskStatus.COMPLETED, actor, uow,
        resolution_notes=body.resolution_notes if body else None,
    )


@task_router.post("/{task_id}/cancel", summary="Cancel a task")
def cancel_task(
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _change_task_status(task_id, TaskStatus.CANCELLED, actor, uow)


@task_router.post("/{task_id}/log-time", summary="Log hours worked on a task")
def log_task_time(
    body: LogTimeRequest,
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = LogTaskTimeCommand(
        task_id=task_id, hours=body.hours, actor=actor, description=body.description,
    )
    return _ok(LogTaskTimeUseCase().execute(cmd, uow))


@task_router.post("/{task_id}/notes", summary="Replace implementation notes")
def update_task_notes(
    body: TaskNotesRequest,
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateTaskNotesCommand(task_id=task_id, notes=body.notes, actor=actor)
    return _ok(UpdateTaskNotesUseCase().execute(cmd, uow))


@task_router.post("/{task_id}/resolution-notes", summary="Replace resolution notes")
def update_resolution_notes(
    body: ResolutionNotesRequest,
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateResolutionNotesCommand(task_id=task_id, notes=body.resolution_notes, actor=actor)
    return _ok(UpdateResolutionNotesUseCase().execute(cmd, uow))


@task_router.get("/{task_id}/checklist", summary="Checklist items in display order")
def list_checklist(
    task_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListChecklistUseCase().execute(task_id, uow))


@task_router.post(
    "/{task_id}/checklist",
    status_code=status.HTTP_201_CREATED,
    summary="Add a checklist item",
)
def add_checklist_item(
    body: AddChecklistItemRequest,
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddChecklistItemCommand(
        task_id=task_id, description=body.description, actor=actor, order=body.order,
    )
    return _ok(AddChecklistItemUseCase().execute(cmd, uow))


@task_router.put("/{task_id}/checklist/{item_id}/toggle", summary="Complete or reopen a checklist item")
def toggle_checklist_item(
    task_id: uuid.UUID = Path(...),
    item_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ToggleChecklistItemCommand(task_id=task_id, item_id=item_id, actor=actor)
    return _ok(ToggleChecklistItemUseCase().execute(cmd, uow))


@task_router.post("/{task_id}/assign-to-department", summary="Route a task to a department pool")
def assign_task_to_department(
    body: AssignTaskDepartmentRequest,
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AssignTaskToDepartmentCommand(
        task_id=task_id, department_id=body.department_id, actor=actor,
    )
    return _ok(AssignTaskToDepartmentUseCase().execute(cmd, uow))


@task_router.post("/{task_id}/assign-to-user", summary="Assign a task to an individual")
def assign_task_to_user(
    body: AssignTaskUserRequest,
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AssignTaskToUserCommand(
        task_id=task_id, user_id=body.user_id, actor=actor, direct=body.direct,
    )
    return _ok(AssignTaskToUserUseCase().execute(cmd, uow))


@task_router.post("/{task_id}/claim", summary="Claim an unclaimed task from your department pool")
def claim_task(
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ClaimTaskUseCase().execute(ClaimTaskCommand(task_id=task_id, actor=actor), uow))


@task_router.post("/{task_id}/unassign", summary="Clear department and user assignment")
def unassign_task(
    task_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(UnassignTaskUseCase().execute(UnassignTaskCommand(task_id=task_id, actor=actor), uow))


# ---------------------------------------------------------------------------
# Change requests
# ---------------------------------------------------------------------------

change_router = APIRouter(prefix="/change-requests", tags=["Change Requests"])


@change_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Draft a change request",
)
def create_change_request(
    body: CreateChangeRequestRequest,
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CreateChangeRequestCommand(
        title=body.title,
        description=body.description,
        change_type=body.change_type,
        priority=body.priority,
        risk_level=body.risk_level,
        impact_assessment=body.impact_assessment,
        rollback_plan=body.rollback_plan,
        affected_systems=body.affected_systems,
        actor=actor,
    )
    return _ok(CreateChangeRequestUseCase().execute(cmd, uow))


@change_router.get("", summary="List change requests")
def list_change_requests(
    change_status: Optional[ChangeRequestStatus] = Query(None, alias="status"),
    created_by_user_id: Optional[uuid.UUID] = Query(None),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListChangeRequestsUseCase().execute(
        uow, status=change_status, created_by_user_id=created_by_user_id,
    ))


@change_router.get("/{cr_id}", summary="Get a change request by ID")
def get_change_request(
    cr_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetChangeRequestUseCase().execute(cr_id, uow))


@change_router.put("/{cr_id}", summary="Edit a draft change request")
def update_change_request(
    body: UpdateChangeRequestRequest,
    cr_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateChangeRequestCommand(
        cr_id=cr_id, actor=actor, changes=body.model_dump(exclude_none=True),
    )
    return _ok(UpdateChangeRequestUseCase().execute(cmd, uow))


@change_router.post("/{cr_id}/submit", summary="Submit a draft change for review")
def submit_change_request(
    cr_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ChangeRequestActionCommand(cr_id=cr_id, actor=actor)
    return _ok(SubmitChangeRequestUseCase().execute(cmd, uow))


@change_router.post("/{cr_id}/begin-review", summary="Start CAB review")
def begin_change_review(
    cr_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ChangeRequestActionCommand(cr_id=cr_id, actor=actor)
    return _ok(BeginChangeReviewUseCase().execute(cmd, uow))


@change_router.post("/{cr_id}/approve", summary="Approve a change under review")
def approve_change_request(
    body: Optional[NotesRequest] = None,
    cr_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ChangeRequestActionCommand(cr_id=cr_id, actor=actor, notes=body.notes if body else None)
    return _ok(ApproveChangeRequestUseCase().execute(cmd, uow))


@change_router.post("/{cr_id}/deny", summary="Deny a change under review")
def deny_change_request(
    body: ReasonRequest,
    cr_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ChangeRequestActionCommand(cr_id=cr_id, actor=actor, reason=body.reason)
    return _ok(DenyChangeRequestUseCase().execute(cmd, uow))


@change_router.post("/{cr_id}/schedule", summary="Schedule an approved change")
def schedule_change_request(
    body: ScheduleChangeRequest,
    cr_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ChangeRequestActionCommand(
        cr_id=cr_id,
        actor=actor,
        scheduled_start_date=body.scheduled_start_date,
        scheduled_end_date=body.scheduled_end_date,
        change_window=body.change_window,
    )
    return _ok(ScheduleChangeRequestUseCase().execute(cmd, uow))


@change_router.post("/{cr_id}/start-execution", summary="Begin executing a scheduled change")
def start_change_execution(
    cr_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ChangeRequestActionCommand(cr_id=cr_id, actor=actor)
    return _ok(StartChangeExecutionUseCase().execute(cmd, uow))


@change_router.post("/{cr_id}/complete", summary="Record a successful change")
def complete_change_request(
    body: Optional[NotesRequest] = None,
    cr_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ChangeRequestActionCommand(cr_id=cr_id, actor=actor, notes=body.notes if body else None)
    return _ok(CompleteChangeRequestUseCase().execute(cmd, uow))


@change_router.post("/{cr_id}/mark-failed", summary="Record a failed change")
def fail_change_request(
    body: Optional[OptionalReasonRequest] = None,
    cr_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ChangeRequestActionCommand(cr_id=cr_id, actor=actor, reason=body.reason if body else None)
    return _ok(FailChangeRequestUseCase().execute(cmd, uow))


@change_router.post("/{cr_id}/rollback", summary="Roll back a failed change")
def rollback_change_request(
    body: ReasonRequest,
    cr_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ChangeRequestActionCommand(cr_id=cr_id, actor=actor, reason=body.reason)
    return _ok(RollbackChangeRequestUseCase().execute(cmd, uow))


@change_router.post("/{cr_id}/cancel", summary="Cancel a change before execution")
def cancel_change_request(
    body: Optional[OptionalReasonRequest] = None,
    cr_id: uuid.UUID = Path(...),
    actor: Actor = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ChangeRequestActionCommand(cr_id=cr_id, actor=actor, reason=body.reason if body else None)
    return _ok(CancelChangeRequestUseCase().execute(cmd, uow))


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

report_router = APIRouter(prefix="/reports", tags=["Reports"])


@report_router.get("/change-metrics", summary="Change counts, rates and timings")
def get_change_metrics(
    start: Optional[date] = Query(None, description="Created on or after"),
    end: Optional[date] = Query(None, description="Created on or before"),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetChangeMetricsUseCase().execute(uow, start, end))


@report_router.get("/success-rate", summary="Outcome split of executed changes")
def get_success_rate(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetSuccessRateUseCase().execute(uow, start, end))


@report_router.get("/monthly-trends", summary="Outcomes per month, oldest first")
def get_monthly_trends(
    months_back: Optional[int] = Query(None, ge=1, le=120),
    config: Config = Depends(get_settings),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetMonthlyTrendsUseCase().execute(uow, months_back or config.TREND_MONTHS))


@report_router.get("/top-affected-systems", summary="Systems touched by the most changes")
def get_top_affected_systems(
    top_count: Optional[int] = Query(None, ge=1, le=100),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    config: Config = Depends(get_settings),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetTopAffectedSystemsUseCase().execute(
        uow, top_count or config.TOP_SYSTEMS_DEFAULT, start, end,
    ))


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

dashboard_router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@dashboard_router.get("/stats", summary="Dashboard counters and recent activity")
def get_dashboard_stats(
    actor: Optional[Actor] = Depends(get_optional_actor),
    config: Config = Depends(get_settings),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetDashboardStatsUseCase().execute(
        uow, actor=actor, page_size=config.RECENT_ACTIVITY_PAGE_SIZE,
    ))


# ===========================================================================
# REGISTER ROUTERS
# ===========================================================================

api_v1.include_router(user_router)
api_v1.include_router(department_router)
api_v1.include_router(request_router)
api_v1.include_router(project_router)
api_v1.include_router(task_router)
api_v1.include_router(change_router)
api_v1.include_router(report_router)
api_v1.include_router(dashboard_router)

app.include_router(api_v1)


# ===========================================================================
# HEALTH CHECK
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# MCP Server: exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
mcp = FastApiMCP(app)
mcp.mount()


# ===========================================================================
# OPENAPI CUSTOMISATION: tag order and descriptions
# ===========================================================================

tags_metadata = [
    {
        "name": "Health",
        "description": "Liveness check.",
    },
    {
        "name": "Users",
        "description": "People who raise requests, review them and work on tasks.",
    },
    {
        "name": "Departments",
        "description": (
            "Organisational units.  Tasks routed to a department wait in its pool "
            "until a member claims them."
        ),
    },
    {
        "name": "Project Requests",
        "description": (
            "Intake workflow: Draft → Pending → InReview → Approved / Denied.  An "
            "approved request is converted exactly once into a project."
        ),
    },
    {
        "name": "Projects",
        "description": (
            "Project delivery: Planning → Active ⇄ OnHold → Completed.  A project "
            "cannot complete while any of its tasks is still open."
        ),
    },
    {
        "name": "Tasks",
        "description": (
            "Task lifecycle, time logging, notes, checklists, assignment and claiming.  Every "
            "change is recorded on the task timeline."
        ),
    },
    {
        "name": "Change Requests",
        "description": (
            "Change workflow from draft through CAB review, scheduling and "
            "execution to completion, failure or rollback."
        ),
    },
    {
        "name": "Reports",
        "description": "Change metrics, success rates, monthly trends and most-affected systems.",
    },
    {
        "name": "Dashboard",
        "description": "Counters across change, project and task management plus recent activity.",
    },
]

app.openapi_tags = tags_metadata
