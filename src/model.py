"""
model.py

Domain models for the APEX Operations Console: project intake,
project delivery, departmental work assignment, and change management.

Entities
--------
- User
- Department
- ProjectRequest
- ProposedTask        (value object carried by a ProjectRequest)
- Project
- Task
- ChecklistItem       (value object carried by a Task)
- TaskActivity
- ChangeRequest

All models use Python dataclasses for clean, framework-agnostic definitions.
UUID primary keys are used throughout for portability.
Timestamps are always stored in UTC.

Every persisted entity carries a `version` counter.  It is owned by the
unit of work: it is compared on commit (optimistic compare-and-set) and
incremented when a write is accepted.  Services never touch it.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ProjectRequestStatus(str, Enum):
    """Intake workflow status of a project request."""
    DRAFT = "Draft"
    PENDING = "Pending"
    IN_REVIEW = "InReview"
    APPROVED = "Approved"
    DENIED = "Denied"
    CANCELLED = "Cancelled"
    CONVERTED = "Converted"


class RequestPriority(str, Enum):
    """Priority scale used by project requests and the projects built from them."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class ProjectStatus(str, Enum):
    PLANNING = "Planning"
    ACTIVE = "Active"
    ON_HOLD = "OnHold"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class TaskStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    BLOCKED = "Blocked"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Priority(str, Enum):
    """Priority scale used by tasks and change requests."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class ChangeType(str, Enum):
    """
    Classification of a change request.

    STANDARD   – Pre-approved, low-risk, repeatable change.
    NORMAL     – Goes through full Change Advisory Board (CAB) review.
    EMERGENCY  – Expedited change to restore service; still CAB-reviewed.
    """
    STANDARD = "Standard"
    NORMAL = "Normal"
    EMERGENCY = "Emergency"


class ChangeRequestStatus(str, Enum):
    DRAFT = "Draft"
    PENDING = "Pending"
    IN_REVIEW = "InReview"
    APPROVED = "Approved"
    DENIED = "Denied"
    SCHEDULED = "Scheduled"
    EXECUTING = "Executing"
    COMPLETED = "Completed"
    FAILED = "Failed"
    ROLLED_BACK = "RolledBack"
    CANCELLED = "Cancelled"


class ChangeOutcome(str, Enum):
    """Execution outcome class recorded when a change reaches an outcome state."""
    SUCCESSFUL = "successful"
    FAILED = "failed"
    ROLLED_BACK = "rolledBack"


class TaskActivityType(str, Enum):
    CREATED = "Created"
    UPDATED = "Updated"
    ASSIGNED = "Assigned"
    CLAIMED = "Claimed"
    UNASSIGNED = "Unassigned"
    STARTED = "Started"
    BLOCKED = "Blocked"
    UNBLOCKED = "Unblocked"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    TIME_LOGGED = "TimeLogged"
    NOTES_UPDATED = "NotesUpdated"
    CHECKLIST_ITEM_ADDED = "ChecklistItemAdded"
    CHECKLIST_ITEM_COMPLETED = "ChecklistItemCompleted"


# Terminal states: no transition is defined out of these.
TERMINAL_REQUEST_STATUSES = frozenset({
    ProjectRequestStatus.DENIED,
    ProjectRequestStatus.CANCELLED,
    ProjectRequestStatus.CONVERTED,
})

TERMINAL_PROJECT_STATUSES = frozenset({
    ProjectStatus.COMPLETED,
    ProjectStatus.CANCELLED,
})

TERMINAL_TASK_STATUSES = frozenset({
    TaskStatus.COMPLETED,
    TaskStatus.CANCELLED,
})

TERMINAL_CHANGE_STATUSES = frozenset({
    ChangeRequestStatus.DENIED,
    ChangeRequestStatus.COMPLETED,
    ChangeRequestStatus.ROLLED_BACK,
    ChangeRequestStatus.CANCELLED,
})


# ---------------------------------------------------------------------------
# Organisation Entities
# ---------------------------------------------------------------------------


@dataclass
class User:
    """
    A person known to the console.

    Authentication lives outside this system; a User record only exists so
    that assignment targets and actors can be resolved and validated.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    full_name: str = ""
    email: str = ""
    department_id: Optional[uuid.UUID] = None     # FK → Department.id
    is_active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    version: int = 0


@dataclass
class Department:
    """
    An organisational unit.  Tasks routed to a department sit in its pool
    until a member claims them.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""
    description: str = ""
    department_manager_user_id: Optional[uuid.UUID] = None   # FK → User.id
    is_active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    version: int = 0


# ---------------------------------------------------------------------------
# Project Intake
# ---------------------------------------------------------------------------


@dataclass
class ProposedTask:
    """A unit of scope attached to a request; materialised as a Task on conversion."""
    title: str = ""
    description: str = ""
    priority: Priority = Priority.MEDIUM
    estimated_hours: Optional[float] = None
    due_date: Optional[date] = None


@dataclass
class ProjectRequest:
    """
    A proposal for work, created in DRAFT by the requesting user.

    Requests are never physically deleted: DENIED, CANCELLED and CONVERTED
    requests are kept for audit and reporting.

    Field invariants (maintained by ProjectRequestService):
    - approval_date / approved_by_user_id set iff status is APPROVED or CONVERTED
    - denial_reason set iff status is DENIED
    - converted_to_project_id set iff status is CONVERTED
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    title: str = ""
    description: str = ""
    business_justification: str = ""
    status: ProjectRequestStatus = ProjectRequestStatus.DRAFT
    priority: RequestPriority = RequestPriority.MEDIUM
    requesting_user_id: uuid.UUID = field(default_factory=uuid.uuid4)  # FK → User.id

    # Optional planning hints copied onto the project at conversion
    due_date: Optional[date] = None
    estimated_budget: Optional[float] = None
    proposed_start_date: Optional[date] = None
    proposed_end_date: Optional[date] = None
    proposed_tasks: List[ProposedTask] = field(default_factory=list)

    # Review
    submitted_date: Optional[datetime] = None
    reviewed_date: Optional[datetime] = None
    reviewed_by_user_id: Optional[uuid.UUID] = None
    review_notes: Optional[str] = None

    # Decision
    approval_date: Optional[datetime] = None
    approved_by_user_id: Optional[uuid.UUID] = None
    approval_notes: Optional[str] = None
    denial_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None

    converted_to_project_id: Optional[uuid.UUID] = None      # FK → Project.id

    created_date: datetime = field(default_factory=_utcnow)
    last_modified_date: datetime = field(default_factory=_utcnow)
    version: int = 0


# ---------------------------------------------------------------------------
# Project Delivery
# ---------------------------------------------------------------------------


@dataclass
class Project:
    """
    Approved work.  A project exclusively owns its tasks.

    `actual_completion_date` is set iff status is COMPLETED.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""
    description: str = ""
    status: ProjectStatus = ProjectStatus.PLANNING
    priority: RequestPriority = RequestPriority.MEDIUM
    budget: Optional[float] = None
    project_manager_user_id: Optional[uuid.UUID] = None      # FK → User.id

    start_date: Optional[date] = None
    target_completion_date: Optional[date] = None
    actual_completion_date: Optional[datetime] = None

    created_by_user_id: uuid.UUID = field(default_factory=uuid.uuid4)
    converted_from_request_id: Optional[uuid.UUID] = None    # FK → ProjectRequest.id

    created_date: datetime = field(default_factory=_utcnow)
    last_modified_date: datetime = field(default_factory=_utcnow)
    version: int = 0


@dataclass
class ChecklistItem:
    """One step on a task's checklist; listed by `order`."""
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    description: str = ""
    order: int = 0
    is_completed: bool = False
    completed_by_user_id: Optional[uuid.UUID] = None    # FK → User.id
    completed_date: Optional[datetime] = None
    created_date: datetime = field(default_factory=_utcnow)


@dataclass
class Task:
    """
    A unit of work inside a project.

    Routing: unassigned → department pool (assigned_to_department_id set,
    assigned_to_user_id None) → claimed / assigned to an individual.

    - blocked_reason / blocked_date set iff status is BLOCKED
    - completed_date set iff status is COMPLETED
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    project_id: uuid.UUID = field(default_factory=uuid.uuid4)     # FK → Project.id
    title: str = ""
    description: str = ""
    status: TaskStatus = TaskStatus.NOT_STARTED
    priority: Priority = Priority.MEDIUM

    assigned_to_department_id: Optional[uuid.UUID] = None         # FK → Department.id
    assigned_to_user_id: Optional[uuid.UUID] = None               # FK → User.id
    created_by_user_id: uuid.UUID = field(default_factory=uuid.uuid4)

    estimated_hours: Optional[float] = None
    actual_hours: float = 0.0
    due_date: Optional[date] = None

    started_date: Optional[datetime] = None
    started_by_user_id: Optional[uuid.UUID] = None
    completed_date: Optional[datetime] = None
    completed_by_user_id: Optional[uuid.UUID] = None
    blocked_reason: Optional[str] = None
    blocked_date: Optional[datetime] = None

    implementation_notes: Optional[str] = None
    resolution_notes: Optional[str] = None
    checklist: List[ChecklistItem] = field(default_factory=list)

    created_date: datetime = field(default_factory=_utcnow)
    last_modified_date: datetime = field(default_factory=_utcnow)
    version: int = 0


@dataclass
class TaskActivity:
    """
    Append-only timeline entry for a task.  Written by the system for every
    task mutation; never edited afterwards.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    task_id: uuid.UUID = field(default_factory=uuid.uuid4)        # FK → Task.id
    activity_type: TaskActivityType = TaskActivityType.UPDATED
    description: str = ""
    details: Optional[str] = None
    user_id: uuid.UUID = field(default_factory=uuid.uuid4)        # FK → User.id
    timestamp: datetime = field(default_factory=_utcnow)
    version: int = 0


# ---------------------------------------------------------------------------
# Change Management
# ---------------------------------------------------------------------------


@dataclass
class ChangeRequest:
    """
    A request to change a production system.

    Review mirrors ProjectRequest up to APPROVED; execution then moves
    through SCHEDULED and EXECUTING to an outcome (COMPLETED, FAILED, and
    optionally ROLLED_BACK after a failure).

    `affected_systems` is free text; the analytics layer parses it into
    individual system names.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    title: str = ""
    description: str = ""
    change_type: ChangeType = ChangeType.NORMAL
    priority: Priority = Priority.MEDIUM
    risk_level: RiskLevel = RiskLevel.LOW
    status: ChangeRequestStatus = ChangeRequestStatus.DRAFT

    impact_assessment: str = ""
    rollback_plan: str = ""
    affected_systems: str = ""

    # CAB review
    submitted_date: Optional[datetime] = None
    reviewed_by_user_id: Optional[uuid.UUID] = None
    approved_date: Optional[datetime] = None
    approved_by_user_id: Optional[uuid.UUID] = None
    approval_notes: Optional[str] = None
    denied_date: Optional[datetime] = None
    denial_reason: Optional[str] = None

    # Scheduling
    scheduled_start_date: Optional[datetime] = None
    scheduled_end_date: Optional[datetime] = None
    change_window: Optional[str] = None

    # Execution
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    implementation_notes: Optional[str] = None
    completed_date: Optional[datetime] = None
    failed_date: Optional[datetime] = None
    failure_reason: Optional[str] = None

    # Rollback / cancellation
    rolled_back_date: Optional[datetime] = None
    rollback_reason: Optional[str] = None
    cancelled_date: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    created_by_user_id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_date: datetime = field(default_factory=_utcnow)
    last_modified_date: datetime = field(default_factory=_utcnow)
    version: int = 0

    @property
    def requires_cab_approval(self) -> bool:
        return self.change_type != ChangeType.STANDARD
