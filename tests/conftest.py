"""
Shared pytest fixtures for the APEX Operations Console test suite.

Provides:
    - now: fixed clock value used by analytics / dashboard tests
    - db: fresh in-memory database per test
    - uow / new_uow: units of work bound to that database
    - departments, users, actors: seeded directory entries
    - active_project, pooled_task: delivery entities written straight to the store
    - make_change: ChangeRequest builder for analytics populations
    - client: FastAPI TestClient wired to the per-test database
"""

import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("APP_ENV", "testing")

from application import (  # noqa: E402
    Actor,
    CreateDepartmentCommand,
    CreateDepartmentUseCase,
    CreateUserCommand,
    CreateUserUseCase,
)
from infrastructure import InMemoryDatabase, InMemoryUnitOfWork  # noqa: E402
from model import (  # noqa: E402
    ChangeRequest,
    ChangeRequestStatus,
    ChangeType,
    Project,
    ProjectStatus,
    Task,
)


NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

LONG_DESCRIPTION = "Move the billing database onto the new storage cluster."
JUSTIFICATION = "The current cluster is out of support and at 90% capacity."


# ---------------------
# Clock & storage
# ---------------------

@pytest.fixture
def now():
    return NOW


@pytest.fixture
def db():
    """A private database so tests never see each other's writes."""
    return InMemoryDatabase()


@pytest.fixture
def new_uow(db):
    """Factory for additional units of work over the same database."""
    return lambda: InMemoryUnitOfWork(db)


@pytest.fixture
def uow(new_uow):
    return new_uow()


# ---------------------
# Directory
# ---------------------

@pytest.fixture
def departments(uow):
    """Two active departments: ops and infra."""
    create = CreateDepartmentUseCase()
    ops = create.execute(CreateDepartmentCommand(name="Operations", description="Run the platform"), uow)
    infra = create.execute(CreateDepartmentCommand(name="Infrastructure"), uow)
    return {"ops": uuid.UUID(ops.id), "infra": uuid.UUID(infra.id)}


@pytest.fixture
def users(uow, departments):
    """A requester, a reviewer and two members of the ops department."""
    create = CreateUserUseCase()

    def make(name, email, department_id=None):
        dto = create.execute(
            CreateUserCommand(full_name=name, email=email, department_id=department_id), uow,
        )
        return uuid.UUID(dto.id)

    return {
        "requester": make("Rita Requester", "rita@example.com"),
        "reviewer": make("Rey Reviewer", "rey@example.com"),
        "u1": make("Uma One", "uma@example.com", departments["ops"]),
        "u2": make("Ugo Two", "ugo@example.com", departments["ops"]),
    }


@pytest.fixture
def actors(users):
    return {name: Actor(user_id=user_id) for name, user_id in users.items()}


# ---------------------
# Delivery entities
# ---------------------

@pytest.fixture
def active_project(uow, users):
    project = Project(
        name="Storage refresh",
        description=LONG_DESCRIPTION,
        status=ProjectStatus.ACTIVE,
        created_by_user_id=users["requester"],
    )
    with uow:
        uow.projects.save(project)
        uow.commit()
    return project.id


@pytest.fixture
def pooled_task(uow, users, departments, active_project):
    """An unclaimed task waiting in the ops department pool."""
    task = Task(
        project_id=active_project,
        title="Provision new volumes",
        created_by_user_id=users["requester"],
        assigned_to_department_id=departments["ops"],
    )
    with uow:
        uow.tasks.save(task)
        uow.commit()
    return task.id


# ---------------------
# Change population builder
# ---------------------

@pytest.fixture
def make_change():
    """
    Build a ChangeRequest already sitting in `status`.  `decided` is the
    outcome timestamp for Completed / Failed / RolledBack changes.
    """
    def make(
        status=ChangeRequestStatus.DRAFT,
        change_type=ChangeType.NORMAL,
        created=None,
        decided=None,
        systems="CRM",
        **fields,
    ):
        fields.setdefault("title", "Patch the CRM cluster")
        fields.setdefault("description", LONG_DESCRIPTION)
        cr = ChangeRequest(
            change_type=change_type,
            status=status,
            affected_systems=systems,
            created_date=created or NOW - timedelta(days=30),
            **fields,
        )
        if status == ChangeRequestStatus.COMPLETED:
            cr.completed_date = decided or NOW - timedelta(days=1)
        elif status == ChangeRequestStatus.FAILED:
            cr.failed_date = decided or NOW - timedelta(days=1)
        elif status == ChangeRequestStatus.ROLLED_BACK:
            cr.failed_date = (decided or NOW) - timedelta(days=2)
            cr.rolled_back_date = decided or NOW - timedelta(days=1)
        return cr

    return make


# ---------------------
# HTTP
# ---------------------

@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient

    from api import app, get_uow

    app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork(db)
    yield TestClient(app)
    app.dependency_overrides.clear()
