"""
infrastructure.py

In-memory implementation of all repository interfaces and the Unit of Work.

This is a self-contained backend that stores everything in plain Python
dicts keyed by UUID.  It is suitable for local development, demos, and
integration testing without needing a real database, and it still
behaves transactionally:

- reads hand out deep copies, so callers never share mutable state with
  the store or with each other;
- save() only buffers; nothing is visible to other units of work until
  commit();
- commit() runs under one lock, checks every buffered entity's `version`
  against the stored copy and then applies all writes or none.

To swap in a real database (e.g. SQLAlchemy + PostgreSQL) later, implement
the same Abstract* interfaces from application.py and override get_uow() in
api.py:

    app.dependency_overrides[get_uow] = lambda: SqlAlchemyUnitOfWork(session)

Nothing in service.py, application.py, or api.py needs to change.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from typing import Dict, List, Optional, Tuple

from application import (
    AbstractChangeRequestRepository,
    AbstractDepartmentRepository,
    AbstractProjectRepository,
    AbstractProjectRequestRepository,
    AbstractTaskActivityRepository,
    AbstractTaskRepository,
    AbstractUnitOfWork,
    AbstractUserRepository,
    ConcurrencyConflictError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic in-memory store
# ---------------------------------------------------------------------------

class _Store(dict):
    """A plain dict with typed get/save helpers."""

    def fetch(self, key: uuid.UUID):
        return self.get(key)

    def put(self, obj) -> None:
        self[obj.id] = obj

    def all(self) -> list:
        return list(self.values())


# ---------------------------------------------------------------------------
# Shared in-memory database (module-level singleton)
# Persists for the lifetime of the process; restarting uvicorn resets it.
# ---------------------------------------------------------------------------

class InMemoryDatabase:
    def __init__(self):
        self.users:            _Store = _Store()
        self.departments:      _Store = _Store()
        self.project_requests: _Store = _Store()
        self.projects:         _Store = _Store()
        self.tasks:            _Store = _Store()
        self.task_activities:  _Store = _Store()
        self.change_requests:  _Store = _Store()
        self.lock = threading.RLock()

    def reset(self) -> None:
        with self.lock:
            for store in self.stores().values():
                store.clear()

    def stores(self) -> Dict[str, _Store]:
        return {
            "users": self.users,
            "departments": self.departments,
            "project_requests": self.project_requests,
            "projects": self.projects,
            "tasks": self.tasks,
            "task_activities": self.task_activities,
            "change_requests": self.change_requests,
        }


# Module-level singleton shared across all requests
_db = InMemoryDatabase()


# ---------------------------------------------------------------------------
# Repository implementations
# ---------------------------------------------------------------------------

class _InMemoryRepository:
    """
    Read-through view of one store for one unit of work.  Entities saved in
    this unit of work shadow the committed copies until commit/rollback.
    """

    def __init__(self, db: InMemoryDatabase, name: str, pending: Dict[Tuple[str, uuid.UUID], object]):
        self._db = db
        self._name = name
        self._s: _Store = db.stores()[name]
        self._pending = pending

    def get(self, entity_id):
        staged = self._pending.get((self._name, entity_id))
        if staged is not None:
            return staged
        with self._db.lock:
            return copy.deepcopy(self._s.fetch(entity_id))

    def list_all(self):
        with self._db.lock:
            merged = {obj.id: copy.deepcopy(obj) for obj in self._s.all()}
        for (name, entity_id), obj in self._pending.items():
            if name == self._name:
                merged[entity_id] = obj
        return list(merged.values())

    def save(self, entity) -> None:
        self._pending[(self._name, entity.id)] = entity


class InMemoryUserRepository(_InMemoryRepository, AbstractUserRepository):
    def get_by_email(self, email):
        return next((u for u in self.list_all() if u.email == email.strip().lower()), None)

    def list_for_department(self, department_id):
        return [u for u in self.list_all() if u.department_id == department_id]


class InMemoryDepartmentRepository(_InMemoryRepository, AbstractDepartmentRepository):
    pass


class InMemoryProjectRequestRepository(_InMemoryRepository, AbstractProjectRequestRepository):
    pass


class InMemoryProjectRepository(_InMemoryRepository, AbstractProjectRepository):
    pass


class InMemoryTaskRepository(_InMemoryRepository, AbstractTaskRepository):
    def list_for_project(self, project_id):
        return [t for t in self.list_all() if t.project_id == project_id]


class InMemoryTaskActivityRepository(_InMemoryRepository, AbstractTaskActivityRepository):
    def list_for_task(self, task_id):
        return [a for a in self.list_all() if a.task_id == task_id]


class InMemoryChangeRequestRepository(_InMemoryRepository, AbstractChangeRequestRepository):
    pass


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Wraps all in-memory repositories around a private write buffer.

    commit() is an optimistic compare-and-set over the whole buffer: an
    entity may be written only if the stored copy still has the version it
    was read with (0 for entities that have never been stored).  Accepted
    writes get version + 1.  In a real SQL implementation, commit() would
    call session.commit() with a version column in the WHERE clause.
    """

    def __init__(self, db: Optional[InMemoryDatabase] = None):
        self._db = db or _db
        self._pending: Dict[Tuple[str, uuid.UUID], object] = {}
        self.users            = InMemoryUserRepository(self._db, "users", self._pending)
        self.departments      = InMemoryDepartmentRepository(self._db, "departments", self._pending)
        self.project_requests = InMemoryProjectRequestRepository(self._db, "project_requests", self._pending)
        self.projects         = InMemoryProjectRepository(self._db, "projects", self._pending)
        self.tasks            = InMemoryTaskRepository(self._db, "tasks", self._pending)
        self.task_activities  = InMemoryTaskActivityRepository(self._db, "task_activities", self._pending)
        self.change_requests  = InMemoryChangeRequestRepository(self._db, "change_requests", self._pending)

    def commit(self) -> None:
        if not self._pending:
            return
        stores = self._db.stores()
        with self._db.lock:
            for (name, entity_id), entity in self._pending.items():
                stored = stores[name].fetch(entity_id)
                current_version = stored.version if stored is not None else 0
                if current_version != entity.version:
                    logger.warning(
                        "Commit rejected: %s %s is at version %d, write was based on %d",
                        name, entity_id, current_version, entity.version,
                        extra={"entity_id": str(entity_id), "event_type": "uow.conflict"},
                    )
                    raise ConcurrencyConflictError(type(entity).__name__, entity_id)
            for (name, _), entity in self._pending.items():
                entity.version += 1
                stores[name].put(copy.deepcopy(entity))
        logger.debug("Committed %d write(s)", len(self._pending))
        self._pending.clear()

    def rollback(self) -> None:
        self._pending.clear()
