"""
main.py

Entry point for the APEX Operations Console API.

Wires the in-memory infrastructure into the FastAPI app and starts uvicorn.

Usage
-----
    # Option 1: run directly (host/port from HOST / PORT, see config.py)
    python main.py

    # Option 2: run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

    # Option 3: production settings
    APP_ENV=production CORS_ORIGINS=https://ops.example.com uvicorn main:app --host 0.0.0.0

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI  (try every endpoint interactively)
    http://localhost:8000/redoc     ← ReDoc
    http://localhost:8000/health    ← liveness check
    http://localhost:8000/mcp       ← MCP server

Quick-start walkthrough (use Swagger UI or curl)
-------------------------------------------------
Every mutating call needs an  X-User-Id: <uuid>  header.

1.  POST  /api/v1/users                                register yourself, copy the "id"
2.  POST  /api/v1/departments                          create a department
3.  POST  /api/v1/project-requests                     draft a request with proposed tasks
4.  POST  /api/v1/project-requests/{id}/submit
5.  POST  /api/v1/project-requests/{id}/begin-review
6.  POST  /api/v1/project-requests/{id}/approve
7.  POST  /api/v1/project-requests/{id}/convert        creates the project and its tasks
8.  POST  /api/v1/tasks/{id}/assign-to-department      drop a task into the pool
9.  POST  /api/v1/tasks/{id}/claim                     claim it as a department member
10. GET   /api/v1/dashboard/stats                      see it all add up

Authentication note
-------------------
X-User-Id / X-User-Roles are trusted as sent.  Put the API behind a gateway
that authenticates callers and sets these headers before going to production.
"""

import uvicorn

from api import app, get_uow, settings
from infrastructure import InMemoryUnitOfWork


# ---------------------------------------------------------------------------
# Wire the concrete Unit of Work into the FastAPI dependency system.
# To swap databases, replace InMemoryUnitOfWork with your SQL implementation.
# ---------------------------------------------------------------------------

app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,          # auto-reload on file changes during development
        log_level=settings.log_level.lower(),
    )
