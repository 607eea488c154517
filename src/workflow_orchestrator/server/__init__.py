"""FastAPI server adapter for workflow-orchestrator.

Design intent:
- Keep business logic in `workflow_orchestrator.orchestrator.*`
- Keep server-specific concerns (routing, CORS, HTTP status mapping) here

Run with ``uvicorn workflow_orchestrator.server:create_app --factory``.
"""

from __future__ import annotations

__all__ = ["create_app"]

from workflow_orchestrator.server.app import create_app
