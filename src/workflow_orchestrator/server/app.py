"""FastAPI app factory.

Endpoints are intentionally thin wrappers over :class:`Orchestrator`.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from workflow_orchestrator import __version__
from workflow_orchestrator.core.orchestrator import Orchestrator
from workflow_orchestrator.orchestrator.workflow.errors import (
    DefinitionError,
    RunNotFoundError,
    TaskNotFoundError,
)
from workflow_orchestrator.orchestrator.workflow.escalation import escalate_overdue_tasks
from workflow_orchestrator.orchestrator.workflow.models import (
    Task,
    WorkflowDefinitionRecord,
    WorkflowRun,
)
from workflow_orchestrator.server.config import ServerSettings
from workflow_orchestrator.server.models import (
    CompleteTaskRequest,
    EscalationSweepResult,
    RegisterDefinitionRequest,
    StartRunRequest,
)

logger = logging.getLogger(__name__)


def create_app(orchestrator: Orchestrator | None = None) -> FastAPI:
    settings = ServerSettings()
    orch = orchestrator or Orchestrator()

    app = FastAPI(
        title="Workflow Orchestrator",
        version=__version__,
        description="REST API over the local-first workflow engine.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings
    app.state.orchestrator = orch

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.get("/api/v1/workflows", response_model=list[WorkflowDefinitionRecord])
    def list_workflows() -> list[WorkflowDefinitionRecord]:
        return orch.definitions.list()

    @app.post("/api/v1/workflows", response_model=WorkflowDefinitionRecord, status_code=201)
    def register_workflow(req: RegisterDefinitionRequest) -> WorkflowDefinitionRecord:
        try:
            return orch.definitions.register(
                req.definition_json,
                name=req.name,
                version=req.version,
                description=req.description,
                is_active=req.is_active,
            )
        except DefinitionError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

    @app.get("/api/v1/workflows/{workflow_id}", response_model=WorkflowDefinitionRecord)
    def get_workflow(workflow_id: str) -> WorkflowDefinitionRecord:
        record = orch.definitions.get_by_id(workflow_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Workflow definition not found")
        return record

    @app.post(
        "/api/v1/workflows/{workflow_id}/activate", response_model=WorkflowDefinitionRecord
    )
    def activate_workflow(workflow_id: str) -> WorkflowDefinitionRecord:
        try:
            return orch.definitions.activate(workflow_id)
        except DefinitionError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    @app.post("/api/v1/runs", response_model=WorkflowRun, status_code=201)
    def start_run(req: StartRunRequest) -> WorkflowRun:
        try:
            return orch.start_run(
                workflow_id=req.workflow_id,
                workflow_name=req.workflow_name,
                workflow_version=req.workflow_version,
                user_id=req.user_id,
                input_data=req.triggering_data_json,
            )
        except DefinitionError as e:
            if "not found" in str(e):
                raise HTTPException(status_code=404, detail=str(e)) from e
            raise HTTPException(status_code=422, detail=str(e)) from e

    @app.get("/api/v1/runs/{run_id}", response_model=WorkflowRun)
    def get_run(run_id: str) -> WorkflowRun:
        try:
            return orch.get_run(run_id)
        except RunNotFoundError as e:
            raise HTTPException(status_code=404, detail="Workflow run not found") from e

    @app.get("/api/v1/runs/{run_id}/tasks", response_model=list[Task])
    def list_run_tasks(run_id: str) -> list[Task]:
        if orch.runs.get(run_id) is None:
            raise HTTPException(status_code=404, detail="Workflow run not found")
        return orch.tasks.list_for_run(run_id)

    @app.get("/api/v1/tasks/{task_id}", response_model=Task)
    def get_task(task_id: str) -> Task:
        task = orch.tasks.get(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return task

    @app.post("/api/v1/tasks/{task_id}/complete", response_model=Task)
    def complete_task(task_id: str, req: CompleteTaskRequest) -> Task:
        try:
            return orch.complete_task(
                task_id, req.output_data_json, user_id=req.user_id, status=req.status
            )
        except TaskNotFoundError as e:
            raise HTTPException(status_code=404, detail="Task not found") from e

    @app.post("/api/v1/tasks/escalations", response_model=EscalationSweepResult)
    def escalate_tasks() -> EscalationSweepResult:
        escalated = escalate_overdue_tasks(orch.tasks)
        return EscalationSweepResult(escalated_task_ids=[t.task_id for t in escalated])

    return app
