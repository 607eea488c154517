from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from workflow_orchestrator.agents import AgentRegistry
from workflow_orchestrator.core.config import OrchestratorConfig
from workflow_orchestrator.core.orchestrator import Orchestrator
from workflow_orchestrator.server.app import create_app


@pytest.fixture
def client(orchestrator_config: OrchestratorConfig, agent_registry: AgentRegistry) -> TestClient:
    return TestClient(create_app(Orchestrator(orchestrator_config, agents=agent_registry)))


def test_health_and_docs(client: TestClient) -> None:
    health = client.get("/api/v1/health").json()
    assert health["status"] == "ok"
    assert "version" in health

    assert client.get("/api/openapi.json").status_code == 200


def test_review_workflow_over_http(client: TestClient, review_workflow: dict[str, Any]) -> None:
    created = client.post("/api/v1/workflows", json={"definition_json": review_workflow})
    assert created.status_code == 201
    workflow = created.json()
    assert workflow["name"] == "review"
    assert workflow["version"] == 1

    assert [w["workflow_id"] for w in client.get("/api/v1/workflows").json()] == [
        workflow["workflow_id"]
    ]
    assert client.get(f"/api/v1/workflows/{workflow['workflow_id']}").status_code == 200

    started = client.post(
        "/api/v1/runs",
        json={"workflow_name": "review", "triggering_data_json": {"loan_id": "L-7"}},
    )
    assert started.status_code == 201
    run = started.json()
    assert run["status"] == "in_progress"
    assert run["current_step_name"] == "review"

    tasks = client.get(f"/api/v1/runs/{run['run_id']}/tasks").json()
    assert len(tasks) == 1
    task_id = tasks[0]["task_id"]
    assert client.get(f"/api/v1/tasks/{task_id}").json()["status"] == "assigned"

    completed = client.post(
        f"/api/v1/tasks/{task_id}/complete",
        json={"output_data_json": {"outcome": "approved"}, "user_id": "alice"},
    )
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    final = client.get(f"/api/v1/runs/{run['run_id']}").json()
    assert final["status"] == "completed"
    assert final["results_json"] == {"loan_id": "L-7", "outcome": "approved"}


def test_activate_switches_version(client: TestClient, review_workflow: dict[str, Any]) -> None:
    v1 = client.post("/api/v1/workflows", json={"definition_json": review_workflow}).json()
    client.post("/api/v1/workflows", json={"definition_json": review_workflow})

    activated = client.post(f"/api/v1/workflows/{v1['workflow_id']}/activate")

    assert activated.status_code == 200
    assert activated.json()["is_active"] is True
    run = client.post("/api/v1/runs", json={"workflow_name": "review"}).json()
    assert run["workflow_id"] == v1["workflow_id"]


def test_error_mapping(client: TestClient) -> None:
    invalid = client.post(
        "/api/v1/workflows",
        json={"definition_json": {"start_step": "x", "steps": [{"name": "x", "type": "warp"}]}},
    )
    assert invalid.status_code == 422
    assert "Unknown step type 'warp'" in invalid.json()["detail"]

    assert client.post("/api/v1/runs", json={"workflow_id": "missing"}).status_code == 404
    assert client.post("/api/v1/runs", json={}).status_code == 422
    assert client.get("/api/v1/runs/missing").status_code == 404
    assert client.get("/api/v1/runs/missing/tasks").status_code == 404
    assert client.get("/api/v1/tasks/missing").status_code == 404
    assert client.post("/api/v1/tasks/missing/complete", json={}).status_code == 404
    assert client.get("/api/v1/workflows/missing").status_code == 404
    assert client.post("/api/v1/workflows/missing/activate").status_code == 404


def test_escalation_sweep_endpoint(client: TestClient) -> None:
    response = client.post("/api/v1/tasks/escalations")

    assert response.status_code == 200
    assert response.json() == {"escalated_task_ids": []}


def test_create_app_reads_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ORCHESTRATOR_STATE_STORAGE_PATH", str(tmp_path / "state"))
    monkeypatch.setenv("ORCHESTRATOR_CORS_ORIGINS", "https://example.test")
    monkeypatch.delenv("ORCHESTRATOR_LLM_OPENAI_API_KEY", raising=False)

    app = create_app()

    assert app.state.settings.parsed_cors_origins() == ["https://example.test"]
    assert app.state.orchestrator.config.state.storage_path == tmp_path / "state"
    assert TestClient(app).get("/api/v1/health").status_code == 200
