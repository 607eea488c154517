"""Test configuration and fixtures."""

from __future__ import annotations

import copy
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from workflow_orchestrator.agents import AgentRegistry
from workflow_orchestrator.core.config import (
    EngineConfig,
    LLMConfig,
    OrchestratorConfig,
    StateConfig,
)
from workflow_orchestrator.orchestrator.workflow.engine import WorkflowEngine
from workflow_orchestrator.orchestrator.workflow.models import WorkflowDefinitionRecord
from workflow_orchestrator.state import DefinitionStore, RunStore, TaskStore

REVIEW_WORKFLOW: dict[str, Any] = {
    "name": "review",
    "start_step": "review",
    "steps": [
        {
            "name": "review",
            "type": "human_review",
            "assigned_to_user_id": "alice",
            "transitions": [
                {
                    "condition_type": "on_output_value",
                    "field": "outcome",
                    "operator": "==",
                    "value": "approved",
                    "to": "end_ok",
                },
                {"condition_type": "always", "to": "end_fail"},
            ],
        },
        {"name": "end_ok", "type": "end", "final_status": "completed"},
        {"name": "end_fail", "type": "end", "final_status": "failed"},
    ],
}


@pytest.fixture
def temp_state_dir(tmp_path: Path) -> Path:
    """Provide a temporary state directory."""
    state_dir = tmp_path / ".state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def llm_config() -> LLMConfig:
    """Provide a test LLM configuration."""
    return LLMConfig(
        provider="openai",
        openai_api_key="test-key",
        openai_model="gpt-4o-mini",
    )


@pytest.fixture
def state_config(temp_state_dir: Path) -> StateConfig:
    """Provide a test state configuration."""
    return StateConfig(storage_path=temp_state_dir)


@pytest.fixture
def orchestrator_config(llm_config: LLMConfig, state_config: StateConfig) -> OrchestratorConfig:
    """Provide a test orchestrator configuration."""
    return OrchestratorConfig(
        log_level="DEBUG",
        debug=True,
        llm=llm_config,
        state=state_config,
        engine=EngineConfig(agent_dispatch="inline"),
    )


@pytest.fixture
def definition_store(temp_state_dir: Path) -> DefinitionStore:
    return DefinitionStore(temp_state_dir / "definitions.json")


@pytest.fixture
def run_store(temp_state_dir: Path) -> RunStore:
    return RunStore(temp_state_dir / "runs.json")


@pytest.fixture
def task_store(temp_state_dir: Path) -> TaskStore:
    return TaskStore(temp_state_dir / "tasks.json")


def _boom(_input: dict[str, Any]) -> dict[str, Any]:
    raise RuntimeError("agent exploded")


@pytest.fixture
def agent_registry() -> AgentRegistry:
    """Registry with small deterministic agents."""
    registry = AgentRegistry()
    registry.register("echo", lambda data: {"echoed": data.get("value")})
    registry.register("score", lambda data: {"score": data.get("score", 0) * 2})
    registry.register("boom", _boom)
    return registry


@pytest.fixture
def engine(
    definition_store: DefinitionStore,
    run_store: RunStore,
    task_store: TaskStore,
    agent_registry: AgentRegistry,
) -> WorkflowEngine:
    return WorkflowEngine(
        definitions=definition_store,
        tasks=task_store,
        runs=run_store,
        agents=agent_registry,
    )


@pytest.fixture
def review_workflow() -> dict[str, Any]:
    """Single human review routing to a completed or failed end step."""
    return copy.deepcopy(REVIEW_WORKFLOW)


@pytest.fixture
def register(
    definition_store: DefinitionStore,
) -> Callable[..., WorkflowDefinitionRecord]:
    """Register a definition and return its stored record."""

    def _register(definition: dict[str, Any], **kwargs: Any) -> WorkflowDefinitionRecord:
        return definition_store.register(definition, **kwargs)

    return _register
