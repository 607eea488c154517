"""Composition root wiring stores, agents and the engine."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from workflow_orchestrator.agents import AgentRegistry, build_default_registry
from workflow_orchestrator.agents.dispatch import BackgroundAgentDispatcher, InlineAgentDispatcher
from workflow_orchestrator.core.config import OrchestratorConfig
from workflow_orchestrator.llm.factory import LLMFactory
from workflow_orchestrator.llm.provider import LLMProvider
from workflow_orchestrator.orchestrator.workflow.engine import WorkflowEngine
from workflow_orchestrator.orchestrator.workflow.errors import DefinitionError, RunNotFoundError
from workflow_orchestrator.orchestrator.workflow.interfaces import AgentDispatcher
from workflow_orchestrator.orchestrator.workflow.models import Task, WorkflowRun
from workflow_orchestrator.state import DefinitionStore, RunStore, TaskStore

logger = logging.getLogger(__name__)


class Orchestrator:
    """Facade over the workflow engine and its local state.

    The orchestrator owns the JSON stores under ``config.state.storage_path``,
    the agent registry and the engine. Hosts (CLI, REST server) talk to this
    class rather than assembling the pieces themselves.
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        *,
        agents: AgentRegistry | None = None,
        llm: LLMProvider | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Configuration object. If None, loads from environment.
            agents: Agent registry. Defaults to the built-in agents.
            llm: LLM provider for AI-backed agents. Defaults to one built from
                ``config.llm`` when credentials are configured.
        """
        self.config = config or OrchestratorConfig()

        state = self.config.state
        self.definitions = DefinitionStore(state.definitions_file)
        self.runs = RunStore(state.runs_file)
        self.tasks = TaskStore(state.tasks_file)

        if agents is None:
            if llm is None:
                llm = LLMFactory.create_if_configured(self.config.llm)
            agents = build_default_registry(llm)
        self.agents = agents

        self.dispatcher: AgentDispatcher
        if self.config.engine.agent_dispatch == "background":
            self.dispatcher = BackgroundAgentDispatcher(agents)
        else:
            self.dispatcher = InlineAgentDispatcher(agents)

        self.engine = WorkflowEngine(
            definitions=self.definitions,
            tasks=self.tasks,
            runs=self.runs,
            agents=agents,
            dispatcher=self.dispatcher,
            max_save_retries=self.config.engine.max_save_retries,
        )

        logger.info(
            "Orchestrator initialized",
            extra={
                "storage_path": str(state.storage_path),
                "agent_dispatch": self.config.engine.agent_dispatch,
                "agents": agents.identifiers(),
            },
        )

    def start_run(
        self,
        *,
        workflow_id: str | None = None,
        workflow_name: str | None = None,
        workflow_version: int | None = None,
        user_id: str | None = None,
        input_data: Mapping[str, Any] | None = None,
    ) -> WorkflowRun:
        """Start a run by workflow id, or by name and optional version.

        Raises:
            DefinitionError: If no matching definition exists.
        """
        if workflow_id is None:
            if not workflow_name:
                raise DefinitionError("Either workflow_id or workflow_name is required")
            record = self.definitions.get_by_name_and_version(workflow_name, workflow_version)
            if record is None:
                version = workflow_version if workflow_version is not None else "active"
                raise DefinitionError(
                    f"Workflow definition '{workflow_name}' (version {version}) not found."
                )
            workflow_id = record.workflow_id
        return self.engine.start_run(workflow_id, user_id=user_id, input_data=input_data)

    def complete_task(
        self,
        task_id: str,
        output_data: Mapping[str, Any] | None = None,
        *,
        user_id: str | None = None,
        status: str | None = None,
    ) -> Task:
        return self.engine.on_task_completed(
            task_id, output_data, completing_user_id=user_id, explicit_status=status
        )

    def get_run(self, run_id: str) -> WorkflowRun:
        run = self.runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def wait_for_agents(self, timeout: float | None = None) -> bool:
        """Block until background agent jobs finish (no-op when inline)."""
        if isinstance(self.dispatcher, BackgroundAgentDispatcher):
            return self.dispatcher.wait(timeout)
        return True
