"""Collaborators the workflow engine depends on.

The JSON-file stores in :mod:`workflow_orchestrator.state` implement these,
but anything with the same shape can be passed to the engine.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from .models import Task, WorkflowDefinitionRecord, WorkflowRun
from .state_machine import TaskStatus


class DefinitionAccessor(Protocol):
    def get_by_id(self, workflow_id: str) -> WorkflowDefinitionRecord | None: ...

    def get_by_name_and_version(
        self, name: str, version: int | None = None
    ) -> WorkflowDefinitionRecord | None: ...


class TaskStore(Protocol):
    def create(self, task: Task) -> Task: ...

    def get(self, task_id: str) -> Task | None: ...

    def update(self, task_id: str, **updates: object) -> Task: ...

    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        output: dict[str, Any] | None = None,
        completed_by: str | None = None,
        **updates: object,
    ) -> Task: ...

    def find_by_sub_workflow_run_id(self, run_id: str) -> Task | None: ...

    def list_for_run(self, run_id: str) -> list[Task]: ...


class RunStore(Protocol):
    def create(self, run: WorkflowRun) -> WorkflowRun: ...

    def get(self, run_id: str) -> WorkflowRun | None: ...

    def save(self, run: WorkflowRun) -> WorkflowRun: ...


class AgentExecutor(Protocol):
    """Runs the core logic behind an agent identifier.

    Raising signals failure; the message becomes the task's error.
    """

    def execute(self, agent_id: str, input_data: dict[str, Any]) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class AgentJob:
    task_id: str
    agent_id: str
    input_data: dict[str, Any] = field(default_factory=dict)
    delay_seconds: float = 0.0


@dataclass(frozen=True, slots=True)
class AgentOutcome:
    task_id: str
    output: dict[str, Any] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class AgentDispatcher(Protocol):
    def submit(self, job: AgentJob, on_done: Callable[[AgentOutcome], None]) -> None: ...
