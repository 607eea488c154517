"""Persisted records: definitions, runs and tasks."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .definitions import EscalationPolicy
from .state_machine import (
    TERMINAL_RUN_STATUSES,
    TERMINAL_TASK_STATUSES,
    BranchStatus,
    RunStatus,
    TaskStatus,
)


class WorkflowDefinitionRecord(BaseModel):
    workflow_id: str
    name: str
    version: int = Field(ge=1)
    description: str | None = None
    is_active: bool = True
    definition_json: dict[str, Any]
    created_at: str
    updated_at: str


class BranchContext(BaseModel):
    """Where a step lives when it runs inside a parallel branch."""

    model_config = ConfigDict(frozen=True)

    parallel_step: str
    branch: str
    join_step: str


class BranchState(BaseModel):
    status: BranchStatus = BranchStatus.PENDING
    output: Any = None
    current_step: str | None = None


class WorkflowRun(BaseModel):
    run_id: str
    workflow_id: str
    triggering_user_id: str | None = None
    status: RunStatus = RunStatus.PENDING

    # ["review"] at top level, ["par", "branch_a", "check"] inside a branch.
    current_step_path: list[str] = Field(default_factory=list)

    triggering_data_json: dict[str, Any] = Field(default_factory=dict)
    results_json: dict[str, Any] = Field(default_factory=dict)

    active_parallel_branches: dict[str, dict[str, BranchState]] = Field(default_factory=dict)
    joined_parallel_steps: list[str] = Field(default_factory=list)

    parent_run_id: str | None = None
    depth: int = 0

    start_time: str
    end_time: str | None = None
    updated_at: str | None = None
    version: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def current_step_name(self) -> str | None:
        return ".".join(self.current_step_path) or None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def branch_state(self, context: BranchContext) -> BranchState | None:
        return self.active_parallel_branches.get(context.parallel_step, {}).get(context.branch)


class Task(BaseModel):
    task_id: str
    run_id: str
    step_name_in_workflow: str
    type: str

    assigned_to_agent_id: str | None = None
    assigned_to_user_id: str | None = None
    assigned_to_role: str | None = None

    input_data_json: dict[str, Any] = Field(default_factory=dict)
    output_data_json: dict[str, Any] | None = None
    status: TaskStatus = TaskStatus.PENDING

    due_date: str | None = None
    escalation_policy: EscalationPolicy | None = None
    sub_workflow_run_id: str | None = None
    branch: BranchContext | None = None
    retry_count: int = 0
    completed_by_user_id: str | None = None

    created_at: str
    updated_at: str

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES
