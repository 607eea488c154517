"""Typed workflow definitions.

A definition is a directed graph of steps. Steps are a discriminated union on
their ``type`` field so that every step-kind-specific field is checked when a
definition is loaded rather than when a run first reaches the step.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)

from .errors import DefinitionError

HUMAN_STEP_TYPES: frozenset[str] = frozenset({"human_review", "data_input", "decision"})
STEP_TYPES: frozenset[str] = frozenset(
    {"agent_execution", "parallel", "join", "sub_workflow", "end", *HUMAN_STEP_TYPES}
)


class Condition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    field: str | None = None
    operator: str | None = None
    value: Any = None


class ConditionGroup(BaseModel):
    model_config = ConfigDict(extra="forbid")

    logical_operator: Literal["AND", "OR"] = "AND"
    conditions: list[Condition | ConditionGroup]


class Transition(BaseModel):
    to: str = Field(min_length=1)
    description: str | None = None
    condition_type: Literal["always", "on_output_value", "conditional"] = "always"

    # on_output_value
    field: str | None = None
    operator: str | None = None
    value: Any = None

    # conditional
    condition_group: ConditionGroup | None = None


class RetryPolicy(BaseModel):
    max_attempts: int = Field(default=1, ge=1, le=20)
    delay_seconds: float = Field(default=0.0, ge=0.0)
    backoff_strategy: Literal["fixed", "exponential"] = "fixed"


class OnFailure(BaseModel):
    action: Literal[
        "fail_workflow", "transition_to_step", "continue_with_error", "manual_intervention"
    ] = "fail_workflow"
    next_step: str | None = None
    error_output_namespace: str | None = None

    @model_validator(mode="after")
    def _require_next_step(self) -> OnFailure:
        if self.action == "transition_to_step" and not self.next_step:
            raise ValueError("on_failure.next_step is required for transition_to_step")
        return self


class ErrorHandling(BaseModel):
    retry_policy: RetryPolicy | None = None
    on_failure: OnFailure = Field(default_factory=OnFailure)


class EscalationPolicy(BaseModel):
    after_minutes: int | None = Field(default=None, ge=1)
    action: Literal["reassign_to_role", "notify_manager_role", "custom_event"]
    target_role: str | None = None
    custom_event_name: str | None = None


def _check_step_types(value: Any) -> Any:
    if isinstance(value, list):
        for raw in value:
            if isinstance(raw, Mapping) and raw.get("type") not in STEP_TYPES:
                raise ValueError(
                    f"Unknown step type '{raw.get('type')}' for step '{raw.get('name')}'"
                )
    return value


class _StepBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    description: str | None = None
    transitions: list[Transition] = Field(default_factory=list)
    output_namespace: str | None = None
    default_input: dict[str, Any] = Field(default_factory=dict)
    error_handling: ErrorHandling | None = None


class AgentExecutionStep(_StepBase):
    type: Literal["agent_execution"]
    agent_core_logic_identifier: str = Field(min_length=1)


class _HumanStep(_StepBase):
    assigned_to_user_id: str | None = None
    assigned_to_role: str | None = Field(
        default=None, validation_alias=AliasChoices("assigned_to_role", "assigned_role")
    )
    form_schema: dict[str, Any] | None = None
    deadline_minutes: int | None = Field(default=None, ge=1)
    escalation_policy: EscalationPolicy | None = None

    @model_validator(mode="after")
    def _single_assignee(self) -> _HumanStep:
        if self.assigned_to_user_id and self.assigned_to_role:
            raise ValueError(
                f"Step '{self.name}' cannot be assigned to both a user and a role"
            )
        return self


class HumanReviewStep(_HumanStep):
    type: Literal["human_review"]


class DataInputStep(_HumanStep):
    type: Literal["data_input"]


class DecisionStep(_HumanStep):
    type: Literal["decision"]


class Branch(BaseModel):
    name: str = Field(min_length=1)
    start_step: str = Field(min_length=1)
    steps: StepList = Field(default_factory=list)


class ParallelStep(_StepBase):
    type: Literal["parallel"]
    branches: list[Branch] = Field(default_factory=list)
    join_on: str | None = None


class JoinStep(_StepBase):
    type: Literal["join"]


class SubWorkflowStep(_StepBase):
    type: Literal["sub_workflow"]
    sub_workflow_name: str = Field(min_length=1)
    sub_workflow_version: int | None = Field(default=None, ge=1)
    input_mapping: dict[str, str] = Field(default_factory=dict)


class EndStep(_StepBase):
    type: Literal["end"]
    final_status: Literal["completed", "failed", "cancelled"] = "completed"


HumanStep = HumanReviewStep | DataInputStep | DecisionStep

StepDefinition = Annotated[
    Union[
        AgentExecutionStep,
        HumanReviewStep,
        DataInputStep,
        DecisionStep,
        ParallelStep,
        JoinStep,
        SubWorkflowStep,
        EndStep,
    ],
    Field(discriminator="type"),
]

StepList = Annotated[list[StepDefinition], BeforeValidator(_check_step_types)]


class WorkflowGraph(BaseModel):
    """The parsed ``definition_json`` of a workflow definition."""

    name: str | None = None
    description: str | None = None
    start_step: str = Field(min_length=1)
    steps: StepList = Field(min_length=1)
    initial_context_schema: dict[str, Any] | None = None

    def step(self, name: str) -> StepDefinition | None:
        return find_step(self.steps, name)

    def branch(self, parallel_step: str, branch_name: str) -> Branch | None:
        step = self.step(parallel_step)
        if not isinstance(step, ParallelStep):
            return None
        for branch in step.branches:
            if branch.name == branch_name:
                return branch
        return None


Branch.model_rebuild()
ParallelStep.model_rebuild()
WorkflowGraph.model_rebuild()


def find_step(steps: Iterable[StepDefinition], name: str | None) -> StepDefinition | None:
    if name is None:
        return None
    for step in steps:
        if step.name == name:
            return step
    return None


def _format_errors(error: ValidationError) -> str:
    parts: list[str] = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ()))
        msg = str(item.get("msg", "invalid"))
        # pydantic prefixes messages raised from validators.
        msg = msg.removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def parse_definition(raw: Mapping[str, Any] | None) -> WorkflowGraph:
    """Parse a stored ``definition_json`` into a typed graph.

    Raises:
        DefinitionError: If the payload is not a structurally valid workflow.
    """

    if not isinstance(raw, Mapping):
        raise DefinitionError("Workflow definition must be a JSON object")
    try:
        return WorkflowGraph.model_validate(dict(raw))
    except ValidationError as e:
        raise DefinitionError(f"Invalid workflow definition: {_format_errors(e)}") from e
