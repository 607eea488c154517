"""Unit tests for step advancement, pauses and resumption."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from workflow_orchestrator.agents import AgentRegistry
from workflow_orchestrator.agents.dispatch import BackgroundAgentDispatcher
from workflow_orchestrator.orchestrator.workflow.engine import WorkflowEngine, merge_outputs
from workflow_orchestrator.orchestrator.workflow.errors import DefinitionError, TaskNotFoundError
from workflow_orchestrator.orchestrator.workflow.interfaces import AgentJob, AgentOutcome
from workflow_orchestrator.orchestrator.workflow.models import WorkflowDefinitionRecord, WorkflowRun
from workflow_orchestrator.orchestrator.workflow.state_machine import RunStatus, TaskStatus
from workflow_orchestrator.state import DefinitionStore, RunStore, TaskStore

Register = Callable[..., WorkflowDefinitionRecord]


def _agent_workflow(agent_id: str, **step: Any) -> dict[str, Any]:
    return {
        "name": f"{agent_id}-flow",
        "start_step": "run",
        "steps": [
            {
                "name": "run",
                "type": "agent_execution",
                "agent_core_logic_identifier": agent_id,
                "transitions": [{"to": "done"}],
                **step,
            },
            {"name": "done", "type": "end"},
        ],
    }


@dataclass
class StaticDefinitions:
    """Serves definitions that never went through registration checks."""

    records: dict[str, dict[str, Any]]

    def get_by_id(self, workflow_id: str) -> WorkflowDefinitionRecord | None:
        raw = self.records.get(workflow_id)
        if raw is None:
            return None
        return WorkflowDefinitionRecord(
            workflow_id=workflow_id,
            name=workflow_id,
            version=1,
            definition_json=raw,
            created_at="2025-01-01T00:00:00+00:00",
            updated_at="2025-01-01T00:00:00+00:00",
        )

    def get_by_name_and_version(
        self, name: str, version: int | None = None
    ) -> WorkflowDefinitionRecord | None:
        return self.get_by_id(name)


@dataclass
class HeldDispatcher:
    """Accepts agent jobs without running them."""

    jobs: list[AgentJob] = field(default_factory=list)

    def submit(self, job: AgentJob, on_done: Callable[[AgentOutcome], None]) -> None:
        self.jobs.append(job)


def test_merge_outputs() -> None:
    context = {"a": 1, "ns": {"x": 1}}

    assert merge_outputs(context, {"a": 2, "b": 3}, None) == {"a": 2, "b": 3, "ns": {"x": 1}}
    assert merge_outputs(context, {"y": 2}, "ns") == {"a": 1, "ns": {"x": 1, "y": 2}}
    assert merge_outputs(context, None, "ns") == context
    assert context == {"a": 1, "ns": {"x": 1}}


def test_review_approved_completes_run(
    engine: WorkflowEngine,
    run_store: RunStore,
    task_store: TaskStore,
    register: Register,
    review_workflow: dict[str, Any],
) -> None:
    record = register(review_workflow)

    run = engine.start_run(record.workflow_id, user_id="u1", input_data={"loan_id": "L-1"})

    assert run.status == RunStatus.IN_PROGRESS
    assert run.current_step_name == "review"
    tasks = task_store.list_for_run(run.run_id)
    assert len(tasks) == 1
    task = tasks[0]
    assert task.type == "human_review"
    assert task.status == TaskStatus.ASSIGNED
    assert task.assigned_to_user_id == "alice"
    assert task.input_data_json == {"loan_id": "L-1"}

    done = engine.on_task_completed(task.task_id, {"outcome": "approved"}, "alice")

    assert done.status == TaskStatus.COMPLETED
    assert done.completed_by_user_id == "alice"
    finished = run_store.get(run.run_id)
    assert finished.status == RunStatus.COMPLETED
    assert finished.current_step_name == "end_ok"
    assert finished.results_json == {"loan_id": "L-1", "outcome": "approved"}
    assert finished.end_time is not None


def test_review_rejected_fails_run(
    engine: WorkflowEngine,
    run_store: RunStore,
    task_store: TaskStore,
    register: Register,
    review_workflow: dict[str, Any],
) -> None:
    run = engine.start_run(register(review_workflow).workflow_id)
    task = task_store.list_for_run(run.run_id)[0]

    engine.on_task_completed(task.task_id, {"outcome": "rejected"})

    assert run_store.get(run.run_id).status == RunStatus.FAILED
    assert run_store.get(run.run_id).current_step_name == "end_fail"


def test_started_run_is_never_left_pending(
    engine: WorkflowEngine, register: Register
) -> None:
    run = engine.start_run(register(_agent_workflow("echo")).workflow_id, input_data={"value": 7})

    assert run.status != RunStatus.PENDING
    assert run.status == RunStatus.COMPLETED
    assert run.results_json["echoed"] == 7


def test_completing_twice_advances_once(
    engine: WorkflowEngine,
    run_store: RunStore,
    task_store: TaskStore,
    register: Register,
    review_workflow: dict[str, Any],
) -> None:
    run = engine.start_run(register(review_workflow).workflow_id)
    task = task_store.list_for_run(run.run_id)[0]

    engine.on_task_completed(task.task_id, {"outcome": "approved"})
    after_first = run_store.get(run.run_id)
    again = engine.on_task_completed(task.task_id, {"outcome": "rejected"})

    assert again.status == TaskStatus.COMPLETED
    assert again.output_data_json == {"outcome": "approved"}
    after_second = run_store.get(run.run_id)
    assert after_second.version == after_first.version
    assert after_second.status == RunStatus.COMPLETED
    assert len(task_store.list_for_run(run.run_id)) == 1


def test_condition_order_routes_first_match(
    engine: WorkflowEngine, run_store: RunStore, task_store: TaskStore, register: Register
) -> None:
    record = register(
        {
            "name": "route",
            "start_step": "decide",
            "steps": [
                {
                    "name": "decide",
                    "type": "decision",
                    "transitions": [
                        {
                            "condition_type": "on_output_value",
                            "field": "x",
                            "operator": "==",
                            "value": 1,
                            "to": "A",
                        },
                        {"condition_type": "always", "to": "B"},
                    ],
                },
                {"name": "A", "type": "end"},
                {"name": "B", "type": "end", "final_status": "cancelled"},
            ],
        }
    )

    first = engine.start_run(record.workflow_id)
    second = engine.start_run(record.workflow_id)
    engine.on_task_completed(task_store.list_for_run(first.run_id)[0].task_id, {"x": 1})
    engine.on_task_completed(task_store.list_for_run(second.run_id)[0].task_id, {"x": 2})

    assert run_store.get(first.run_id).current_step_name == "A"
    assert run_store.get(second.run_id).current_step_name == "B"
    assert run_store.get(second.run_id).status == RunStatus.CANCELLED


def test_no_matching_transition_ends_path(
    engine: WorkflowEngine, run_store: RunStore, task_store: TaskStore, register: Register
) -> None:
    record = register(
        {
            "name": "strict",
            "start_step": "ask",
            "steps": [
                {
                    "name": "ask",
                    "type": "data_input",
                    "transitions": [
                        {
                            "condition_type": "on_output_value",
                            "field": "ok",
                            "operator": "==",
                            "value": True,
                            "to": "done",
                        }
                    ],
                },
                {"name": "done", "type": "end", "final_status": "failed"},
            ],
        }
    )
    run = engine.start_run(record.workflow_id, input_data={"seed": 1})

    engine.on_task_completed(task_store.list_for_run(run.run_id)[0].task_id, {"ok": False})

    finished = run_store.get(run.run_id)
    assert finished.status == RunStatus.COMPLETED
    assert finished.results_json == {"seed": 1, "ok": False}


def test_agent_output_is_namespaced_and_task_input_merged(
    engine: WorkflowEngine, run_store: RunStore, task_store: TaskStore, register: Register
) -> None:
    record = register(
        _agent_workflow("score", output_namespace="scoring", default_input={"score": 21})
    )

    run = engine.start_run(record.workflow_id, input_data={"score": 1, "applicant": "ann"})

    finished = run_store.get(run.run_id)
    assert finished.status == RunStatus.COMPLETED
    assert finished.results_json["scoring"] == {"score": 42}
    task = task_store.list_for_run(run.run_id)[0]
    assert task.assigned_to_agent_id == "score"
    assert task.input_data_json == {"score": 21, "applicant": "ann"}
    assert task.status == TaskStatus.COMPLETED


def test_agent_failure_fails_task_and_run(
    engine: WorkflowEngine, run_store: RunStore, task_store: TaskStore, register: Register
) -> None:
    run = engine.start_run(register(_agent_workflow("boom")).workflow_id)

    finished = run_store.get(run.run_id)
    assert finished.status == RunStatus.FAILED
    assert finished.results_json["error"] == "agent exploded"
    assert finished.results_json["error_details"]["step_name"] == "run"
    task = task_store.list_for_run(run.run_id)[0]
    assert task.status == TaskStatus.FAILED
    assert task.output_data_json["error_details"]["message"] == "agent exploded"


def test_unknown_agent_fails_run(
    engine: WorkflowEngine, run_store: RunStore, register: Register
) -> None:
    run = engine.start_run(register(_agent_workflow("ghost")).workflow_id)

    finished = run_store.get(run.run_id)
    assert finished.status == RunStatus.FAILED
    assert "No agent registered for 'ghost'" in finished.results_json["error"]


def test_start_with_unknown_workflow_creates_no_run(
    engine: WorkflowEngine, run_store: RunStore
) -> None:
    with pytest.raises(DefinitionError, match="not found"):
        engine.start_run("does-not-exist")

    assert run_store.list() == []


def test_missing_target_step_fails_run(
    run_store: RunStore, task_store: TaskStore, agent_registry: AgentRegistry
) -> None:
    definitions = StaticDefinitions(
        {
            "broken": {
                "start_step": "ask",
                "steps": [{"name": "ask", "type": "data_input", "transitions": [{"to": "ghost"}]}],
            }
        }
    )
    engine = WorkflowEngine(
        definitions=definitions, tasks=task_store, runs=run_store, agents=agent_registry
    )
    run = engine.start_run("broken")

    engine.on_task_completed(task_store.list_for_run(run.run_id)[0].task_id, {})

    finished = run_store.get(run.run_id)
    assert finished.status == RunStatus.FAILED
    assert finished.results_json["error"] == "Step definition for 'ghost' not found."


def test_unparseable_definition_is_rejected_at_start(
    run_store: RunStore, task_store: TaskStore, agent_registry: AgentRegistry
) -> None:
    definitions = StaticDefinitions({"bad": {"start_step": "x", "steps": [{"name": "x"}]}})
    engine = WorkflowEngine(
        definitions=definitions, tasks=task_store, runs=run_store, agents=agent_registry
    )

    with pytest.raises(DefinitionError, match="Invalid workflow definition"):
        engine.start_run("bad")
    assert run_store.list() == []


def test_human_task_assignment_and_deadline(
    definition_store: DefinitionStore,
    run_store: RunStore,
    task_store: TaskStore,
    agent_registry: AgentRegistry,
) -> None:
    now = datetime(2025, 3, 1, 9, 0, tzinfo=UTC)
    engine = WorkflowEngine(
        definitions=definition_store,
        tasks=task_store,
        runs=run_store,
        agents=agent_registry,
        clock=lambda: now,
    )
    record = definition_store.register(
        {
            "name": "intake",
            "start_step": "fill",
            "steps": [
                {
                    "name": "fill",
                    "type": "data_input",
                    "default_input": {"form": "kyc"},
                    "deadline_minutes": 90,
                    "escalation_policy": {"action": "reassign_to_role", "target_role": "lead"},
                    "transitions": [{"to": "approve"}],
                },
                {"name": "approve", "type": "human_review", "assigned_to_role": "manager"},
            ],
        }
    )

    run = engine.start_run(record.workflow_id, input_data={"customer": "c-1"})
    fill = task_store.list_for_run(run.run_id)[0]

    assert fill.status == TaskStatus.PENDING
    assert fill.input_data_json == {"customer": "c-1", "form": "kyc"}
    assert fill.due_date == (now + timedelta(minutes=90)).isoformat()
    assert fill.escalation_policy.target_role == "lead"
    assert run.start_time == now.isoformat()

    engine.on_task_completed(fill.task_id, {"income": 5000})
    approve = task_store.list_for_run(run.run_id)[1]
    assert approve.status == TaskStatus.ASSIGNED
    assert approve.assigned_to_role == "manager"
    assert approve.input_data_json == {"customer": "c-1", "income": 5000}


def test_completion_by_other_user_is_logged(
    engine: WorkflowEngine,
    task_store: TaskStore,
    register: Register,
    review_workflow: dict[str, Any],
    caplog: pytest.LogCaptureFixture,
) -> None:
    run = engine.start_run(register(review_workflow).workflow_id)
    task = task_store.list_for_run(run.run_id)[0]

    with caplog.at_level(logging.WARNING):
        done = engine.on_task_completed(task.task_id, {"outcome": "approved"}, "mallory")

    assert done.status == TaskStatus.COMPLETED
    assert done.completed_by_user_id == "mallory"
    assert any("other than its assignee" in r.getMessage() for r in caplog.records)


def test_failed_human_task_still_advances(
    engine: WorkflowEngine,
    run_store: RunStore,
    task_store: TaskStore,
    register: Register,
    review_workflow: dict[str, Any],
) -> None:
    run = engine.start_run(register(review_workflow).workflow_id)
    task = task_store.list_for_run(run.run_id)[0]

    result = engine.on_task_completed(task.task_id, {"reason": "n/a"}, explicit_status="failed")

    assert result.status == TaskStatus.FAILED
    assert run_store.get(run.run_id).current_step_name == "end_fail"


def test_on_task_completed_rejects_unknown_task_and_status(
    engine: WorkflowEngine,
    task_store: TaskStore,
    register: Register,
    review_workflow: dict[str, Any],
) -> None:
    with pytest.raises(TaskNotFoundError):
        engine.on_task_completed("missing", {})

    run = engine.start_run(register(review_workflow).workflow_id)
    task = task_store.list_for_run(run.run_id)[0]
    with pytest.raises(ValueError, match="only be completed or failed"):
        engine.on_task_completed(task.task_id, {}, explicit_status="in_progress")


def test_externally_completed_agent_task(
    definition_store: DefinitionStore,
    run_store: RunStore,
    task_store: TaskStore,
    agent_registry: AgentRegistry,
) -> None:
    dispatcher = HeldDispatcher()
    engine = WorkflowEngine(
        definitions=definition_store,
        tasks=task_store,
        runs=run_store,
        agents=agent_registry,
        dispatcher=dispatcher,
    )
    record = definition_store.register(_agent_workflow("echo"))

    ok_run = engine.start_run(record.workflow_id)
    failing_run = engine.start_run(record.workflow_id)

    assert [job.agent_id for job in dispatcher.jobs] == ["echo", "echo"]
    assert run_store.get(ok_run.run_id).status == RunStatus.IN_PROGRESS
    ok_task = task_store.list_for_run(ok_run.run_id)[0]
    assert ok_task.status == TaskStatus.IN_PROGRESS

    engine.on_task_completed(ok_task.task_id, {"echoed": "by hand"})
    engine.on_task_completed(
        task_store.list_for_run(failing_run.run_id)[0].task_id,
        {"error": "operator gave up"},
        explicit_status="failed",
    )

    assert run_store.get(ok_run.run_id).status == RunStatus.COMPLETED
    failed = run_store.get(failing_run.run_id)
    assert failed.status == RunStatus.FAILED
    assert failed.results_json["error"] == "operator gave up"


def test_background_dispatch_completes_run(
    definition_store: DefinitionStore,
    run_store: RunStore,
    task_store: TaskStore,
    agent_registry: AgentRegistry,
) -> None:
    dispatcher = BackgroundAgentDispatcher(agent_registry)
    engine = WorkflowEngine(
        definitions=definition_store,
        tasks=task_store,
        runs=run_store,
        agents=agent_registry,
        dispatcher=dispatcher,
    )
    record = definition_store.register(_agent_workflow("echo"))

    run = engine.start_run(record.workflow_id, input_data={"value": "bg"})

    assert dispatcher.wait(timeout=10)
    finished = run_store.get(run.run_id)
    assert finished.status == RunStatus.COMPLETED
    assert finished.results_json["echoed"] == "bg"


def test_sub_run_terminal_without_parent_is_noop(
    engine: WorkflowEngine, run_store: RunStore, register: Register
) -> None:
    run = engine.start_run(register(_agent_workflow("echo")).workflow_id)

    engine.on_sub_run_terminal(run.run_id)
    engine.on_sub_run_terminal("unknown-run")

    assert run_store.get(run.run_id).status == RunStatus.COMPLETED


@dataclass
class InterleavedRunStore(RunStore):
    """Lets another writer update the run right before the engine's next save."""

    interleaved_results: dict[str, Any] | None = None

    def save(self, run: WorkflowRun) -> WorkflowRun:
        if self.interleaved_results is not None:
            extra, self.interleaved_results = self.interleaved_results, None
            current = self.get(run.run_id)
            assert current is not None
            super().save(
                current.model_copy(update={"results_json": {**current.results_json, **extra}})
            )
        return super().save(run)


def test_version_conflict_keeps_concurrent_context_changes(
    definition_store: DefinitionStore,
    task_store: TaskStore,
    agent_registry: AgentRegistry,
    temp_state_dir: Path,
    review_workflow: dict[str, Any],
    caplog: pytest.LogCaptureFixture,
) -> None:
    runs = InterleavedRunStore(temp_state_dir / "runs.json")
    engine = WorkflowEngine(
        definitions=definition_store, tasks=task_store, runs=runs, agents=agent_registry
    )
    run = engine.start_run(
        definition_store.register(review_workflow).workflow_id, input_data={"loan_id": "L-9"}
    )
    task = task_store.list_for_run(run.run_id)[0]

    runs.interleaved_results = {"note": "added elsewhere"}
    with caplog.at_level(logging.WARNING):
        engine.on_task_completed(task.task_id, {"outcome": "approved"})

    finished = runs.get(run.run_id)
    assert finished.status == RunStatus.COMPLETED
    assert finished.results_json == {
        "loan_id": "L-9",
        "note": "added elsewhere",
        "outcome": "approved",
    }
    assert "Run changed underneath us; retrying update" in caplog.text
