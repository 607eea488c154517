"""The workflow engine: step advancement, pauses and resumption.

All run mutations go through one re-entrant lock guarding a FIFO work queue.
An entry point enqueues a work item and drains the queue; work discovered while
processing an item (a branch start, a finished agent, a finished child run) is
enqueued rather than handled recursively, so a run's progress is always the
sequence of items the queue processed.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from functools import partial
from datetime import UTC, datetime, timedelta
from typing import Any

from workflow_orchestrator.agents.dispatch import InlineAgentDispatcher

from .conditions import select_transition, transition_problem
from .definitions import (
    AgentExecutionStep,
    EndStep,
    HumanStep,
    JoinStep,
    ParallelStep,
    StepDefinition,
    SubWorkflowStep,
    WorkflowGraph,
    find_step,
    parse_definition,
)
from .errors import (
    ConcurrentModificationError,
    DefinitionError,
    ExecutionError,
    OrchestratorError,
    RunNotFoundError,
    StateError,
    TaskNotFoundError,
    TransitionError,
)
from .events import Advance, AgentFinished, RunFinished, TaskCompleted, WorkItem
from .failures import (
    error_details,
    error_handling_for,
    error_namespace,
    retry_delay,
    should_retry,
)
from .interfaces import (
    AgentDispatcher,
    AgentExecutor,
    AgentJob,
    AgentOutcome,
    DefinitionAccessor,
    RunStore,
    TaskStore,
)
from .models import BranchContext, Task, WorkflowRun
from .parallel import init_branches, mark_branch_started, resolve_branch
from .state_machine import (
    TERMINAL_BRANCH_STATUSES,
    BranchStatus,
    RunStatus,
    TaskStatus,
    check_run_transition,
)
from .subworkflow import MAX_SUB_WORKFLOW_DEPTH, build_child_input, child_failure_message

logger = logging.getLogger(__name__)

ResultsMerge = Callable[[dict[str, Any]], dict[str, Any]]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def merge_outputs(
    context: Mapping[str, Any], output: Mapping[str, Any] | None, namespace: str | None
) -> dict[str, Any]:
    """Shallow-merge a step output into the accumulated context.

    With a namespace the output is merged into ``context[namespace]``;
    otherwise into the top level. Later writes win.
    """

    merged = dict(context)
    if not output:
        return merged
    if namespace:
        existing = merged.get(namespace)
        base = dict(existing) if isinstance(existing, Mapping) else {}
        merged[namespace] = {**base, **output}
    else:
        merged.update(output)
    return merged


class WorkflowEngine:
    """Drive workflow runs through their definitions.

    Args:
        definitions: Resolves workflow definitions by id or name.
        tasks: Durable task storage.
        runs: Durable run storage with optimistic versioning.
        agents: Executes agent core logic.
        dispatcher: How agent jobs are run. Defaults to inline execution.
        max_save_retries: Attempts to re-apply a run update after a version conflict.
        clock: Source of the current time (injectable for tests).
    """

    def __init__(
        self,
        *,
        definitions: DefinitionAccessor,
        tasks: TaskStore,
        runs: RunStore,
        agents: AgentExecutor,
        dispatcher: AgentDispatcher | None = None,
        max_save_retries: int = 3,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._definitions = definitions
        self._tasks = tasks
        self._runs = runs
        self._agents = agents
        self._dispatcher: AgentDispatcher = dispatcher or InlineAgentDispatcher(agents)
        self._max_save_retries = max(1, max_save_retries)
        self._clock = clock

        self._lock = threading.RLock()
        self._queue: deque[WorkItem] = deque()
        self._draining = False

    # -- entry points ---------------------------------------------------------

    def start_run(
        self,
        workflow_id: str,
        user_id: str | None = None,
        input_data: Mapping[str, Any] | None = None,
    ) -> WorkflowRun:
        """Create a run and advance it to its first waiting point.

        Raises:
            DefinitionError: If the workflow does not exist or cannot be parsed.
                No run is created in that case.
        """

        record = self._definitions.get_by_id(workflow_id)
        if record is None:
            raise DefinitionError(f"Workflow definition {workflow_id} not found.")
        parse_definition(record.definition_json)

        with self._lock:
            run = self._create_run(
                workflow_id=record.workflow_id,
                user_id=user_id,
                input_data=dict(input_data or {}),
            )
            self._enqueue(Advance(run_id=run.run_id, previous_output=run.triggering_data_json))
            self._drain()
            return self._require_run(run.run_id)

    def on_task_completed(
        self,
        task_id: str,
        output_data: Mapping[str, Any] | None = None,
        completing_user_id: str | None = None,
        explicit_status: TaskStatus | str | None = None,
    ) -> Task:
        """Record an externally completed task and continue its run.

        Completing a task that is already completed or failed, or whose run has
        already finished, is a no-op that returns the stored task unchanged.

        Raises:
            TaskNotFoundError: If the task does not exist.
            ValueError: If ``explicit_status`` is neither completed nor failed.
        """

        status = TaskStatus(explicit_status) if explicit_status else TaskStatus.COMPLETED
        if status not in {TaskStatus.COMPLETED, TaskStatus.FAILED}:
            raise ValueError(f"Tasks can only be completed or failed, not {status.value}")
        output = dict(output_data or {})

        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            if task.is_terminal:
                logger.info(
                    "Ignoring completion of finished task",
                    extra={"task_id": task_id, "status": task.status.value},
                )
                return task
            if self._run_finished_for(task):
                return task

            if (
                task.assigned_to_user_id
                and completing_user_id
                and task.assigned_to_user_id != completing_user_id
            ):
                logger.warning(
                    "Task completed by a user other than its assignee",
                    extra={
                        "task_id": task_id,
                        "assigned_to_user_id": task.assigned_to_user_id,
                        "completing_user_id": completing_user_id,
                    },
                )

            self._enqueue(
                TaskCompleted(
                    task_id=task_id,
                    output=output,
                    status=status,
                    completed_by=completing_user_id,
                )
            )
            self._drain()
            return self._tasks.get(task_id) or task

    def on_sub_run_terminal(self, run_id: str) -> None:
        """Resume the parent waiting on ``run_id``, if there is one.

        The engine calls this itself whenever a run finishes; hosts only need
        it when a run was finished outside the engine.
        """

        with self._lock:
            self._enqueue(RunFinished(run_id=run_id))
            self._drain()

    # -- queue ----------------------------------------------------------------

    def _enqueue(self, item: WorkItem) -> None:
        self._queue.append(item)

    def _drain(self) -> None:
        if self._draining:
            return
        self._draining = True
        try:
            while self._queue:
                item = self._queue.popleft()
                if isinstance(item, Advance):
                    self._process_advance(item)
                elif isinstance(item, TaskCompleted):
                    self._process_task_completed(item)
                elif isinstance(item, AgentFinished):
                    self._process_agent_finished(item)
                elif isinstance(item, RunFinished):
                    self._process_run_finished(item)
        finally:
            self._draining = False

    def _run_finished_for(self, task: Task) -> bool:
        """True (and logged) when the task's run is gone or already terminal."""

        run = self._runs.get(task.run_id)
        if run is not None and not run.is_terminal:
            return False
        logger.info(
            "Run already finished; leaving task untouched",
            extra={
                "run_id": task.run_id,
                "task_id": task.task_id,
                "run_status": run.status.value if run is not None else None,
            },
        )
        return True

    def _on_agent_done(self, outcome: AgentOutcome) -> None:
        with self._lock:
            self._enqueue(
                AgentFinished(task_id=outcome.task_id, output=outcome.output, error=outcome.error)
            )
            self._drain()

    @contextmanager
    def _failing_run_on_error(self, run_id: str) -> Iterator[None]:
        try:
            yield
        except OrchestratorError as e:
            logger.error(
                "Workflow run failed", extra={"run_id": run_id, "error": str(e)}
            )
            self._fail_run(run_id, str(e))
        except Exception as e:
            logger.exception("Unexpected error while advancing run", extra={"run_id": run_id})
            self._fail_run(run_id, f"Unexpected error: {e}")

    # -- run persistence ------------------------------------------------------

    def _require_run(self, run_id: str) -> WorkflowRun:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def _mutate_run(self, run_id: str, mutate: Callable[[WorkflowRun], None]) -> WorkflowRun:
        for attempt in range(1, self._max_save_retries + 1):
            run = self._require_run(run_id)
            mutate(run)
            try:
                return self._runs.save(run)
            except ConcurrentModificationError:
                logger.warning(
                    "Run changed underneath us; retrying update",
                    extra={"run_id": run_id, "attempt": attempt},
                )
        raise ConcurrentModificationError(
            f"Run {run_id} could not be updated after {self._max_save_retries} attempts"
        )

    def _create_run(
        self,
        *,
        workflow_id: str,
        user_id: str | None,
        input_data: dict[str, Any],
        parent_run_id: str | None = None,
        depth: int = 0,
    ) -> WorkflowRun:
        run = self._runs.create(
            WorkflowRun(
                run_id=uuid.uuid4().hex,
                workflow_id=workflow_id,
                triggering_user_id=user_id,
                status=RunStatus.PENDING,
                triggering_data_json=dict(input_data),
                results_json=dict(input_data),
                parent_run_id=parent_run_id,
                depth=depth,
                start_time=self._clock().isoformat(),
            )
        )
        logger.info(
            "Workflow run created",
            extra={"run_id": run.run_id, "workflow_id": workflow_id, "parent_run_id": parent_run_id},
        )
        return run

    def _finish_run(
        self,
        run_id: str,
        status: RunStatus,
        *,
        merge: ResultsMerge | None = None,
        error: str | None = None,
    ) -> WorkflowRun | None:
        current = self._runs.get(run_id)
        if current is None:
            logger.warning("Cannot finish unknown run", extra={"run_id": run_id})
            return None
        if current.is_terminal:
            logger.info(
                "Run already finished",
                extra={"run_id": run_id, "status": current.status.value},
            )
            return current

        def mutate(run: WorkflowRun) -> None:
            run.status = check_run_transition(current=run.status, to=status)
            run.end_time = self._clock().isoformat()
            if merge is not None:
                run.results_json = merge(run.results_json)
            if error is not None:
                run.results_json = {**run.results_json, "error": error}

        run = self._mutate_run(run_id, mutate)
        logger.info(
            "Workflow run finished", extra={"run_id": run_id, "status": run.status.value}
        )
        self._enqueue(RunFinished(run_id=run_id))
        return run

    def _fail_run(self, run_id: str, error: str, merge: ResultsMerge | None = None) -> None:
        try:
            self._finish_run(run_id, RunStatus.FAILED, merge=merge, error=error)
        except (RunNotFoundError, StateError):
            logger.exception("Could not mark run as failed", extra={"run_id": run_id})

    def _load_graph(self, run: WorkflowRun) -> WorkflowGraph:
        record = self._definitions.get_by_id(run.workflow_id)
        if record is None:
            raise DefinitionError(f"Workflow definition {run.workflow_id} not found.")
        return parse_definition(record.definition_json)

    @staticmethod
    def _scope(
        graph: WorkflowGraph, branch: BranchContext | None
    ) -> tuple[list[StepDefinition], str]:
        if branch is None:
            return list(graph.steps), graph.start_step
        definition = graph.branch(branch.parallel_step, branch.branch)
        if definition is None:
            raise DefinitionError(
                f"Branch '{branch.branch}' of parallel step '{branch.parallel_step}' not found."
            )
        return list(definition.steps), definition.start_step

    # -- advancing ------------------------------------------------------------

    def _process_advance(self, item: Advance) -> None:
        run = self._runs.get(item.run_id)
        if run is None:
            logger.warning("Advance requested for unknown run", extra={"run_id": item.run_id})
            return
        if run.is_terminal:
            logger.info(
                "Run already finished; ignoring advance",
                extra={"run_id": run.run_id, "status": run.status.value},
            )
            return
        with self._failing_run_on_error(run.run_id):
            self._advance(run, item)

    def _advance(self, run: WorkflowRun, item: Advance) -> None:
        if item.branch is not None:
            state = run.branch_state(item.branch)
            if state is None or state.status in TERMINAL_BRANCH_STATUSES:
                logger.info(
                    "Branch no longer active; ignoring advance",
                    extra={"run_id": run.run_id, "branch": item.branch.branch},
                )
                return

        graph = self._load_graph(run)
        steps, start_step = self._scope(graph, item.branch)

        # Re-applied to the latest stored context if a save has to be retried.
        merge: ResultsMerge = dict
        finished: StepDefinition | None = None
        if not item.is_start:
            finished = find_step(steps, item.finished_step)
            if finished is None and item.forced_step is None:
                raise DefinitionError(
                    f"Current step '{item.finished_step}' not found in workflow definition."
                )
            namespace = None if item.forced_step or finished is None else finished.output_namespace
            merge = partial(merge_outputs, output=item.previous_output, namespace=namespace)
        context = merge(run.results_json)

        if item.forced_step is not None:
            next_name: str | None = item.forced_step
        elif item.is_start:
            next_name = start_step
        else:
            assert finished is not None
            next_name = self._next_step_name(run, finished, item.previous_output, context)

        if item.branch is not None and next_name == item.branch.join_step:
            next_name = None

        if next_name is None:
            if item.branch is not None:
                self._finish_branch(
                    run.run_id,
                    item.branch,
                    item.previous_output,
                    BranchStatus.COMPLETED,
                    merge=merge,
                )
            else:
                self._finish_run(run.run_id, RunStatus.COMPLETED, merge=merge)
            return

        target = find_step(steps, next_name)
        if target is None:
            raise DefinitionError(f"Step definition for '{next_name}' not found.")

        branch = item.branch
        path = [branch.parallel_step, branch.branch, target.name] if branch else [target.name]

        def mutate(r: WorkflowRun) -> None:
            r.status = check_run_transition(current=r.status, to=RunStatus.IN_PROGRESS)
            r.current_step_path = list(path)
            r.results_json = merge(r.results_json)
            if branch is not None:
                mark_branch_started(r, branch, target.name)

        run = self._mutate_run(run.run_id, mutate)
        context = dict(run.results_json)
        logger.info(
            "Entering workflow step",
            extra={
                "run_id": run.run_id,
                "step": run.current_step_name,
                "step_type": target.type,
                "triggering_task_id": item.triggering_task_id,
            },
        )
        self._dispatch(run, graph, target, context, branch)

    def _next_step_name(
        self,
        run: WorkflowRun,
        finished: StepDefinition,
        output: Mapping[str, Any] | None,
        context: Mapping[str, Any],
    ) -> str | None:
        for transition in finished.transitions:
            problem = transition_problem(transition)
            if problem is not None:
                logger.warning(
                    "Transition can never match",
                    extra={
                        "run_id": run.run_id,
                        "step": finished.name,
                        "to": transition.to,
                        "problem": problem,
                    },
                )
        try:
            if not finished.transitions:
                return None
            chosen = select_transition(finished.transitions, output or {}, context)
            if chosen is None:
                raise TransitionError(f"No transition from '{finished.name}' matched its output")
            return chosen.to
        except TransitionError as e:
            logger.warning(str(e), extra={"run_id": run.run_id, "step": finished.name})
            return None

    def _dispatch(
        self,
        run: WorkflowRun,
        graph: WorkflowGraph,
        step: StepDefinition,
        context: dict[str, Any],
        branch: BranchContext | None,
    ) -> None:
        if isinstance(step, ParallelStep):
            self._start_parallel(run, step)
        elif isinstance(step, JoinStep):
            logger.debug(
                "Join step entered directly; nothing to do",
                extra={"run_id": run.run_id, "step": step.name},
            )
        elif isinstance(step, AgentExecutionStep):
            self._start_agent_task(run, step, context, branch)
        elif isinstance(step, HumanStep):
            self._create_human_task(run, step, context, branch)
        elif isinstance(step, SubWorkflowStep):
            task = self._tasks.create(
                self._new_task(
                    run,
                    step,
                    input_data=build_child_input(step, context),
                    branch=branch,
                    status=TaskStatus.PENDING,
                )
            )
            self._launch_child(run, task, step)
        elif isinstance(step, EndStep):
            self._finish_run(run.run_id, RunStatus(step.final_status))
        else:
            raise DefinitionError(f"Unknown step type '{step.type}' for step '{step.name}'")

    # -- tasks ----------------------------------------------------------------

    def _new_task(
        self,
        run: WorkflowRun,
        step: StepDefinition,
        *,
        input_data: dict[str, Any],
        branch: BranchContext | None,
        status: TaskStatus,
        **fields: Any,
    ) -> Task:
        now = self._clock().isoformat()
        return Task(
            task_id=uuid.uuid4().hex,
            run_id=run.run_id,
            step_name_in_workflow=step.name,
            type=step.type,
            input_data_json=input_data,
            status=status,
            branch=branch,
            created_at=now,
            updated_at=now,
            **fields,
        )

    def _start_agent_task(
        self,
        run: WorkflowRun,
        step: AgentExecutionStep,
        context: Mapping[str, Any],
        branch: BranchContext | None,
    ) -> None:
        task = self._tasks.create(
            self._new_task(
                run,
                step,
                input_data={**context, **step.default_input},
                branch=branch,
                status=TaskStatus.ASSIGNED,
                assigned_to_agent_id=step.agent_core_logic_identifier,
            )
        )
        self._submit_agent(task)

    def _submit_agent(self, task: Task, delay_seconds: float = 0.0) -> None:
        assert task.assigned_to_agent_id is not None
        task = self._tasks.update_status(task.task_id, TaskStatus.IN_PROGRESS)
        logger.info(
            "Dispatching agent task",
            extra={
                "run_id": task.run_id,
                "task_id": task.task_id,
                "agent_id": task.assigned_to_agent_id,
                "attempt": task.retry_count + 1,
            },
        )
        self._dispatcher.submit(
            AgentJob(
                task_id=task.task_id,
                agent_id=task.assigned_to_agent_id,
                input_data=dict(task.input_data_json),
                delay_seconds=delay_seconds,
            ),
            self._on_agent_done,
        )

    def _create_human_task(
        self,
        run: WorkflowRun,
        step: HumanStep,
        context: Mapping[str, Any],
        branch: BranchContext | None,
    ) -> None:
        assigned = bool(step.assigned_to_user_id or step.assigned_to_role)
        due_date = None
        if step.deadline_minutes:
            due_date = (self._clock() + timedelta(minutes=step.deadline_minutes)).isoformat()
        task = self._tasks.create(
            self._new_task(
                run,
                step,
                input_data={**context, **step.default_input},
                branch=branch,
                status=TaskStatus.ASSIGNED if assigned else TaskStatus.PENDING,
                assigned_to_user_id=step.assigned_to_user_id,
                assigned_to_role=step.assigned_to_role,
                due_date=due_date,
                escalation_policy=step.escalation_policy,
            )
        )
        logger.info(
            "Workflow waiting on human task",
            extra={
                "run_id": run.run_id,
                "task_id": task.task_id,
                "step": step.name,
                "assigned_to_user_id": step.assigned_to_user_id,
                "assigned_to_role": step.assigned_to_role,
            },
        )

    def _process_task_completed(self, item: TaskCompleted) -> None:
        task = self._tasks.get(item.task_id)
        if task is None or task.is_terminal or self._run_finished_for(task):
            return

        with self._failing_run_on_error(task.run_id):
            if item.status == TaskStatus.FAILED and task.type in {
                "agent_execution",
                "sub_workflow",
            }:
                error = item.output.get("error")
                self._handle_step_failure(
                    task, error if isinstance(error, str) and error else "Task marked as failed"
                )
                return
            task = self._tasks.update_status(
                task.task_id, item.status, output=item.output, completed_by=item.completed_by
            )
            logger.info(
                "Task completed",
                extra={"run_id": task.run_id, "task_id": task.task_id, "status": task.status.value},
            )
            self._enqueue(
                Advance(
                    run_id=task.run_id,
                    previous_output=item.output,
                    finished_step=task.step_name_in_workflow,
                    triggering_task_id=task.task_id,
                    branch=task.branch,
                )
            )

    def _process_agent_finished(self, item: AgentFinished) -> None:
        task = self._tasks.get(item.task_id)
        if task is None:
            logger.warning("Agent finished for unknown task", extra={"task_id": item.task_id})
            return
        if task.is_terminal:
            logger.info("Ignoring duplicate agent result", extra={"task_id": task.task_id})
            return
        if self._run_finished_for(task):
            return

        with self._failing_run_on_error(task.run_id):
            if item.error is not None:
                self._handle_step_failure(task, item.error)
                return
            output = dict(item.output or {})
            task = self._tasks.update_status(task.task_id, TaskStatus.COMPLETED, output=output)
            logger.info(
                "Agent task completed",
                extra={"run_id": task.run_id, "task_id": task.task_id},
            )
            self._enqueue(
                Advance(
                    run_id=task.run_id,
                    previous_output=output,
                    finished_step=task.step_name_in_workflow,
                    triggering_task_id=task.task_id,
                    branch=task.branch,
                )
            )

    # -- parallel -------------------------------------------------------------

    def _start_parallel(self, run: WorkflowRun, step: ParallelStep) -> None:
        if not step.branches:
            raise DefinitionError(f"Parallel step '{step.name}' has no branches.")
        if not step.join_on:
            raise DefinitionError(f"Parallel step '{step.name}' does not declare join_on.")

        contexts: list[BranchContext] = []

        def mutate(r: WorkflowRun) -> None:
            contexts[:] = init_branches(r, step)

        run = self._mutate_run(run.run_id, mutate)
        logger.info(
            "Starting parallel branches",
            extra={
                "run_id": run.run_id,
                "step": step.name,
                "branches": [c.branch for c in contexts],
            },
        )

        by_name = {b.name: b for b in step.branches}
        for context in contexts:
            branch = by_name[context.branch]
            if find_step(branch.steps, branch.start_step) is None:
                logger.error(
                    "Branch start step not found",
                    extra={"run_id": run.run_id, "branch": branch.name, "step": branch.start_step},
                )
                self._finish_branch(
                    run.run_id,
                    context,
                    {"error": f"Start step '{branch.start_step}' not found in branch."},
                    BranchStatus.FAILED,
                )
                continue
            self._enqueue(
                Advance(run_id=run.run_id, previous_output=run.results_json, branch=context)
            )

    def _finish_branch(
        self,
        run_id: str,
        branch: BranchContext,
        output: Any,
        status: BranchStatus,
        *,
        merge: ResultsMerge | None = None,
    ) -> None:
        fired: list[dict[str, Any]] = []

        def mutate(r: WorkflowRun) -> None:
            fired.clear()
            if merge is not None:
                r.results_json = merge(r.results_json)
            aggregate = resolve_branch(r, branch, output, status)
            if aggregate is not None:
                fired.append(aggregate)

        run = self._mutate_run(run_id, mutate)
        logger.info(
            "Branch finished",
            extra={
                "run_id": run_id,
                "parallel_step": branch.parallel_step,
                "branch": branch.branch,
                "status": status.value,
            },
        )
        if fired:
            logger.info(
                "All branches finished; continuing from join",
                extra={"run_id": run.run_id, "join_step": branch.join_step},
            )
            self._enqueue(
                Advance(
                    run_id=run_id,
                    previous_output=fired[0],
                    finished_step=branch.join_step,
                )
            )

    # -- sub-workflows --------------------------------------------------------

    def _launch_child(self, parent: WorkflowRun, task: Task, step: SubWorkflowStep) -> None:
        if parent.depth + 1 > MAX_SUB_WORKFLOW_DEPTH:
            self._handle_step_failure(
                task, f"Sub-workflow nesting exceeds {MAX_SUB_WORKFLOW_DEPTH} levels"
            )
            return

        record = self._definitions.get_by_name_and_version(
            step.sub_workflow_name, step.sub_workflow_version
        )
        try:
            if record is None:
                version = step.sub_workflow_version or "active"
                raise ExecutionError(
                    f"Sub-workflow definition '{step.sub_workflow_name}' "
                    f"(version {version}) not found."
                )
            parse_definition(record.definition_json)
        except (ExecutionError, DefinitionError) as e:
            self._handle_step_failure(task, str(e))
            return

        child = self._create_run(
            workflow_id=record.workflow_id,
            user_id=parent.triggering_user_id,
            input_data=dict(task.input_data_json),
            parent_run_id=parent.run_id,
            depth=parent.depth + 1,
        )
        # Link before the child can make progress so its completion finds us.
        task = self._tasks.update_status(
            task.task_id, TaskStatus.IN_PROGRESS, sub_workflow_run_id=child.run_id
        )
        logger.info(
            "Workflow waiting on sub-workflow",
            extra={
                "run_id": parent.run_id,
                "task_id": task.task_id,
                "child_run_id": child.run_id,
                "sub_workflow": step.sub_workflow_name,
            },
        )
        self._enqueue(Advance(run_id=child.run_id, previous_output=child.triggering_data_json))

    def _process_run_finished(self, item: RunFinished) -> None:
        child = self._runs.get(item.run_id)
        if child is None or not child.is_terminal:
            return
        task = self._tasks.find_by_sub_workflow_run_id(child.run_id)
        if task is None:
            return
        if task.is_terminal:
            logger.info(
                "Parent task already finished", extra={"task_id": task.task_id, "run_id": child.run_id}
            )
            return
        if self._run_finished_for(task):
            return

        with self._failing_run_on_error(task.run_id):
            failure = child_failure_message(child)
            if failure is not None:
                self._handle_step_failure(task, failure)
                return
            output = dict(child.results_json)
            task = self._tasks.update_status(task.task_id, TaskStatus.COMPLETED, output=output)
            logger.info(
                "Sub-workflow completed; resuming parent",
                extra={"run_id": task.run_id, "task_id": task.task_id, "child_run_id": child.run_id},
            )
            self._enqueue(
                Advance(
                    run_id=task.run_id,
                    previous_output=output,
                    finished_step=task.step_name_in_workflow,
                    triggering_task_id=task.task_id,
                    branch=task.branch,
                )
            )

    # -- failures -------------------------------------------------------------

    def _handle_step_failure(self, task: Task, message: str) -> None:
        run = self._require_run(task.run_id)
        graph = self._load_graph(run)
        steps, _ = self._scope(graph, task.branch)
        step = find_step(steps, task.step_name_in_workflow)
        handling = error_handling_for(step)

        attempts_made = task.retry_count + 1
        if step is not None and should_retry(handling, attempts_made=attempts_made):
            delay = retry_delay(handling, attempts_made=attempts_made)
            logger.warning(
                "Step failed; retrying",
                extra={
                    "run_id": run.run_id,
                    "task_id": task.task_id,
                    "step": step.name,
                    "attempt": attempts_made,
                    "delay_seconds": delay,
                    "error": message,
                },
            )
            task = self._tasks.update(task.task_id, retry_count=attempts_made)
            if isinstance(step, AgentExecutionStep):
                self._submit_agent(task, delay_seconds=delay)
                return
            if isinstance(step, SubWorkflowStep):
                self._launch_child(run, task, step)
                return

        namespace = error_namespace(handling)
        details = error_details(
            message=message,
            step_name=task.step_name_in_workflow,
            retry_attempts_made=task.retry_count,
        )
        error_output = {namespace: details}
        action = handling.on_failure.action
        logger.error(
            "Step failed",
            extra={
                "run_id": run.run_id,
                "task_id": task.task_id,
                "step": task.step_name_in_workflow,
                "on_failure": action,
                "error": message,
            },
        )

        if action == "manual_intervention":
            self._tasks.update_status(
                task.task_id, TaskStatus.REQUIRES_ESCALATION, output=error_output
            )
            self._fail_run(
                run.run_id,
                f"Step '{task.step_name_in_workflow}' requires manual intervention: {message}",
                merge=lambda results: {**results, **error_output},
            )
            return

        self._tasks.update_status(task.task_id, TaskStatus.FAILED, output=error_output)

        if action in {"continue_with_error", "transition_to_step"}:
            self._enqueue(
                Advance(
                    run_id=run.run_id,
                    previous_output=error_output,
                    finished_step=task.step_name_in_workflow,
                    triggering_task_id=task.task_id,
                    branch=task.branch,
                    forced_step=handling.on_failure.next_step
                    if action == "transition_to_step"
                    else None,
                )
            )
            return

        # fail_workflow fails the whole run, inside a branch too.
        self._fail_run(run.run_id, message, merge=lambda results: {**results, **error_output})
