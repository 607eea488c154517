"""Parallel branch bookkeeping and join resolution.

These functions mutate a :class:`WorkflowRun` in memory. The engine applies
them inside its serialized run update so that two branches finishing back to
back can never both observe "all branches done".
"""

from __future__ import annotations

from typing import Any

from .definitions import ParallelStep
from .models import BranchContext, BranchState, WorkflowRun
from .state_machine import TERMINAL_BRANCH_STATUSES, BranchStatus


def init_branches(run: WorkflowRun, step: ParallelStep) -> list[BranchContext]:
    """Reset branch state for a (re)entered parallel step."""

    assert step.join_on is not None
    run.active_parallel_branches[step.name] = {
        branch.name: BranchState(status=BranchStatus.PENDING) for branch in step.branches
    }
    if step.name in run.joined_parallel_steps:
        run.joined_parallel_steps.remove(step.name)
    return [
        BranchContext(parallel_step=step.name, branch=branch.name, join_step=step.join_on)
        for branch in step.branches
    ]


def mark_branch_started(run: WorkflowRun, context: BranchContext, step_name: str) -> None:
    state = run.branch_state(context)
    if state is None or state.status in TERMINAL_BRANCH_STATUSES:
        return
    state.status = BranchStatus.IN_PROGRESS
    state.current_step = step_name


def mark_branch_terminal(
    run: WorkflowRun, context: BranchContext, output: Any, status: BranchStatus
) -> bool:
    """Record a branch outcome. Returns False if it was already recorded."""

    state = run.branch_state(context)
    if state is None or state.status in TERMINAL_BRANCH_STATUSES:
        return False
    state.status = status
    state.output = output
    return True


def join_ready(run: WorkflowRun, parallel_step: str) -> bool:
    if parallel_step in run.joined_parallel_steps:
        return False
    branches = run.active_parallel_branches.get(parallel_step)
    if not branches:
        return False
    return all(state.status in TERMINAL_BRANCH_STATUSES for state in branches.values())


def aggregate_outputs(run: WorkflowRun, parallel_step: str) -> dict[str, Any]:
    aggregated: dict[str, Any] = {}
    for name, state in run.active_parallel_branches.get(parallel_step, {}).items():
        if state.status == BranchStatus.FAILED:
            aggregated[name] = {"error": f"Branch {name} failed.", "output": state.output}
        else:
            aggregated[name] = state.output
    return aggregated


def resolve_branch(
    run: WorkflowRun, context: BranchContext, output: Any, status: BranchStatus
) -> dict[str, Any] | None:
    """Finish a branch and fire the join if it was the last one.

    Returns the aggregated branch outputs when the join fires, otherwise None.
    The join fires at most once per activation of the parallel step.
    """

    if not mark_branch_terminal(run, context, output, status):
        return None
    if not join_ready(run, context.parallel_step):
        return None
    run.joined_parallel_steps.append(context.parallel_step)
    run.current_step_path = [context.join_step]
    return aggregate_outputs(run, context.parallel_step)
