from __future__ import annotations

from enum import Enum

from .errors import StateError


class RunStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    REQUIRES_ESCALATION = "requires_escalation"


class BranchStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_RUN_STATUSES: frozenset[RunStatus] = frozenset(
    {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}
)
TERMINAL_TASK_STATUSES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED}
)
TERMINAL_BRANCH_STATUSES: frozenset[BranchStatus] = frozenset(
    {BranchStatus.COMPLETED, BranchStatus.FAILED}
)

_RUN_EXITS = {RunStatus.IN_PROGRESS, *TERMINAL_RUN_STATUSES}

ALLOWED_RUN_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.PENDING: set(_RUN_EXITS),
    RunStatus.IN_PROGRESS: set(_RUN_EXITS),
    RunStatus.COMPLETED: set(),
    RunStatus.FAILED: set(),
    RunStatus.CANCELLED: set(),
}

_TASK_FINISHES = {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.REQUIRES_ESCALATION}

ALLOWED_TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, *_TASK_FINISHES},
    TaskStatus.ASSIGNED: {TaskStatus.IN_PROGRESS, *_TASK_FINISHES},
    TaskStatus.IN_PROGRESS: set(_TASK_FINISHES),
    TaskStatus.REQUIRES_ESCALATION: {
        TaskStatus.ASSIGNED,
        TaskStatus.IN_PROGRESS,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
    },
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}


class IllegalTransitionError(StateError, ValueError):
    pass


def check_run_transition(*, current: RunStatus, to: RunStatus) -> RunStatus:
    # Re-entering a live status (step to step) is not a transition.
    if current == to and current not in TERMINAL_RUN_STATUSES:
        return to
    if to not in ALLOWED_RUN_TRANSITIONS.get(current, set()):
        raise IllegalTransitionError(f"Illegal run transition: {current.value} -> {to.value}")
    return to


def check_task_transition(*, current: TaskStatus, to: TaskStatus) -> TaskStatus:
    if current == to and current not in TERMINAL_TASK_STATUSES:
        return to
    if to not in ALLOWED_TASK_TRANSITIONS.get(current, set()):
        raise IllegalTransitionError(f"Illegal task transition: {current.value} -> {to.value}")
    return to
