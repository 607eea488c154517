"""Deadline handling for open human tasks.

This is a sweep, not a timer: hosts call :func:`escalate_overdue_tasks`
periodically (the CLI exposes it as ``escalate-overdue``).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Protocol

from .definitions import HUMAN_STEP_TYPES
from .models import Task
from .state_machine import TaskStatus

logger = logging.getLogger(__name__)

_OPEN_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS})


class EscalatableTaskStore(Protocol):
    def list_open(self) -> list[Task]: ...

    def update_status(self, task_id: str, status: TaskStatus, **updates: object) -> Task: ...


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def escalation_deadline(task: Task) -> datetime | None:
    """When a task becomes overdue.

    An explicit ``due_date`` wins; otherwise ``escalation_policy.after_minutes``
    counts from task creation.
    """

    if task.due_date:
        return _parse_iso(task.due_date)
    policy = task.escalation_policy
    if policy is not None and policy.after_minutes:
        return _parse_iso(task.created_at) + timedelta(minutes=policy.after_minutes)
    return None


def overdue_tasks(tasks: Iterable[Task], now: datetime) -> list[Task]:
    overdue: list[Task] = []
    for task in tasks:
        if task.type not in HUMAN_STEP_TYPES or task.status not in _OPEN_STATUSES:
            continue
        deadline = escalation_deadline(task)
        if deadline is not None and deadline <= now:
            overdue.append(task)
    return overdue


def escalate_overdue_tasks(
    store: EscalatableTaskStore, *, now: datetime | None = None
) -> list[Task]:
    """Mark overdue human tasks ``requires_escalation``.

    ``reassign_to_role`` also moves the task to the policy's target role.
    Other policy actions are recorded in the log for a notifier to pick up.
    """

    now = now or datetime.now(tz=UTC)
    escalated: list[Task] = []
    for task in overdue_tasks(store.list_open(), now):
        policy = task.escalation_policy
        updates: dict[str, object] = {}
        if policy is not None and policy.action == "reassign_to_role" and policy.target_role:
            updates = {"assigned_to_role": policy.target_role, "assigned_to_user_id": None}

        updated = store.update_status(task.task_id, TaskStatus.REQUIRES_ESCALATION, **updates)
        logger.warning(
            "Task overdue; escalated",
            extra={
                "task_id": task.task_id,
                "run_id": task.run_id,
                "step": task.step_name_in_workflow,
                "action": policy.action if policy else None,
                "target_role": policy.target_role if policy else None,
                "custom_event_name": policy.custom_event_name if policy else None,
            },
        )
        escalated.append(updated)
    return escalated
