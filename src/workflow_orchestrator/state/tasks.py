from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from workflow_orchestrator.orchestrator.workflow.errors import StateError, TaskNotFoundError
from workflow_orchestrator.orchestrator.workflow.models import Task
from workflow_orchestrator.orchestrator.workflow.state_machine import (
    TaskStatus,
    check_task_transition,
)

from .base import JsonRecordStore, utc_iso_now


@dataclass
class TaskStore(JsonRecordStore[Task]):
    record_type = Task

    def create(self, task: Task) -> Task:
        with self._lock:
            tasks = self._load_unlocked()
            if any(t.task_id == task.task_id for t in tasks):
                raise StateError(f"Task {task.task_id} already exists")
            tasks.append(task)
            self._save_unlocked(tasks)
            return task

    def get(self, task_id: str) -> Task | None:
        with self._lock:
            for task in self._load_unlocked():
                if task.task_id == task_id:
                    return task
            return None

    def update(self, task_id: str, **updates: object) -> Task:
        with self._lock:
            tasks = self._load_unlocked()
            for idx, task in enumerate(tasks):
                if task.task_id != task_id:
                    continue
                merged = task.model_copy(update={"updated_at": utc_iso_now(), **updates})
                tasks[idx] = merged
                self._save_unlocked(tasks)
                return merged
            raise TaskNotFoundError(task_id)

    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        output: dict[str, Any] | None = None,
        completed_by: str | None = None,
        **updates: object,
    ) -> Task:
        """Move a task to ``status``, enforcing the task lifecycle.

        Raises:
            IllegalTransitionError: If the task cannot move to ``status``.
            TaskNotFoundError: If the task does not exist.
        """

        with self._lock:
            task = self.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            check_task_transition(current=task.status, to=status)
            changes: dict[str, object] = {"status": status, **updates}
            if output is not None:
                changes["output_data_json"] = dict(output)
            if completed_by is not None:
                changes["completed_by_user_id"] = completed_by
            return self.update(task_id, **changes)

    def find_by_sub_workflow_run_id(self, run_id: str) -> Task | None:
        with self._lock:
            for task in self._load_unlocked():
                if task.sub_workflow_run_id == run_id:
                    return task
            return None

    def list_for_run(self, run_id: str) -> list[Task]:
        return [t for t in self.list() if t.run_id == run_id]

    def list_open(self) -> list[Task]:
        return [t for t in self.list() if not t.is_terminal]
