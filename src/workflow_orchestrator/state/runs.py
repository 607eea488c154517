from __future__ import annotations

from dataclasses import dataclass

from workflow_orchestrator.orchestrator.workflow.errors import (
    ConcurrentModificationError,
    RunNotFoundError,
    StateError,
)
from workflow_orchestrator.orchestrator.workflow.models import WorkflowRun
from workflow_orchestrator.orchestrator.workflow.state_machine import RunStatus

from .base import JsonRecordStore, utc_iso_now


@dataclass
class RunStore(JsonRecordStore[WorkflowRun]):
    """Workflow runs with optimistic versioning.

    Every successful :meth:`save` bumps ``version``. Saving a copy whose version
    no longer matches the stored one raises :class:`ConcurrentModificationError`,
    and a run that reached a terminal status can no longer be saved at all.
    """

    record_type = WorkflowRun

    def create(self, run: WorkflowRun) -> WorkflowRun:
        with self._lock:
            runs = self._load_unlocked()
            if any(r.run_id == run.run_id for r in runs):
                raise StateError(f"Run {run.run_id} already exists")
            record = run.model_copy(update={"version": 1, "updated_at": utc_iso_now()})
            runs.append(record)
            self._save_unlocked(runs)
            return record

    def get(self, run_id: str) -> WorkflowRun | None:
        with self._lock:
            for run in self._load_unlocked():
                if run.run_id == run_id:
                    return run
            return None

    def save(self, run: WorkflowRun) -> WorkflowRun:
        with self._lock:
            runs = self._load_unlocked()
            for idx, stored in enumerate(runs):
                if stored.run_id != run.run_id:
                    continue
                if stored.version != run.version:
                    raise ConcurrentModificationError(
                        f"Run {run.run_id} is at version {stored.version}, "
                        f"update was based on version {run.version}"
                    )
                if stored.is_terminal:
                    raise StateError(
                        f"Run {run.run_id} is {stored.status.value} and can no longer change"
                    )
                saved = run.model_copy(
                    update={"version": stored.version + 1, "updated_at": utc_iso_now()}
                )
                runs[idx] = saved
                self._save_unlocked(runs)
                return saved
            raise RunNotFoundError(run.run_id)

    def list_by_status(self, status: RunStatus | None = None) -> list[WorkflowRun]:
        runs = self.list()
        if status is None:
            return runs
        return [r for r in runs if r.status == status]

    def list_children(self, parent_run_id: str) -> list[WorkflowRun]:
        return [r for r in self.list() if r.parent_run_id == parent_run_id]
