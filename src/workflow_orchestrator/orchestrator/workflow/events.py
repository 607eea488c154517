from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .models import BranchContext
from .state_machine import TaskStatus


@dataclass(frozen=True, slots=True)
class Advance:
    """Move a run (or one of its branches) past ``finished_step``.

    ``finished_step`` is None when the run or branch is just starting, in which
    case the start step is entered and ``previous_output`` is not merged.
    ``forced_step`` bypasses transition evaluation (failure routing).
    """

    run_id: str
    previous_output: dict[str, Any] | None = None
    finished_step: str | None = None
    triggering_task_id: str | None = None
    branch: BranchContext | None = None
    forced_step: str | None = None

    @property
    def is_start(self) -> bool:
        return self.finished_step is None and self.forced_step is None


@dataclass(frozen=True, slots=True)
class TaskCompleted:
    """A human (or manual) completion of a task."""

    task_id: str
    output: dict[str, Any]
    status: TaskStatus
    completed_by: str | None = None


@dataclass(frozen=True, slots=True)
class AgentFinished:
    task_id: str
    output: dict[str, Any] | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class RunFinished:
    """A run reached a terminal status; a waiting parent may resume."""

    run_id: str


WorkItem = Advance | TaskCompleted | AgentFinished | RunFinished
