"""Local JSON-file persistence for definitions, runs and tasks."""

from workflow_orchestrator.state.definitions import DefinitionStore
from workflow_orchestrator.state.runs import RunStore
from workflow_orchestrator.state.tasks import TaskStore

__all__ = [
    "DefinitionStore",
    "RunStore",
    "TaskStore",
]
