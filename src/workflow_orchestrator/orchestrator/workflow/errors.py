"""Error taxonomy for workflow execution.

Entry points raise these to callers only where the caller can act on them
(an unknown workflow id, an unknown task id). Everything that goes wrong while
a run is being advanced is converted into a failed run instead.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for all workflow orchestration errors."""


class DefinitionError(OrchestratorError, ValueError):
    """A workflow definition or one of its steps is missing or malformed."""


class TransitionError(OrchestratorError):
    """No transition of a finished step matched its output."""


class ExecutionError(OrchestratorError):
    """An agent execution or sub-workflow start failed."""


class AgentNotFoundError(ExecutionError):
    pass


class StateError(OrchestratorError):
    """An operation targeted a run or task in a state that forbids it."""


class ConcurrentModificationError(StateError):
    """A run record was saved from a stale version."""


class RunNotFoundError(OrchestratorError, KeyError):
    pass


class TaskNotFoundError(OrchestratorError, KeyError):
    pass
