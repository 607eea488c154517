from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from workflow_orchestrator.orchestrator.workflow.errors import AgentNotFoundError

logger = logging.getLogger(__name__)

AgentHandler = Callable[[dict[str, Any]], Mapping[str, Any]]

# Agents read their configuration from this key of the task input. Workflow
# authors normally set it through the step's ``default_input``.
AGENT_CONFIG_KEY = "agent_config"

ModelT = TypeVar("ModelT", bound=BaseModel)


class AgentConfigError(ValueError):
    pass


def parse_agent_config(model: type[ModelT], input_data: Mapping[str, Any]) -> ModelT:
    raw = input_data.get(AGENT_CONFIG_KEY)
    if not isinstance(raw, Mapping):
        raise AgentConfigError(f"Missing '{AGENT_CONFIG_KEY}' object in agent input")
    try:
        return model.model_validate(dict(raw))
    except ValidationError as e:
        raise AgentConfigError(f"Invalid agent configuration: {e}") from e


class AgentRegistry:
    """Maps agent core-logic identifiers to callables.

    This is the engine's agent executor: ``execute`` looks the identifier up
    and calls it with the task input.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, AgentHandler] = {}

    def register(self, agent_id: str, handler: AgentHandler, *, replace: bool = False) -> None:
        if agent_id in self._handlers and not replace:
            raise ValueError(f"Agent '{agent_id}' is already registered")
        self._handlers[agent_id] = handler

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._handlers

    def identifiers(self) -> list[str]:
        return sorted(self._handlers)

    def execute(self, agent_id: str, input_data: dict[str, Any]) -> dict[str, Any]:
        handler = self._handlers.get(agent_id)
        if handler is None:
            raise AgentNotFoundError(f"No agent registered for '{agent_id}'")
        logger.debug("Executing agent", extra={"agent_id": agent_id})
        return dict(handler(input_data))
