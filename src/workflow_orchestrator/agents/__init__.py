"""Agent execution: the registry, built-in agents and dispatch strategies."""

from __future__ import annotations

from workflow_orchestrator.agents.data_extractor import DATA_EXTRACTOR_AGENT_ID, DataExtractorAgent
from workflow_orchestrator.agents.loan_checker import (
    LOAN_CHECKER_AGENT_ID,
    check_loan_application,
)
from workflow_orchestrator.agents.registry import AGENT_CONFIG_KEY, AgentRegistry
from workflow_orchestrator.llm.provider import LLMProvider

__all__ = [
    "AGENT_CONFIG_KEY",
    "AgentRegistry",
    "DATA_EXTRACTOR_AGENT_ID",
    "LOAN_CHECKER_AGENT_ID",
    "build_default_registry",
]


def build_default_registry(llm: LLMProvider | None = None) -> AgentRegistry:
    """Registry with the built-in agents."""

    registry = AgentRegistry()
    registry.register(LOAN_CHECKER_AGENT_ID, check_loan_application)
    registry.register(DATA_EXTRACTOR_AGENT_ID, DataExtractorAgent(llm=llm))
    return registry
