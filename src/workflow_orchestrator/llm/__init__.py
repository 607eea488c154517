"""LLM package initialization."""

from workflow_orchestrator.llm.factory import LLMFactory
from workflow_orchestrator.llm.provider import LLMProvider, LLMResponseError

__all__ = [
    "LLMFactory",
    "LLMProvider",
    "LLMResponseError",
]
