"""Factory for creating LLM providers."""

from __future__ import annotations

import logging

from workflow_orchestrator.core.config import LLMConfig
from workflow_orchestrator.llm.openai_provider import OpenAIProvider
from workflow_orchestrator.llm.provider import LLMProvider

logger = logging.getLogger(__name__)


class LLMFactory:
    """Factory for creating LLM provider instances."""

    @staticmethod
    def create(config: LLMConfig) -> LLMProvider:
        """Create an LLM provider based on configuration.

        Raises:
            ValueError: If provider type is not supported or not configured.
        """
        logger.info("Creating LLM provider", extra={"provider": config.provider})

        if config.provider == "openai":
            return OpenAIProvider(config)
        raise ValueError(f"Unsupported LLM provider: {config.provider}")

    @staticmethod
    def create_if_configured(config: LLMConfig) -> LLMProvider | None:
        """Like :meth:`create`, but None when no credentials are set."""
        if not config.is_configured:
            logger.info("No LLM credentials configured; AI-backed agents disabled")
            return None
        return LLMFactory.create(config)
