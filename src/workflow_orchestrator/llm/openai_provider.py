"""OpenAI LLM provider implementation."""

from __future__ import annotations

import logging
from typing import Any

from openai import OpenAI

from workflow_orchestrator.core.config import LLMConfig
from workflow_orchestrator.llm.provider import LLMProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    def __init__(self, config: LLMConfig, client: OpenAI | None = None) -> None:
        """Initialize the OpenAI provider.

        Args:
            config: LLM configuration.
            client: Pre-built client (mainly for tests).

        Raises:
            ValueError: If API key is not provided.
        """
        if client is None and not config.is_configured:
            raise ValueError("OpenAI API key is required")

        self.config = config
        self.client = client or OpenAI(
            api_key=config.openai_api_key, base_url=config.openai_base_url
        )
        self.model = config.openai_model
        self.temperature = config.openai_temperature

        logger.info("OpenAI provider initialized", extra={"model": self.model})

    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
        **kwargs: Any,
    ) -> str:
        temp = temperature if temperature is not None else self.temperature
        if json_mode:
            kwargs.setdefault("response_format", {"type": "json_object"})

        logger.debug(
            "Requesting chat completion",
            extra={"model": self.model, "messages": len(messages), "json_mode": json_mode},
        )

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,  # type: ignore[arg-type]
            max_tokens=max_tokens,
            temperature=temp,
            **kwargs,
        )

        content = response.choices[0].message.content or ""
        logger.debug("Chat completion received", extra={"characters": len(content)})
        return content
