"""Abstract base class for LLM providers."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any


class LLMResponseError(ValueError):
    """The model's reply could not be interpreted."""


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    Agents only depend on this interface, so tests can substitute a fake.
    """

    @abstractmethod
    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
        **kwargs: Any,
    ) -> str:
        """Generate chat completion from messages.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature.
            json_mode: Ask the provider to constrain output to a JSON object.
            **kwargs: Additional provider-specific parameters.

        Returns:
            Generated chat response.
        """

    def complete_json(self, *, system: str, user: str, **kwargs: Any) -> dict[str, Any]:
        """Ask for a JSON object and parse it.

        Raises:
            LLMResponseError: If the reply is not a JSON object.
        """

        reply = self.chat(
            [{"role": "system", "content": system}, {"role": "user", "content": user}],
            json_mode=True,
            **kwargs,
        )
        try:
            parsed = json.loads(reply)
        except json.JSONDecodeError as e:
            raise LLMResponseError(f"Model reply is not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise LLMResponseError("Model reply is not a JSON object")
        return parsed
