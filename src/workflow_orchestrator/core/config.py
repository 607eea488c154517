"""Core configuration for the orchestrator."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMConfig(BaseSettings):
    """Configuration for the LLM used by AI-backed agents."""

    provider: Literal["openai"] = Field(
        default="openai",
        description="LLM provider to use",
    )

    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key; AI-backed extraction is unavailable without it",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model to use",
    )
    openai_temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Temperature for OpenAI model",
    )
    openai_base_url: str | None = Field(
        default=None,
        description="Override for OpenAI-compatible endpoints",
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_LLM_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.openai_api_key and self.openai_api_key.strip())


class StateConfig(BaseSettings):
    """Configuration for local state files."""

    storage_path: Path = Field(
        default=Path(".state"),
        description="Directory where definitions, runs and tasks are persisted",
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_STATE_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def definitions_file(self) -> Path:
        return self.storage_path / "definitions.json"

    @property
    def runs_file(self) -> Path:
        return self.storage_path / "runs.json"

    @property
    def tasks_file(self) -> Path:
        return self.storage_path / "tasks.json"


class EngineConfig(BaseSettings):
    """Configuration for the workflow engine."""

    agent_dispatch: Literal["inline", "background"] = Field(
        default="inline",
        description="Run agents in the calling thread or on background threads",
    )
    max_save_retries: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Attempts to re-apply a run update after a version conflict",
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_ENGINE_",
        env_file=".env",
        extra="ignore",
    )


class OrchestratorConfig(BaseSettings):
    """Main configuration for the orchestrator."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Structured JSON logs or plain text",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    llm: LLMConfig = Field(
        default_factory=LLMConfig,
        description="LLM configuration",
    )
    state: StateConfig = Field(
        default_factory=StateConfig,
        description="State configuration",
    )
    engine: EngineConfig = Field(
        default_factory=EngineConfig,
        description="Engine configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        from workflow_orchestrator.orchestrator.logging import configure_logging

        configure_logging(self.log_level, fmt=self.log_format)
        if self.debug:
            logging.getLogger("workflow_orchestrator").setLevel(logging.DEBUG)
