"""Pydantic models for the REST server."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class RegisterDefinitionRequest(BaseModel):
    definition_json: dict[str, Any]
    name: str | None = None
    version: int | None = Field(default=None, ge=1)
    description: str | None = None
    is_active: bool = True


class StartRunRequest(BaseModel):
    workflow_id: str | None = None
    workflow_name: str | None = None
    workflow_version: int | None = Field(default=None, ge=1)
    triggering_data_json: dict[str, Any] = Field(default_factory=dict)
    user_id: str | None = None

    @model_validator(mode="after")
    def _require_target(self) -> StartRunRequest:
        if not self.workflow_id and not self.workflow_name:
            raise ValueError("workflow_id or workflow_name is required")
        return self


class CompleteTaskRequest(BaseModel):
    output_data_json: dict[str, Any] = Field(default_factory=dict)
    user_id: str | None = None
    status: Literal["completed", "failed"] = "completed"


class EscalationSweepResult(BaseModel):
    escalated_task_ids: list[str] = Field(default_factory=list)
