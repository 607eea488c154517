from __future__ import annotations

from typing import Any

from .definitions import ErrorHandling, StepDefinition

DEFAULT_ERROR_NAMESPACE = "error_details"


def error_handling_for(step: StepDefinition | None) -> ErrorHandling:
    if step is None or step.error_handling is None:
        return ErrorHandling()
    return step.error_handling


def should_retry(handling: ErrorHandling, *, attempts_made: int) -> bool:
    if handling.retry_policy is None:
        return False
    return attempts_made < handling.retry_policy.max_attempts


def retry_delay(handling: ErrorHandling, *, attempts_made: int) -> float:
    policy = handling.retry_policy
    if policy is None:
        return 0.0
    if policy.backoff_strategy == "exponential":
        return policy.delay_seconds * (2 ** max(attempts_made - 1, 0))
    return policy.delay_seconds


def error_namespace(handling: ErrorHandling) -> str:
    return handling.on_failure.error_output_namespace or DEFAULT_ERROR_NAMESPACE


def error_details(*, message: str, step_name: str, retry_attempts_made: int) -> dict[str, Any]:
    return {
        "message": message,
        "step_name": step_name,
        "retry_attempts_made": retry_attempts_made,
    }
