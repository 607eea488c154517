from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .conditions import resolve_path
from .definitions import SubWorkflowStep
from .models import WorkflowRun
from .state_machine import RunStatus

logger = logging.getLogger(__name__)

MAX_SUB_WORKFLOW_DEPTH = 10


def build_child_input(step: SubWorkflowStep, context: Mapping[str, Any]) -> dict[str, Any]:
    """Map parent context into the child's triggering data.

    Without an ``input_mapping`` the child receives the parent's whole
    accumulated context with ``default_input`` laid over it. Otherwise
    ``default_input`` is the base and each mapping entry
    ``target_key -> dot.path.in.parent`` is copied onto it; paths that resolve
    to nothing are left out.
    """

    if not step.input_mapping:
        return {**context, **step.default_input}

    child_input: dict[str, Any] = dict(step.default_input)
    for target, source in step.input_mapping.items():
        value = resolve_path(context, source)
        if value is None:
            logger.warning(
                "Sub-workflow input path not found in parent context",
                extra={"step": step.name, "target": target, "source": source},
            )
            continue
        child_input[target] = value
    return child_input


def child_failure_message(child: WorkflowRun) -> str | None:
    """None when the child completed; otherwise why the parent step failed."""

    if child.status == RunStatus.COMPLETED:
        return None
    message = f"Sub-workflow {child.run_id} ended {child.status.value}"
    child_error = child.results_json.get("error")
    if isinstance(child_error, str) and child_error:
        message = f"{message}: {child_error}"
    return message
