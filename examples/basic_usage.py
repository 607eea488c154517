#!/usr/bin/env python3
"""Programmatic loan review example.

This demonstrates using the orchestrator components directly:

* load settings from `.env`
* register a workflow with an agent step and a human review step
* start a run and complete the review task

State is persisted under `ORCHESTRATOR_STATE_STORAGE_PATH` (default `.state/`).
"""

from __future__ import annotations

import argparse
from typing import Any, Sequence

from workflow_orchestrator.agents import LOAN_CHECKER_AGENT_ID
from workflow_orchestrator.core.config import OrchestratorConfig
from workflow_orchestrator.core.orchestrator import Orchestrator

LOAN_REVIEW: dict[str, Any] = {
    "name": "loan_review_example",
    "start_step": "check",
    "steps": [
        {
            "name": "check",
            "type": "agent_execution",
            "agent_core_logic_identifier": LOAN_CHECKER_AGENT_ID,
            "output_namespace": "check",
            "default_input": {
                "agent_config": {
                    "requiredDocumentTypes": ["id", "payslip"],
                    "basicWorthinessRules": [
                        {"fieldName": "income", "operator": ">=", "value": 30000}
                    ],
                }
            },
            "transitions": [{"to": "review"}],
        },
        {
            "name": "review",
            "type": "human_review",
            "assigned_to_role": "underwriter",
            "transitions": [
                {
                    "to": "approved",
                    "condition_type": "on_output_value",
                    "field": "decision",
                    "operator": "==",
                    "value": "approve",
                },
                {"to": "rejected"},
            ],
        },
        {"name": "approved", "type": "end", "final_status": "completed"},
        {"name": "rejected", "type": "end", "final_status": "failed"},
    ],
}


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a loan review workflow (programmatic example).")
    parser.add_argument("--income", type=float, default=45000, help="Applicant income")
    parser.add_argument(
        "--decision",
        default="approve",
        choices=["approve", "reject"],
        help="Underwriter decision used to complete the review task",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    config = OrchestratorConfig()
    config.setup_logging()
    orchestrator = Orchestrator(config)

    record = orchestrator.definitions.register(LOAN_REVIEW)
    run = orchestrator.start_run(
        workflow_id=record.workflow_id,
        input_data={
            "submittedDocuments": [{"docType": "id"}, {"docType": "payslip"}],
            "applicationData": {"income": args.income},
        },
    )
    orchestrator.wait_for_agents()

    (review,) = [t for t in orchestrator.tasks.list_for_run(run.run_id) if t.type == "human_review"]
    print(f"Agent assessment: {orchestrator.get_run(run.run_id).results_json['check']['overallAssessment']}")

    orchestrator.complete_task(review.task_id, {"decision": args.decision}, user_id="example-user")

    final = orchestrator.get_run(run.run_id)
    print(f"Run {final.run_id} finished as {final.status.value}")
    print(f"Persisted to: {config.state.storage_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
