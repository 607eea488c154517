"""CLI entrypoint for the local-first workflow orchestrator."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from workflow_orchestrator import __version__
from workflow_orchestrator.core.config import OrchestratorConfig
from workflow_orchestrator.core.orchestrator import Orchestrator
from workflow_orchestrator.orchestrator.workflow.errors import (
    DefinitionError,
    RunNotFoundError,
    TaskNotFoundError,
)
from workflow_orchestrator.orchestrator.workflow.escalation import escalate_overdue_tasks

logger = logging.getLogger(__name__)


def _parse_json_object(value: str | None, *, what: str) -> dict[str, Any]:
    if value is None or not value.strip():
        return {}
    text = value
    if value.startswith("@"):
        text = Path(value[1:]).read_text(encoding="utf-8")
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be a JSON object")
    return data


def _print_model(model: BaseModel) -> None:
    print(model.model_dump_json(indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workflow-orchestrator",
        description="Local-first workflow orchestrator for human and agent tasks",
    )
    parser.add_argument(
        "--version", action="version", version=f"workflow-orchestrator {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    register = subparsers.add_parser(
        "register-definition", help="Validate and store a workflow definition"
    )
    register.add_argument("--file", required=True, help="Path to the definition JSON file")
    register.add_argument(
        "--name", default=None, help="Workflow name (defaults to the definition's name)"
    )
    register.add_argument(
        "--version",
        dest="definition_version",
        type=int,
        default=None,
        help="Explicit version number (defaults to the next free version)",
    )
    register.add_argument("--description", default=None, help="Human-readable description")
    register.add_argument(
        "--inactive",
        action="store_true",
        help="Store without activating (the current active version stays active)",
    )

    start = subparsers.add_parser("start-run", help="Start a workflow run")
    target = start.add_mutually_exclusive_group(required=True)
    target.add_argument("--workflow-id", default=None, help="Definition id")
    target.add_argument("--workflow-name", default=None, help="Definition name")
    start.add_argument(
        "--workflow-version",
        type=int,
        default=None,
        help="Version to run with --workflow-name (defaults to the active version)",
    )
    start.add_argument(
        "--input",
        default=None,
        help="Triggering data as a JSON object, or @path to read it from a file",
    )
    start.add_argument("--user", default=None, help="Triggering user id")

    complete = subparsers.add_parser("complete-task", help="Submit the result of a task")
    complete.add_argument("--task-id", required=True, help="Task id")
    complete.add_argument(
        "--output",
        default=None,
        help="Task output as a JSON object, or @path to read it from a file",
    )
    complete.add_argument("--user", default=None, help="Completing user id")
    complete.add_argument(
        "--failed", action="store_true", help="Report the task as failed instead of completed"
    )

    show_run = subparsers.add_parser("show-run", help="Print a workflow run")
    show_run.add_argument("--run-id", required=True, help="Run id")

    list_tasks = subparsers.add_parser("list-tasks", help="List tasks")
    scope = list_tasks.add_mutually_exclusive_group(required=True)
    scope.add_argument("--run-id", default=None, help="Tasks of one run")
    scope.add_argument("--open", action="store_true", help="All non-terminal tasks")

    subparsers.add_parser(
        "escalate-overdue", help="Mark overdue human tasks as requiring escalation"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = OrchestratorConfig()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    config.setup_logging()

    try:
        orchestrator = Orchestrator(config)

        if args.command == "register-definition":
            definition = _parse_json_object("@" + args.file, what="Definition")
            record = orchestrator.definitions.register(
                definition,
                name=args.name,
                version=args.definition_version,
                description=args.description,
                is_active=not args.inactive,
            )
            print(
                f"Registered {record.name} v{record.version} "
                f"({'active' if record.is_active else 'inactive'}): {record.workflow_id}"
            )
            return 0

        if args.command == "start-run":
            run = orchestrator.start_run(
                workflow_id=args.workflow_id,
                workflow_name=args.workflow_name,
                workflow_version=args.workflow_version,
                user_id=args.user,
                input_data=_parse_json_object(args.input, what="Input"),
            )
            orchestrator.wait_for_agents()
            _print_model(orchestrator.get_run(run.run_id))
            return 0

        if args.command == "complete-task":
            task = orchestrator.complete_task(
                args.task_id,
                _parse_json_object(args.output, what="Output"),
                user_id=args.user,
                status="failed" if args.failed else "completed",
            )
            orchestrator.wait_for_agents()
            run = orchestrator.get_run(task.run_id)
            print(f"Task {task.task_id} is {task.status.value}; run {run.run_id} is {run.status.value}")
            return 0

        if args.command == "show-run":
            _print_model(orchestrator.get_run(args.run_id))
            return 0

        if args.command == "list-tasks":
            if args.open:
                tasks = orchestrator.tasks.list_open()
            else:
                orchestrator.get_run(args.run_id)
                tasks = orchestrator.tasks.list_for_run(args.run_id)
            if not tasks:
                print("No tasks found")
            for task in tasks:
                assignee = task.assigned_to_user_id or task.assigned_to_role or "-"
                print(
                    f"{task.task_id}  {task.status.value:<19} {task.type:<17} "
                    f"{task.step_name_in_workflow}  assignee={assignee}"
                )
            return 0

        if args.command == "escalate-overdue":
            escalated = escalate_overdue_tasks(orchestrator.tasks)
            print(f"Escalated {len(escalated)} task(s)")
            for task in escalated:
                print(f"  {task.task_id} ({task.step_name_in_workflow})")
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except (RunNotFoundError, TaskNotFoundError) as e:
        print(f"Not found: {e}", file=sys.stderr)
        return 4

    except (DefinitionError, json.JSONDecodeError, ValueError) as e:
        logger.warning(str(e), extra={"command": args.command})
        print(str(e), file=sys.stderr)
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
