"""Graph-level checks run when a definition is registered.

Structural validation (field types, step kinds) happens in
:func:`parse_definition`. The checks here are about how steps refer to each
other, which a single model cannot see.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from .conditions import transition_problem
from .definitions import (
    JoinStep,
    ParallelStep,
    StepDefinition,
    WorkflowGraph,
    parse_definition,
)
from .errors import DefinitionError


def _duplicate_names(steps: Sequence[StepDefinition]) -> list[str]:
    seen: set[str] = set()
    dupes: list[str] = []
    for step in steps:
        if step.name in seen and step.name not in dupes:
            dupes.append(step.name)
        seen.add(step.name)
    return dupes


def _check_scope(
    steps: Sequence[StepDefinition],
    *,
    scope: str,
    extra_targets: frozenset[str] = frozenset(),
) -> list[str]:
    issues: list[str] = []
    names = {s.name for s in steps}
    targets = names | extra_targets

    for dupe in _duplicate_names(steps):
        issues.append(f"{scope}: step name '{dupe}' is defined more than once")

    for step in steps:
        for transition in step.transitions:
            if transition.to not in targets:
                issues.append(
                    f"{scope}: step '{step.name}' transitions to undefined step '{transition.to}'"
                )
            problem = transition_problem(transition)
            if problem is not None:
                issues.append(
                    f"{scope}: transition '{step.name}' -> '{transition.to}' has {problem}"
                )

        handling = step.error_handling
        if handling is not None and handling.on_failure.action == "transition_to_step":
            if handling.on_failure.next_step not in names:
                issues.append(
                    f"{scope}: on_failure.next_step '{handling.on_failure.next_step}' "
                    f"of step '{step.name}' is not defined"
                )
    return issues


def validate_definition_logic(graph: WorkflowGraph) -> list[str]:
    """Return a list of human-readable problems; empty means valid."""

    issues: list[str] = []
    top_names = {s.name for s in graph.steps}

    if graph.start_step not in top_names:
        issues.append(f"start_step '{graph.start_step}' is not a defined step")

    issues.extend(_check_scope(graph.steps, scope="workflow"))

    referenced_joins: set[str] = set()
    for step in graph.steps:
        if not isinstance(step, ParallelStep):
            continue

        if not step.join_on:
            issues.append(f"parallel step '{step.name}' must declare join_on")
        elif not isinstance(graph.step(step.join_on), JoinStep):
            issues.append(
                f"parallel step '{step.name}' joins on '{step.join_on}', which is not a join step"
            )
        else:
            referenced_joins.add(step.join_on)

        if not step.branches:
            issues.append(f"parallel step '{step.name}' must define at least one branch")

        branch_names = [b.name for b in step.branches]
        for name in {n for n in branch_names if branch_names.count(n) > 1}:
            issues.append(f"parallel step '{step.name}' defines branch '{name}' more than once")

        for branch in step.branches:
            scope = f"branch '{step.name}.{branch.name}'"
            if not branch.steps:
                issues.append(f"{scope} must define at least one step")
                continue
            if branch.start_step not in {s.name for s in branch.steps}:
                issues.append(
                    f"{scope}: start_step '{branch.start_step}' is not a step of the branch"
                )
            for inner in branch.steps:
                if isinstance(inner, ParallelStep | JoinStep):
                    issues.append(
                        f"{scope}: nested {inner.type} step '{inner.name}' is not supported"
                    )
            joins = frozenset({step.join_on}) if step.join_on else frozenset()
            issues.extend(_check_scope(branch.steps, scope=scope, extra_targets=joins))

    for step in graph.steps:
        if isinstance(step, JoinStep) and step.name not in referenced_joins:
            issues.append(f"join step '{step.name}' is not referenced by any parallel step")

    return issues


def load_definition(raw: Mapping[str, Any] | None) -> WorkflowGraph:
    """Parse and fully validate a definition before it is stored.

    Raises:
        DefinitionError: Listing every problem found.
    """

    graph = parse_definition(raw)
    issues = validate_definition_logic(graph)
    if issues:
        raise DefinitionError("Invalid workflow definition: " + "; ".join(issues))
    return graph
