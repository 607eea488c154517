"""Explicit workflow domain concepts.

This package holds:
- Typed workflow definitions and their graph validation
- Transition condition evaluation
- Run and task lifecycles (status state machines)
- The engine that advances runs through parallel branches and sub-workflows

Modules are imported directly; nothing is re-exported here so that the
persistence layer can depend on the models without loading the engine.
"""

__all__: list[str] = []
