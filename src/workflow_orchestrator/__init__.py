"""Workflow Orchestrator.

A local-first business process engine:
- typed workflow definitions with conditional transitions
- human tasks and agent tasks, parallel branches and sub-workflows
- JSON-file persistence, structured logging, a CLI and a REST API
"""

__version__ = "0.1.0"

from workflow_orchestrator.core.config import OrchestratorConfig

__all__ = ["__version__", "OrchestratorConfig"]
