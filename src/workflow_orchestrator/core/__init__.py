"""Core package: configuration and the composition root.

Import :class:`workflow_orchestrator.core.orchestrator.Orchestrator` directly;
this package does not re-export it so that ``core.config`` stays importable
from the lower layers.
"""
