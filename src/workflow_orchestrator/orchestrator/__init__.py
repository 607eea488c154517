"""Orchestrator components: the workflow engine, structured logging and the CLI."""
