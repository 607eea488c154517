"""Console-script entrypoint.

The CLI is implemented in `workflow_orchestrator.orchestrator.main`.
"""

from __future__ import annotations

from workflow_orchestrator.orchestrator.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
