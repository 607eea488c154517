"""Run agent jobs inline or on background threads.

Either way the outcome is reported through ``on_done``; the engine takes its
own lock when it receives it, so a background thread never touches run state
directly.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from workflow_orchestrator.orchestrator.workflow.interfaces import (
    AgentExecutor,
    AgentJob,
    AgentOutcome,
)

logger = logging.getLogger(__name__)


def run_agent_job(executor: AgentExecutor, job: AgentJob) -> AgentOutcome:
    try:
        output = executor.execute(job.agent_id, dict(job.input_data))
    except Exception as e:
        logger.exception(
            "Agent execution failed", extra={"task_id": job.task_id, "agent_id": job.agent_id}
        )
        return AgentOutcome(task_id=job.task_id, error=str(e) or type(e).__name__)

    if not isinstance(output, Mapping):
        return AgentOutcome(
            task_id=job.task_id,
            error=f"Agent {job.agent_id} returned {type(output).__name__}, expected an object",
        )
    return AgentOutcome(task_id=job.task_id, output=dict(output))


@dataclass
class InlineAgentDispatcher:
    """Execute the agent synchronously in the caller's thread.

    The caller holds the engine lock, so retry delays are not waited out here;
    use :class:`BackgroundAgentDispatcher` for delayed retries.
    """

    executor: AgentExecutor

    def submit(self, job: AgentJob, on_done: Callable[[AgentOutcome], None]) -> None:
        if job.delay_seconds > 0:
            logger.info(
                "Retrying agent without delay under inline dispatch",
                extra={
                    "task_id": job.task_id,
                    "agent_id": job.agent_id,
                    "delay_seconds": job.delay_seconds,
                },
            )
        on_done(run_agent_job(self.executor, job))


@dataclass
class BackgroundAgentDispatcher:
    """Execute each agent job on its own daemon thread."""

    executor: AgentExecutor
    _threads: list[threading.Thread] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def submit(self, job: AgentJob, on_done: Callable[[AgentOutcome], None]) -> None:
        thread = threading.Thread(
            target=self._run_job,
            name=f"agent-{job.agent_id}-{job.task_id}",
            daemon=True,
            kwargs={"job": job, "on_done": on_done},
        )
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    def _run_job(self, *, job: AgentJob, on_done: Callable[[AgentOutcome], None]) -> None:
        if job.delay_seconds > 0:
            time.sleep(job.delay_seconds)
        outcome = run_agent_job(self.executor, job)
        try:
            on_done(outcome)
        except Exception:
            logger.exception(
                "Failed to record agent outcome",
                extra={"task_id": job.task_id, "agent_id": job.agent_id},
            )

    def wait(self, timeout: float | None = None) -> bool:
        """Join outstanding jobs, including ones submitted while waiting.

        Returns False if any job was still running when ``timeout`` elapsed.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                pending = [t for t in self._threads if t.is_alive()]
            if not pending:
                return True
            for thread in pending:
                remaining = None if deadline is None else max(deadline - time.monotonic(), 0)
                thread.join(remaining)
            if deadline is not None and time.monotonic() >= deadline:
                with self._lock:
                    return not any(t.is_alive() for t in self._threads)
