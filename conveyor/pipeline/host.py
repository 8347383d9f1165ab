"""PipelineHost — registry and lifecycle for a process's recurring tasks."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from conveyor.pipeline.runner import RecurringTaskRunner

if TYPE_CHECKING:
    from conveyor.pipeline.interfaces import SettingsProvider
    from conveyor.pipeline.orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)


class PipelineHost:
    """Owns one ``RecurringTaskRunner`` per registered task.

    Created by the composition root; there is no module-level instance.

    Args:
        provider: Settings provider shared by every runner.
    """

    def __init__(self, provider: SettingsProvider) -> None:
        self._provider = provider
        self._runners: dict[str, RecurringTaskRunner] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def task_names(self) -> list[str]:
        """Names of all registered tasks."""
        return list(self._runners)

    def get_runner(self, task_name: str) -> RecurringTaskRunner | None:
        return self._runners.get(task_name)

    # -- Registration ----------------------------------------------------------

    def add_task(
        self,
        task_name: str,
        orchestrator: PipelineOrchestrator,
        **runner_kwargs: Any,
    ) -> RecurringTaskRunner:
        """Register a task. Raises ValueError on a duplicate name."""
        if task_name in self._runners:
            msg = f"Task '{task_name}' is already registered"
            raise ValueError(msg)
        runner = RecurringTaskRunner(task_name, self._provider, orchestrator, **runner_kwargs)
        self._runners[task_name] = runner
        if self._running:
            self._spawn(runner)
        return runner

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start a loop for every registered task."""
        if self._running:
            return
        self._running = True
        for runner in self._runners.values():
            self._spawn(runner)
        logger.info("Pipeline host started with %d task(s)", len(self._runners))

    async def stop(self) -> None:
        """Ask every runner to stop and wait for the loops to exit."""
        if not self._running:
            return
        for runner in self._runners.values():
            runner.stop()
        await self.wait()
        self._running = False
        logger.info("Pipeline host stopped")

    async def wait(self) -> None:
        """Wait until every runner loop has exited."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- Internal --------------------------------------------------------------

    def _spawn(self, runner: RecurringTaskRunner) -> None:
        task = asyncio.create_task(runner.run(), name=f"conveyor:{runner.task_name}")
        task.add_done_callback(self._on_runner_done)
        self._tasks[runner.task_name] = task

    def _on_runner_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            logger.info("Task loop %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Task loop %s crashed", task.get_name(), exc_info=exc)
        else:
            logger.info("Task loop %s exited", task.get_name())
