"""PipelineOrchestrator — pushes one run's batches through the configured steps."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from conveyor.config import settings
from conveyor.pipeline.errors import ConfigurationError, PipelineRunError
from conveyor.pipeline.models import (
    ProcessStatus,
    RunReport,
    StepFailure,
    StepOutcome,
    StepResult,
    utcnow,
)
from conveyor.pipeline.retry import retry_window, should_retry

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from conveyor.pipeline.interfaces import WorkItemRepository
    from conveyor.pipeline.models import RunContext, StepDescriptor, WorkItem
    from conveyor.pipeline.registry import HandlerRegistry, StepHandlerRegistry

logger = logging.getLogger(__name__)


@dataclass
class _Run:
    """Mutable state of a single run. One commit lock per run, never global."""

    context: RunContext
    steps: list[StepDescriptor]
    registry: StepHandlerRegistry
    report: RunReport
    commit_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def tag(self) -> str:
        return f"Task '{self.context.task_name}' run #{self.context.run_count}"

    def fail(self, step: StepDescriptor, phase: str, exc: BaseException) -> None:
        message = str(exc) or type(exc).__name__
        self.report.failures.append(StepFailure(step.name, phase, message))


class PipelineOrchestrator:
    """Resolves a task's step queue and runs each step's fetch, handle, commit cycle.

    Composed over a data-access capability (*repository*) and a step-handler
    capability (*handlers*). Item-level failures are recorded on the items
    and committed. Step-level failures (fetch, handle, commit) are logged and
    isolated to their step. They are raised once per run as ``PipelineRunError``
    after every step has committed what it could.

    Pulling tasks skip fetch and retry. Each step's pull handler produces
    payloads that are queued at the step through ``repository.add_items``
    under the same run-scoped commit lock.

    Args:
        repository: Step catalog plus work-item reader and writer.
        handlers: Process-wide handler registry, bound per run.
        max_concurrency: Upper bound on parallel step workers
            (default from settings).
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        repository: WorkItemRepository,
        handlers: HandlerRegistry,
        *,
        max_concurrency: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._handlers = handlers
        self._max_concurrency = max_concurrency or settings.max_parallel_steps
        self._clock = clock

    # -- Public API ------------------------------------------------------------

    async def run_once(self, context: RunContext) -> RunReport:
        """Execute one run of the task described by *context*.

        Raises:
            ConfigurationError: A configured step is unknown or has no
                handler. Raised before any data is fetched.
            PipelineRunError: One or more steps failed to fetch, handle or commit.
        """
        steps = list(await self.resolve_steps(context))
        registry = self._handlers.bind(steps, pulling=context.settings.is_pulling)
        for step in steps:
            registry.resolve(step)

        run = _Run(
            context=context,
            steps=steps,
            registry=registry,
            report=RunReport(task_name=context.task_name, run_count=context.run_count),
        )
        logger.info(
            "%s started with %d step(s) (parallel=%s, pulling=%s)",
            run.tag,
            len(steps),
            context.settings.is_parallel,
            context.settings.is_pulling,
        )

        if context.settings.is_parallel:
            await self._dispatch_parallel(run)
        else:
            await self._dispatch_sequential(run)

        if run.report.failures:
            raise PipelineRunError(
                context.task_name, context.run_count, run.report.failures, run.report
            )
        logger.info("%s finished", run.tag)
        return run.report

    async def resolve_steps(self, context: RunContext) -> deque[StepDescriptor]:
        """Map the configured step names to catalog entries, in configured order."""
        catalog = await self._repository.get_step_catalog()
        queue: deque[StepDescriptor] = deque()
        for name in context.settings.steps:
            step = catalog.get(name)
            if step is None:
                msg = (
                    f"The step '{name}' from the settings of task '{context.task_name}'"
                    " was not found in the step catalog"
                )
                raise ConfigurationError(msg)
            queue.append(step)
        return queue

    # -- Dispatch --------------------------------------------------------------

    async def _dispatch_sequential(self, run: _Run) -> None:
        queue = deque(enumerate(run.steps))
        while queue:
            index, step = queue.popleft()
            await self._process_step(run, index, step)

    async def _dispatch_parallel(self, run: _Run) -> None:
        queue: asyncio.Queue[tuple[int, StepDescriptor]] = asyncio.Queue()
        for index, step in enumerate(run.steps):
            queue.put_nowait((index, step))

        limit = asyncio.Semaphore(min(len(run.steps), self._max_concurrency))

        async def worker() -> None:
            async with limit:
                try:
                    index, step = queue.get_nowait()
                except asyncio.QueueEmpty:
                    logger.warning("%s: no steps left to process", run.tag)
                    return
                try:
                    await self._process_step(run, index, step)
                except Exception as exc:
                    logger.exception("%s: worker for step '%s' failed", run.tag, step.name)
                    run.fail(step, "worker", exc)

        await asyncio.gather(*(worker() for _ in run.steps))

    # -- Step cycle ------------------------------------------------------------

    async def _process_step(self, run: _Run, index: int, step: StepDescriptor) -> None:
        outcome = StepOutcome(step=step.name)
        run.report.outcomes.append(outcome)

        if run.context.settings.is_pulling:
            await self._pull_step(run, step, outcome)
            return

        try:
            items = await self._fetch(run, step)
        except Exception as exc:
            logger.exception("%s: getting data for step '%s' failed", run.tag, step.label)
            run.fail(step, "fetch", exc)
            return

        outcome.fetched = len(items)
        if not items:
            logger.debug("%s: no data for step '%s'", run.tag, step.label)
            return

        items = await self._handle(run, step, items)
        outcome.failed = sum(1 for item in items if item.failed)
        outcome.processed = len(items) - outcome.failed

        try:
            next_step = await self._next_step(run, index)
            outcome.next_step = next_step.name if next_step is not None else None
            async with run.commit_lock:
                await self._save(run, step, next_step, items)
        except Exception as exc:
            logger.exception("%s: saving data for step '%s' failed", run.tag, step.label)
            run.fail(step, "commit", exc)
            return

        outcome.committed = True
        logger.info(
            "%s: step '%s' done. Processed: %d. Unprocessed: %d.",
            run.tag,
            step.label,
            outcome.processed,
            outcome.failed,
        )

    async def _pull_step(self, run: _Run, step: StepDescriptor, outcome: StepOutcome) -> None:
        puller = run.registry.resolve(step)
        logger.debug("%s: start pulling data for step '%s'", run.tag, step.label)
        try:
            payloads = list(await puller(step, run.context.settings.chunk_size))
        except Exception as exc:
            logger.exception("%s: pulling data for step '%s' failed", run.tag, step.label)
            run.fail(step, "handle", exc)
            return

        outcome.fetched = len(payloads)
        if not payloads:
            logger.debug("%s: no data pulled for step '%s'", run.tag, step.label)
            return

        try:
            async with run.commit_lock:
                logger.debug("%s: start saving data for step '%s'", run.tag, step.label)
                await self._repository.add_items(step, payloads)
        except Exception as exc:
            logger.exception("%s: saving data for step '%s' failed", run.tag, step.label)
            run.fail(step, "commit", exc)
            return

        outcome.processed = len(payloads)
        outcome.committed = True
        logger.info("%s: step '%s' pulled %d item(s)", run.tag, step.label, len(payloads))

    async def _fetch(self, run: _Run, step: StepDescriptor) -> list[WorkItem]:
        task_settings = run.context.settings
        limit = task_settings.chunk_size

        logger.debug("%s: start getting processable data for step '%s'", run.tag, step.label)
        items = list(await self._repository.fetch_processable(step, limit))

        policy = task_settings.retry_policy
        if policy is not None and should_retry(run.context.run_count, policy):
            window = retry_window(policy, task_settings.schedule.work_time, self._clock())
            logger.debug(
                "%s: start getting unprocessable data for step '%s' (since=%s, max_attempts=%d)",
                run.tag,
                step.label,
                window.since.isoformat(),
                window.max_attempts,
            )
            retryable = await self._repository.fetch_retryable(
                step, limit, window.since, window.max_attempts
            )
            items.extend(retryable)

        for item in items:
            item.status = ProcessStatus.PROCESSING
            item.error = None

        logger.debug("%s: stop getting data for step '%s' (%d item(s))", run.tag, step.label, len(items))
        return items

    async def _handle(
        self, run: _Run, step: StepDescriptor, items: list[WorkItem]
    ) -> list[WorkItem]:
        handler = run.registry.resolve(step)
        logger.debug("%s: start handling data for step '%s'", run.tag, step.label)
        try:
            result = await handler(step, items)
            if not isinstance(result, StepResult):
                result = StepResult.failed(f"Handler for step '{step.name}' returned no result")
        except Exception as exc:
            logger.exception("%s: handler for step '%s' raised", run.tag, step.label)
            result = StepResult.failed(str(exc) or type(exc).__name__)

        if not result.success:
            logger.warning("%s: step '%s' failed: %s", run.tag, step.label, result.error)
            run.report.failures.append(StepFailure(step.name, "handle", result.error))
            for item in items:
                item.fail(result.error)
            return items

        handled = items
        if result.items is not None:
            handled = list(result.items)
            kept = {item.id for item in handled}
            for item in items:
                if item.id not in kept:
                    item.fail("dropped by handler")
                    handled.append(item)
        for item in handled:
            if not item.failed:
                item.status = ProcessStatus.PROCESSED
                item.error = None
        logger.debug("%s: stop handling data for step '%s'", run.tag, step.label)
        return handled

    async def _next_step(self, run: _Run, index: int) -> StepDescriptor | None:
        if index + 1 < len(run.steps):
            return run.steps[index + 1]
        if run.context.settings.is_infinite:
            queue = await self.resolve_steps(run.context)
            return queue[0]
        return None

    async def _save(
        self,
        run: _Run,
        step: StepDescriptor,
        next_step: StepDescriptor | None,
        items: list[WorkItem],
    ) -> None:
        logger.debug("%s: start saving data for step '%s'", run.tag, step.label)
        if next_step is not None:
            for item in items:
                if item.status is ProcessStatus.PROCESSED:
                    item.status = ProcessStatus.READY

        await self._repository.commit(next_step, items)

        if next_step is not None:
            logger.debug(
                "%s: stop saving data for step '%s'. Next step: '%s'",
                run.tag,
                step.label,
                next_step.label,
            )
        else:
            logger.debug("%s: stop saving data for step '%s'", run.tag, step.label)
