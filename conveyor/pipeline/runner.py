"""RecurringTaskRunner — owns one task's timer loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from conveyor.config import settings
from conveyor.pipeline.errors import ConfigurationError, PipelineRunError
from conveyor.pipeline.models import RunContext, utcnow
from conveyor.pipeline.schedule import ScheduleEvaluator

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime, timedelta

    from conveyor.pipeline.interfaces import SettingsProvider
    from conveyor.pipeline.orchestrator import PipelineOrchestrator
    from conveyor.pipeline.settings import BackgroundConfig, TaskSettings

logger = logging.getLogger(__name__)

RUN_COUNT_MAX = 2**31 - 1


class RecurringTaskRunner:
    """Runs one task on its schedule until the schedule says stop.

    Each pass of the outer loop resolves the current settings snapshot,
    evaluates the schedule and then ticks: stop check, start check (sleep
    the computed wait), run, sleep the work time. A configuration change
    flips a flag that the tick loop checks after its current wait; the run
    counter is reset and the outer loop starts over with the new snapshot.
    A one-shot run, once consumed, stays consumed across such restarts.

    Args:
        task_name: Key of the task in the ``background.tasks`` configuration.
        provider: Settings provider with change notifications.
        orchestrator: Executes one run of the pipeline.
        chunk_size_limit: Hard ceiling on ``chunk_size`` (default from settings).
        clock: Returns the current UTC time.
        sleep: Async callable ``(seconds)`` used between ticks. Defaults to a
            wait that ends early when ``stop()`` is called.
    """

    def __init__(
        self,
        task_name: str,
        provider: SettingsProvider,
        orchestrator: PipelineOrchestrator,
        *,
        chunk_size_limit: int | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._task_name = task_name
        self._provider = provider
        self._orchestrator = orchestrator
        self._chunk_size_limit = chunk_size_limit or settings.chunk_size_limit
        self._clock = clock
        self._sleep = sleep or self._wait_for_stop

        self._settings: TaskSettings | None = provider.current.get_task(task_name)
        self._settings_changed = False
        self._run_count = 0
        self._once_done = False
        self._stop_requested = asyncio.Event()
        self._stopped = False
        self._stop_reason: str | None = None
        self._unsubscribe = provider.subscribe(self._on_config_changed)

    @property
    def task_name(self) -> str:
        return self._task_name

    @property
    def run_count(self) -> int:
        return self._run_count

    @property
    def settings(self) -> TaskSettings | None:
        """The settings snapshot the loop is currently using."""
        return self._settings

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def stop_reason(self) -> str | None:
        return self._stop_reason

    # -- Lifecycle -------------------------------------------------------------

    async def run(self) -> None:
        """Loop until the schedule stops the task or ``stop()`` is called."""
        logger.info("Background task '%s' has started", self._task_name)
        try:
            while not self._stop_requested.is_set():
                task_settings = self._settings
                if task_settings is None:
                    self._finish("no settings were found for the task")
                    return

                evaluator = ScheduleEvaluator(task_settings.schedule)
                if self._once_done:
                    evaluator.mark_once()
                ready, reason = evaluator.is_ready(self._clock())
                if not ready:
                    self._finish(f"the task is not ready because {reason}")
                    return

                if not await self._tick_loop(task_settings, evaluator):
                    return
            self._finish("a stop was requested")
        finally:
            self._unsubscribe()

    def stop(self) -> None:
        """Request a graceful stop. The current wait ends immediately."""
        self._stop_requested.set()

    # -- Loop ------------------------------------------------------------------

    async def _tick_loop(self, task_settings: TaskSettings, evaluator: ScheduleEvaluator) -> bool:
        """Tick until stopped (returns False) or the settings changed (returns True)."""
        while True:
            if self._settings_changed:
                self._settings_changed = False
                self._run_count = 0
                logger.warning(
                    "Configuration of the background task '%s' was changed. It will be restarted.",
                    self._task_name,
                )
                return True

            if self._stop_requested.is_set():
                self._finish("a stop was requested")
                return False

            now = self._clock()
            must_stop, reason = evaluator.is_stop(now)
            if must_stop:
                self._finish(reason)
                return False

            can_start, reason, wait = evaluator.is_start(now)
            if not can_start:
                logger.warning(
                    "Background task '%s' is not ready to start because %s. Next attempt in %s.",
                    self._task_name,
                    reason,
                    _format_period(wait),
                )
                await self._sleep(wait.total_seconds())
                continue

            if not await self._run_once(task_settings, evaluator):
                return False

            logger.debug(
                "Next run of the background task '%s' in %s",
                self._task_name,
                _format_period(evaluator.work_time),
            )
            await self._sleep(evaluator.work_time.total_seconds())

    async def _run_once(self, task_settings: TaskSettings, evaluator: ScheduleEvaluator) -> bool:
        """Run the pipeline once. Returns False when the task must stop."""
        if self._run_count >= RUN_COUNT_MAX:
            self._run_count = 0
            logger.warning("Run counter of the background task '%s' was reset", self._task_name)
        self._run_count += 1

        if task_settings.chunk_size > self._chunk_size_limit:
            logger.warning(
                "chunk_size %d of the background task '%s' exceeds the limit and was set to %d",
                task_settings.chunk_size,
                self._task_name,
                self._chunk_size_limit,
            )
            task_settings = task_settings.model_copy(update={"chunk_size": self._chunk_size_limit})

        context = RunContext(self._task_name, self._run_count, task_settings)
        try:
            logger.debug("Background task '%s' run #%d has started", self._task_name, self._run_count)
            await self._orchestrator.run_once(context)
            logger.debug("Background task '%s' run #%d has finished", self._task_name, self._run_count)
        except ConfigurationError as exc:
            logger.error("Background task '%s' is misconfigured: %s", self._task_name, exc)
            self._finish(f"configuration error: {exc}")
            return False
        except PipelineRunError as exc:
            logger.error("%s", exc)
        except Exception:
            logger.exception(
                "Background task '%s' run #%d failed", self._task_name, self._run_count
            )
        finally:
            if task_settings.schedule.is_once:
                self._once_done = True
                evaluator.mark_once()
        return True

    # -- Internal --------------------------------------------------------------

    def _on_config_changed(self, config: BackgroundConfig) -> None:
        new_settings = config.get_task(self._task_name)
        if new_settings == self._settings:
            return
        self._settings = new_settings
        self._settings_changed = True
        logger.info("New settings received for the background task '%s'", self._task_name)

    def _finish(self, reason: str) -> None:
        self._stopped = True
        self._stop_reason = reason
        logger.warning("Background task '%s' has been stopped. Reason: %s.", self._task_name, reason)

    async def _wait_for_stop(self, seconds: float) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop_requested.wait(), timeout=max(seconds, 0))


def _format_period(period: timedelta) -> str:
    total = int(period.total_seconds())
    days, rest = divmod(total, 86_400)
    hours, rest = divmod(rest, 3_600)
    minutes, seconds = divmod(rest, 60)
    return f"{days:02d}.{hours:02d}:{minutes:02d}:{seconds:02d}"
