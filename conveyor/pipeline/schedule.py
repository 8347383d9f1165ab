"""ScheduleEvaluator — decides whether a task may run right now."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, time, timedelta
from typing import TYPE_CHECKING

from apscheduler.triggers.cron import CronTrigger

if TYPE_CHECKING:
    from conveyor.pipeline.settings import Schedule

logger = logging.getLogger(__name__)

_FMT = "%Y-%m-%d %H:%M:%S"


class ScheduleEvaluator:
    """Pure decision logic over a ``Schedule`` and the current UTC time.

    Every check takes ``now`` explicitly so callers (and tests) own the
    clock. The only mutable state is the one-shot marker set by
    ``mark_once()``.

    Args:
        schedule: The task's schedule settings.
    """

    def __init__(self, schedule: Schedule) -> None:
        self._schedule = schedule
        self._once_done = False
        self._trigger = self._build_trigger() if schedule.work_days else None

    @property
    def schedule(self) -> Schedule:
        return self._schedule

    @property
    def work_time(self) -> timedelta:
        """Nominal period between two runs."""
        return self._schedule.work_time

    # -- Checks ----------------------------------------------------------------

    def is_ready(self, now: datetime) -> tuple[bool, str]:
        """Check the static gates: enabled flag and work days."""
        if not self._schedule.is_enabled:
            return False, "disabled by setting: 'is_enabled'"
        if not self._schedule.work_days:
            return False, "no work days in setting: 'work_days'"
        if now.weekday() not in self._schedule.work_days:
            return False, "the current day of week wasn't found in setting: 'work_days'"
        return True, ""

    def is_start(self, now: datetime) -> tuple[bool, str, timedelta]:
        """Check whether the start instant and today's window allow a run.

        Returns ``(can_start, reason, wait)``. When the task cannot start,
        ``wait`` is the time until the earliest qualifying instant. When it
        can, ``wait`` is the nominal work time.
        """
        s = self._schedule
        if self._trigger is None:
            return False, "no work days in setting: 'work_days'", s.work_time

        start_at = self._start_instant()
        if start_at is not None and now < start_at:
            wait = self._next_start(start_at) - now
            return False, f"the starting time '{start_at:{_FMT}}' has not come yet", wait

        if now.weekday() not in s.work_days:
            wait = self._next_start(now) - now
            return False, "the current day of week is not a work day", wait

        if s.time_start is not None and now.time() < s.time_start:
            wait = self._next_start(now) - now
            return False, f"the daily starting time '{s.time_start:%H:%M:%S}' has not come yet", wait

        if s.time_stop is not None and now.time() > s.time_stop:
            tomorrow = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=UTC)
            wait = self._next_start(tomorrow) - now
            return False, f"the daily stopping time '{s.time_stop:%H:%M:%S}' has passed", wait

        return True, "", s.work_time

    def is_stop(self, now: datetime) -> tuple[bool, str]:
        """Check whether the task is finished for good."""
        stop_at = self._stop_instant()
        if stop_at is not None and now > stop_at:
            return True, f"the stopping time '{stop_at:{_FMT}}' has come"
        if self._schedule.is_once and self._once_done:
            return True, "the task runs once by setting: 'is_once'"
        return False, ""

    def mark_once(self) -> None:
        """Record that a one-shot task has had its run. Idempotent."""
        self._once_done = True

    # -- Internal --------------------------------------------------------------

    def _build_trigger(self) -> CronTrigger:
        start = self._schedule.time_start or time.min
        days = ",".join(day.short_name for day in sorted(self._schedule.work_days))
        return CronTrigger(
            day_of_week=days,
            hour=start.hour,
            minute=start.minute,
            second=start.second,
            timezone="UTC",
        )

    def _start_instant(self) -> datetime | None:
        s = self._schedule
        if s.date_start is None:
            return None
        return datetime.combine(s.date_start, s.time_start or time.min, tzinfo=UTC)

    def _stop_instant(self) -> datetime | None:
        s = self._schedule
        if s.date_stop is None:
            return None
        return datetime.combine(s.date_stop, s.time_stop or time.max, tzinfo=UTC)

    def _qualifies(self, moment: datetime) -> bool:
        s = self._schedule
        if moment.weekday() not in s.work_days:
            return False
        if s.time_start is not None and moment.time() < s.time_start:
            return False
        return s.time_stop is None or moment.time() <= s.time_stop

    def _next_start(self, after: datetime) -> datetime:
        """Earliest instant at or after *after* on which the task may run."""
        if self._qualifies(after):
            return after
        fire_time = self._trigger.get_next_fire_time(None, after)
        if fire_time is None:
            logger.warning("No upcoming work day found after %s", after.isoformat())
            return after + self._schedule.work_time
        return fire_time
