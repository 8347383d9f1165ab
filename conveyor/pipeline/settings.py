"""Task settings models and the YAML task configuration loader.

Example ``tasks.yaml``::

    background:
      tasks:
        ingest:
          chunk_size: 100
          is_parallel: false
          steps: [Extract, Transform, Load]
          schedule:
            is_enabled: true
            work_days: "mon,tue,wed,thu,fri"
            work_time: "00:10:00"
            time_start: "06:00:00"
          retry_policy:
            every_time: 5
            max_attempts: 10
"""

from __future__ import annotations

import logging
import re
from datetime import date, time, timedelta
from enum import IntEnum
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from conveyor.pipeline.errors import ConfigurationError

logger = logging.getLogger(__name__)

_WORK_TIME_RE = re.compile(r"^(\d+):(\d{2}):(\d{2})$")


class Weekday(IntEnum):
    """Day of week, numbered like ``datetime.weekday()``."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def short_name(self) -> str:
        return self.name[:3].lower()


_DAY_NAMES = {day.short_name: day for day in Weekday}


def parse_weekday(token: str | int) -> Weekday:
    """Parse one work-day token.

    Numbers follow the Sunday-first convention where both ``0`` and ``7``
    mean Sunday, so ``"0,1,2,3,4,5,6"`` and ``"1,2,3,4,5,6,7"`` both cover the
    whole week. Three-letter names (``mon`` .. ``sun``) are case-insensitive.
    """
    if isinstance(token, Weekday):
        return token
    text = str(token).strip().lower()
    if text in _DAY_NAMES:
        return _DAY_NAMES[text]
    if text.isdigit():
        number = int(text)
        if number in (0, 7):
            return Weekday.SUNDAY
        if 1 <= number <= 6:
            return Weekday(number - 1)
    msg = f"Unknown work day: '{token}'"
    raise ValueError(msg)


def parse_work_days(value: Any) -> frozenset[Weekday]:
    """Parse a comma separated string (or an iterable of tokens) into weekdays."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        tokens: list[Any] = [t for t in value.split(",") if t.strip()]
    else:
        tokens = list(value)
    return frozenset(parse_weekday(t) for t in tokens)


class RetryPolicy(BaseModel):
    """How often failed items are swept back in, and for how long."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    every_time: int = Field(default=5, ge=1)
    max_attempts: int = Field(default=10, ge=1)


class Schedule(BaseModel):
    """When a task is allowed to run.

    Attributes:
        is_enabled: Master switch. A disabled task never runs.
        is_once: Run a single time, then stop.
        work_days: Days of week the task may run on. Empty means never.
        work_time: Tick interval between runs.
        date_start: First day the task may run.
        time_start: Daily time of day the task may start from.
        date_stop: Last day the task may run.
        time_stop: Daily time of day after which the task pauses until the
            next working day. Combined with ``date_stop`` it is the final
            stop instant.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    is_enabled: bool = False
    is_once: bool = False
    work_days: frozenset[Weekday] = frozenset(Weekday)
    work_time: timedelta = timedelta(minutes=10)
    date_start: date | None = None
    time_start: time | None = None
    date_stop: date | None = None
    time_stop: time | None = None

    @field_validator("work_days", mode="before")
    @classmethod
    def _parse_work_days(cls, value: Any) -> frozenset[Weekday]:
        return parse_work_days(value)

    @field_validator("work_time", mode="before")
    @classmethod
    def _parse_work_time(cls, value: Any) -> Any:
        if isinstance(value, str):
            match = _WORK_TIME_RE.match(value.strip())
            if match:
                hours, minutes, seconds = (int(part) for part in match.groups())
                return timedelta(hours=hours, minutes=minutes, seconds=seconds)
        return value

    @field_validator("work_time")
    @classmethod
    def _positive_work_time(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            msg = "work_time must be positive"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def _window_order(self) -> Schedule:
        if (
            self.time_start is not None
            and self.time_stop is not None
            and self.time_stop <= self.time_start
        ):
            msg = "time_stop must be later than time_start"
            raise ValueError(msg)
        return self


class TaskSettings(BaseModel):
    """Immutable per-task pipeline configuration.

    A pulling task (``is_pulling``) does not read the queue. Each step's pull
    handler produces new items, which are queued at that step for the
    tasks that process it. Retry sweeps and ``is_infinite`` do not apply to
    pulling tasks.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    chunk_size: int = Field(default=100, ge=1)
    is_parallel: bool = False
    is_infinite: bool = False
    is_pulling: bool = False
    steps: list[str] = Field(min_length=1)
    schedule: Schedule = Field(default_factory=Schedule)
    retry_policy: RetryPolicy | None = None

    @field_validator("steps", mode="before")
    @classmethod
    def _split_steps(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [name.strip() for name in value.split(",") if name.strip()]
        return value


class BackgroundConfig(BaseModel):
    """The ``background`` section: settings for every named task."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tasks: dict[str, TaskSettings] = Field(default_factory=dict)

    def get_task(self, name: str) -> TaskSettings | None:
        """Look up a task's settings by name."""
        return self.tasks.get(name)


def parse_config(data: dict[str, Any] | None) -> BackgroundConfig:
    """Validate a decoded configuration document."""
    section = (data or {}).get("background") or {}
    try:
        return BackgroundConfig.model_validate(section)
    except ValidationError as exc:
        msg = f"Invalid task configuration: {exc}"
        raise ConfigurationError(msg) from exc


def load_config(path: Path) -> BackgroundConfig:
    """Read and validate the YAML task configuration at *path*."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Cannot read task configuration {path}: {exc}"
        raise ConfigurationError(msg) from exc
    if data is not None and not isinstance(data, dict):
        msg = f"Task configuration {path} must be a mapping"
        raise ConfigurationError(msg)
    config = parse_config(data)
    logger.info("Loaded %d task(s) from %s", len(config.tasks), path)
    return config
