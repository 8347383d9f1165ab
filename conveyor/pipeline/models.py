"""Work-item, step and run data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from conveyor.pipeline.settings import TaskSettings


def utcnow() -> datetime:
    """Current time as an aware UTC datetime. The engine never reads local time."""
    return datetime.now(UTC)


class ProcessStatus(str, Enum):
    """Lifecycle of a work-item within one pipeline pass."""

    NEW = "new"
    READY = "ready"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


@dataclass(frozen=True)
class StepDescriptor:
    """A named pipeline stage as stored in the step catalog."""

    id: int
    name: str
    description: str = ""

    @property
    def label(self) -> str:
        """Human-readable label used in log messages."""
        return self.description or self.name


@dataclass
class WorkItem:
    """One unit of persisted data flowing through the pipeline.

    Attributes:
        id: Persistence identifier.
        payload: Opaque data owned by the step handlers.
        status: Current lifecycle status.
        error: Failure message when ``status`` is ``ERROR``.
        attempts: Number of failed attempts recorded by persistence.
        step_id: Catalog id of the step the item is queued for.
        updated_at: Last time persistence touched the item.
    """

    id: int
    payload: Any = None
    status: ProcessStatus = ProcessStatus.NEW
    error: str | None = None
    attempts: int = 0
    step_id: int | None = None
    updated_at: datetime | None = None

    @property
    def failed(self) -> bool:
        return self.status is ProcessStatus.ERROR

    def fail(self, message: str) -> None:
        """Mark the item as errored with *message*."""
        self.status = ProcessStatus.ERROR
        self.error = message


@dataclass
class StepResult:
    """Result of a step handler invocation.

    Every handler returns one of these. ``items`` of ``None`` means the
    handler worked on the batch it was given in place. Fetched items left
    out of a returned ``items`` list are committed as errors ("dropped by
    handler"). A non-empty ``error`` fails the whole batch.
    """

    items: list[WorkItem] | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, items: list[WorkItem] | None = None) -> StepResult:
        return cls(items=items)

    @classmethod
    def failed(cls, message: str) -> StepResult:
        return cls(error=message)


@dataclass(frozen=True)
class RunContext:
    """Everything one tick of a task needs. Created per run, discarded after."""

    task_name: str
    run_count: int
    settings: TaskSettings


@dataclass
class StepOutcome:
    """Per-step counters collected during a run."""

    step: str
    fetched: int = 0
    processed: int = 0
    failed: int = 0
    next_step: str | None = None
    committed: bool = False


@dataclass(frozen=True)
class StepFailure:
    """A step-level failure (fetch, handle, commit or worker phase) recorded during a run."""

    step_name: str
    phase: str
    message: str


@dataclass
class RunReport:
    """Summary of one orchestrator run."""

    task_name: str
    run_count: int
    outcomes: list[StepOutcome] = field(default_factory=list)
    failures: list[StepFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    def outcome(self, step_name: str) -> StepOutcome | None:
        """Look up the outcome of a step by name."""
        for outcome in self.outcomes:
            if outcome.step == step_name:
                return outcome
        return None
