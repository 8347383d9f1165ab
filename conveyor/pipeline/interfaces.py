"""Collaborator protocols consumed by the pipeline core."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from datetime import datetime

    from conveyor.pipeline.models import StepDescriptor, WorkItem
    from conveyor.pipeline.settings import BackgroundConfig


@runtime_checkable
class StepCatalog(Protocol):
    """Source of the step catalog used to resolve configured step names."""

    async def get_step_catalog(self) -> dict[str, StepDescriptor]:
        """Return every known step keyed by its (case-sensitive) name."""
        ...


@runtime_checkable
class WorkItemReader(Protocol):
    """Read side of the work queue."""

    async def fetch_processable(self, step: StepDescriptor, limit: int) -> list[WorkItem]:
        """Return up to *limit* items waiting at *step*."""
        ...

    async def fetch_retryable(
        self,
        step: StepDescriptor,
        limit: int,
        since: datetime,
        max_attempts: int,
    ) -> list[WorkItem]:
        """Return up to *limit* errored items at *step* last touched before *since*
        with fewer than *max_attempts* attempts."""
        ...


@runtime_checkable
class WorkItemWriter(Protocol):
    """Write side of the work queue."""

    async def commit(self, next_step: StepDescriptor | None, items: list[WorkItem]) -> None:
        """Persist a whole step's batch atomically.

        READY items move to *next_step*; everything else keeps its step.
        """
        ...

    async def add_items(self, step: StepDescriptor, payloads: Iterable[Any]) -> list[WorkItem]:
        """Queue new items at *step* in one transaction and return them with their ids."""
        ...


@runtime_checkable
class WorkItemRepository(StepCatalog, WorkItemReader, WorkItemWriter, Protocol):
    """The full data-access capability the orchestrator is composed over."""


@runtime_checkable
class SettingsProvider(Protocol):
    """Current task configuration plus change notifications."""

    @property
    def current(self) -> BackgroundConfig:
        """The latest configuration snapshot."""
        ...

    def subscribe(self, callback: Callable[[BackgroundConfig], None]) -> Callable[[], None]:
        """Register *callback* for configuration changes. Returns an unsubscribe function."""
        ...
