"""Shared test fixtures."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import pytest

from conveyor.pipeline.models import ProcessStatus, StepDescriptor, WorkItem
from conveyor.pipeline.settings import TaskSettings

if TYPE_CHECKING:
    from pathlib import Path

# Monday
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


@dataclass
class Commit:
    """A recorded call to ``FakeRepository.commit``."""

    step: str
    next_step: str | None
    items: list[tuple[int, ProcessStatus, str | None]]

    def status_of(self, item_id: int) -> ProcessStatus:
        return next(status for iid, status, _ in self.items if iid == item_id)

    def error_of(self, item_id: int) -> str | None:
        return next(error for iid, _, error in self.items if iid == item_id)


class FakeRepository:
    """In-memory WorkItemRepository that records every call."""

    def __init__(self, *step_names: str) -> None:
        self.catalog = {
            name: StepDescriptor(id=index + 1, name=name) for index, name in enumerate(step_names)
        }
        self.processable: dict[str, list[WorkItem]] = {}
        self.retryable: dict[str, list[WorkItem]] = {}
        self.fetch_calls: list[tuple[Any, ...]] = []
        self.commits: list[Commit] = []
        self.fail_fetch: set[str] = set()
        self.fail_commit: set[str] = set()
        self.added: list[tuple[str, list[Any]]] = []
        self.catalog_calls = 0

    def step(self, name: str) -> StepDescriptor:
        return self.catalog[name]

    def queue(self, step_name: str, *item_ids: int, retry: bool = False) -> list[WorkItem]:
        """Put new items at *step_name*; ``retry=True`` queues errored items instead."""
        step = self.catalog[step_name]
        status = ProcessStatus.ERROR if retry else ProcessStatus.NEW
        items = [
            WorkItem(
                id=iid,
                payload={"n": iid},
                status=status,
                error="previous failure" if retry else None,
                step_id=step.id,
            )
            for iid in item_ids
        ]
        target = self.retryable if retry else self.processable
        target.setdefault(step_name, []).extend(items)
        return items

    def commit_for(self, step_name: str) -> Commit | None:
        return next((c for c in self.commits if c.step == step_name), None)

    def _name_of(self, step_id: int | None) -> str:
        return next(name for name, s in self.catalog.items() if s.id == step_id)

    async def get_step_catalog(self) -> dict[str, StepDescriptor]:
        self.catalog_calls += 1
        return dict(self.catalog)

    async def fetch_processable(self, step: StepDescriptor, limit: int) -> list[WorkItem]:
        self.fetch_calls.append(("processable", step.name, limit))
        if step.name in self.fail_fetch:
            msg = "database is locked"
            raise RuntimeError(msg)
        waiting = self.processable.get(step.name, [])
        batch, self.processable[step.name] = waiting[:limit], waiting[limit:]
        return batch

    async def fetch_retryable(
        self,
        step: StepDescriptor,
        limit: int,
        since: datetime,
        max_attempts: int,
    ) -> list[WorkItem]:
        self.fetch_calls.append(("retryable", step.name, limit, since, max_attempts))
        return self.retryable.pop(step.name, [])[:limit]

    async def commit(self, next_step: StepDescriptor | None, items: list[WorkItem]) -> None:
        step_name = self._name_of(items[0].step_id)
        if step_name in self.fail_commit:
            msg = "disk I/O error"
            raise RuntimeError(msg)
        self.commits.append(
            Commit(
                step=step_name,
                next_step=next_step.name if next_step is not None else None,
                items=[(item.id, item.status, item.error) for item in items],
            )
        )

    async def add_items(self, step: StepDescriptor, payloads: list[Any]) -> list[WorkItem]:
        if step.name in self.fail_commit:
            msg = "disk I/O error"
            raise RuntimeError(msg)
        payloads = list(payloads)
        self.added.append((step.name, payloads))
        return [
            WorkItem(id=index + 1, payload=payload, step_id=step.id)
            for index, payload in enumerate(payloads)
        ]


def make_settings(steps: list[str] | str = "A", **overrides: Any) -> TaskSettings:
    """Build TaskSettings with an enabled every-day schedule by default."""
    schedule = {"is_enabled": True, **overrides.pop("schedule", {})}
    return TaskSettings.model_validate({"steps": steps, "schedule": schedule, **overrides})


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository("A", "B", "C")


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"
