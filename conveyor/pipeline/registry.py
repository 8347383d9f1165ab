"""Step handler registries — process-wide catalog and per-run lookup."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from conveyor.pipeline.errors import StepNotImplementedError
from conveyor.pipeline.models import StepDescriptor, StepResult, WorkItem

logger = logging.getLogger(__name__)

# Handler signature: async (step, items) -> StepResult
StepHandler = Callable[[StepDescriptor, list[WorkItem]], Awaitable[StepResult]]

# Pull handler signature: async (step, limit) -> new payloads to queue at the step
PullHandler = Callable[[StepDescriptor, int], Awaitable[list[Any]]]


class HandlerRegistry:
    """Catalog of step handlers keyed by step name.

    Created once by the composition root and handed to every orchestrator.
    A step can have a processing handler, a pull handler, or both; pulling
    tasks resolve the latter.

    Usage::

        handlers = HandlerRegistry()

        @handlers.handler("Extract")
        async def extract(step: StepDescriptor, items: list[WorkItem]) -> StepResult:
            ...
            return StepResult.ok(items)

        @handlers.puller("Extract")
        async def poll_feed(step: StepDescriptor, limit: int) -> list[Any]:
            return await feed.read(limit)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, StepHandler] = {}
        self._pullers: dict[str, PullHandler] = {}

    def handler(self, step_name: str) -> Callable[[StepHandler], StepHandler]:
        """Decorator to register an async function as the handler of *step_name*."""

        def decorator(fn: StepHandler) -> StepHandler:
            self.register(step_name, fn)
            return fn

        return decorator

    def puller(self, step_name: str) -> Callable[[PullHandler], PullHandler]:
        """Decorator to register an async function as the pull handler of *step_name*."""

        def decorator(fn: PullHandler) -> PullHandler:
            self.register_puller(step_name, fn)
            return fn

        return decorator

    def register(self, step_name: str, fn: StepHandler) -> None:
        """Register *fn* as the handler of *step_name*, replacing any previous one."""
        _require_async(step_name, fn)
        self._handlers[step_name] = fn
        logger.info("Registered step handler: %s", step_name)

    def register_puller(self, step_name: str, fn: PullHandler) -> None:
        """Register *fn* as the pull handler of *step_name*, replacing any previous one."""
        _require_async(step_name, fn)
        self._pullers[step_name] = fn
        logger.info("Registered pull handler: %s", step_name)

    def get(self, step_name: str) -> StepHandler | None:
        """Look up a handler by step name."""
        return self._handlers.get(step_name)

    def get_puller(self, step_name: str) -> PullHandler | None:
        """Look up a pull handler by step name."""
        return self._pullers.get(step_name)

    @property
    def step_names(self) -> list[str]:
        """All step names with a processing handler."""
        return list(self._handlers)

    def bind(self, steps: Iterable[StepDescriptor], *, pulling: bool = False) -> StepHandlerRegistry:
        """Build the per-run lookup for the resolved *steps*.

        With ``pulling=True`` the lookup holds pull handlers instead.
        """
        source: dict[str, Any] = self._pullers if pulling else self._handlers
        handlers: dict[int, StepHandler | PullHandler] = {}
        for step in steps:
            fn = source.get(step.name)
            if fn is not None:
                handlers[step.id] = fn
        return StepHandlerRegistry(handlers)


def _require_async(step_name: str, fn: Callable[..., Any]) -> None:
    if not inspect.iscoroutinefunction(fn):
        msg = f"Step handler '{step_name}' must be an async function"
        raise TypeError(msg)


class StepHandlerRegistry:
    """Per-run map from step id to handler. Stable for the run's lifetime."""

    def __init__(self, handlers: dict[int, StepHandler | PullHandler]) -> None:
        self._handlers = handlers

    def resolve(self, step: StepDescriptor) -> StepHandler | PullHandler:
        """Return the handler for *step* or raise ``StepNotImplementedError``."""
        try:
            return self._handlers[step.id]
        except KeyError:
            raise StepNotImplementedError(step.name) from None

    def __contains__(self, step: StepDescriptor) -> bool:
        return step.id in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
