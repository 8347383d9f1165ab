"""Conveyor entry point.

Usage::

    conveyor --handlers myapp.steps:handlers --config tasks.yaml

``--handlers`` names a module attribute holding a ``HandlerRegistry`` with
the step handlers of every configured task.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import importlib
import logging
from pathlib import Path

from conveyor.config import settings
from conveyor.pipeline.host import PipelineHost
from conveyor.pipeline.orchestrator import PipelineOrchestrator
from conveyor.pipeline.provider import FileSettingsProvider
from conveyor.pipeline.registry import HandlerRegistry
from conveyor.store import WorkItemStore

logger = logging.getLogger(__name__)


def load_handlers(target: str) -> HandlerRegistry:
    """Import ``module:attribute`` and return the HandlerRegistry it names."""
    module_name, _, attribute = target.partition(":")
    module = importlib.import_module(module_name)
    registry = getattr(module, attribute or "handlers", None)
    if not isinstance(registry, HandlerRegistry):
        msg = f"'{target}' is not a HandlerRegistry"
        raise TypeError(msg)
    return registry


def build_host(
    provider: FileSettingsProvider,
    store: WorkItemStore,
    handlers: HandlerRegistry,
) -> PipelineHost:
    """Wire one orchestrator and runner per configured task."""
    host = PipelineHost(provider)
    orchestrator = PipelineOrchestrator(store, handlers)
    for task_name in provider.current.tasks:
        host.add_task(task_name, orchestrator)
    logger.info("Registered tasks: %s", host.task_names)
    return host


async def serve(config_path: Path, handlers: HandlerRegistry, database_path: Path) -> None:
    """Run every configured task until all of them stop or the process is interrupted."""
    provider = FileSettingsProvider(config_path)
    store = WorkItemStore(db_path=database_path)
    host = build_host(provider, store, handlers)

    watcher = asyncio.create_task(provider.watch())
    await host.start()
    try:
        await host.wait()
    finally:
        await host.stop()
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher


def main() -> None:
    """Parse arguments, configure logging and serve."""
    parser = argparse.ArgumentParser(description="Run recurring pipeline tasks")
    parser.add_argument(
        "--handlers",
        required=True,
        help="Step handler registry as 'module:attribute'",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=settings.tasks_config_path,
        help=f"Task configuration YAML (default: {settings.tasks_config_path})",
    )
    parser.add_argument(
        "--database",
        type=Path,
        default=settings.database_path,
        help=f"SQLite database path (default: {settings.database_path})",
    )
    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, settings.log_level),
    )

    handlers = load_handlers(args.handlers)
    logger.info("Starting conveyor with config %s", args.config)
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(serve(args.config, handlers, args.database))


if __name__ == "__main__":
    main()
