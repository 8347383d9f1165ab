"""Settings providers — current task configuration plus change notifications."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from conveyor.config import settings
from conveyor.pipeline.errors import ConfigurationError
from conveyor.pipeline.settings import BackgroundConfig, load_config

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

ConfigListener = Callable[[BackgroundConfig], None]


class StaticSettingsProvider:
    """In-memory provider. ``update()`` swaps the snapshot and notifies listeners."""

    def __init__(self, config: BackgroundConfig | None = None) -> None:
        self._config = config or BackgroundConfig()
        self._listeners: list[ConfigListener] = []

    @property
    def current(self) -> BackgroundConfig:
        return self._config

    def subscribe(self, callback: ConfigListener) -> Callable[[], None]:
        """Register *callback* for changes. Returns a function that unsubscribes it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def update(self, config: BackgroundConfig) -> None:
        """Replace the whole configuration and notify every listener."""
        self._config = config
        for listener in list(self._listeners):
            try:
                listener(config)
            except Exception:
                logger.exception("Settings listener %r failed", listener)


class FileSettingsProvider(StaticSettingsProvider):
    """Provider backed by a YAML file, reloaded when its mtime changes.

    The initial load raises ``ConfigurationError`` if the file is missing or
    invalid. Later reloads that fail are logged and the previous snapshot
    is kept.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        super().__init__(load_config(path))
        self._mtime = self._stat()

    @property
    def path(self) -> Path:
        return self._path

    def reload(self) -> bool:
        """Re-read the file if it changed. Returns True when listeners were notified."""
        mtime = self._stat()
        if mtime == self._mtime:
            return False
        self._mtime = mtime

        try:
            config = load_config(self._path)
        except ConfigurationError:
            logger.exception("Keeping the previous task configuration")
            return False

        if config == self._config:
            return False
        logger.info("Task configuration %s changed", self._path)
        self.update(config)
        return True

    async def watch(self, interval: float | None = None) -> None:
        """Poll the file forever. Run as a background task."""
        period = interval or settings.config_poll_interval
        logger.info("Watching %s for changes (interval=%.1fs)", self._path, period)
        while True:
            await asyncio.sleep(period)
            self.reload()

    def _stat(self) -> int | None:
        try:
            return self._path.stat().st_mtime_ns
        except FileNotFoundError:
            return None
