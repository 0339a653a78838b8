"""Live configuration with file-change reload.

ConfigStore keeps the last successfully read configuration and notifies
subscribers each time a new one is loaded. A background task polls the file
modification time; the file may be mid-write when the change is noticed, so
reads are retried with a bounded exponential backoff. When every attempt
fails the previous configuration stays active.
"""
from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import Callable, List, Optional

from discord_retention_bot.config import (
    ConfigurationError,
    RetentionConfig,
    read_config_file,
    resolve_api_key,
)

logger = logging.getLogger(__name__)

ConfigSubscriber = Callable[[RetentionConfig], None]


class ConfigStore:
    def __init__(
        self,
        path: Path,
        read_attempts: int = 10,
        base_backoff_sec: float = 0.1,
        max_backoff_sec: float = 2.0,
    ) -> None:
        self._path = path
        self._read_attempts = max(1, int(read_attempts))
        self._base_backoff_sec = max(0.0, float(base_backoff_sec))
        self._max_backoff_sec = max(self._base_backoff_sec, float(max_backoff_sec))
        self._current: Optional[RetentionConfig] = None
        self._subscribers: List[ConfigSubscriber] = []
        self._last_mtime_ns: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def current(self) -> RetentionConfig:
        if self._current is None:
            raise ConfigurationError("Configuration has not been loaded.")
        return self._current

    def delete_action_delay_seconds(self) -> float:
        return float(self.current.delete_action_delay_seconds)

    def subscribe(self, subscriber: ConfigSubscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: ConfigSubscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def load(self) -> RetentionConfig:
        """Initial load. Missing file or exhausted retries are fatal here."""
        if not self._path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self._path}")
        if not await self.reload():
            raise ConfigurationError(f"Failed to be able to read {self._path}.")
        return self.current

    async def reload(self) -> bool:
        previous = self._current
        if previous is not None:
            logger.info("Reloading configuration.")
        self._last_mtime_ns = self._mtime_ns()
        config = await self._read_with_retries()
        if config is None:
            return False
        self._current = config
        if previous is not None and resolve_api_key(previous, self._path) != resolve_api_key(config, self._path):
            logger.warning("Discord API key refreshing is not supported. A restart of the application is required.")
        self._notify(config)
        return True

    async def _read_with_retries(self) -> Optional[RetentionConfig]:
        for idx in range(self._read_attempts):
            try:
                return read_config_file(self._path)
            except (OSError, ConfigurationError) as exc:
                if idx + 1 >= self._read_attempts:
                    logger.error(
                        "Failed to be able to read %s. The configuration was not reloaded. %s",
                        self._path, exc,
                    )
                    return None
                await asyncio.sleep(self._backoff(idx))
        return None

    def _backoff(self, attempt_idx: int) -> float:
        delay = min(self._max_backoff_sec, self._base_backoff_sec * (2 ** attempt_idx))
        return delay * (0.8 + random.random() * 0.4)

    def _notify(self, config: RetentionConfig) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(config)
            except Exception:
                logger.exception("Configuration subscriber failed")

    def _mtime_ns(self) -> Optional[int]:
        try:
            return self._path.stat().st_mtime_ns
        except OSError:
            return None

    async def check_for_changes(self) -> bool:
        """Reload when the file changed since the last read. Returns True on reload."""
        mtime = self._mtime_ns()
        if mtime is None or mtime == self._last_mtime_ns:
            return False
        return await self.reload()

    # ------------------------------------------------------------------
    # Background watch
    # ------------------------------------------------------------------

    def start_watching(self, poll_interval_sec: float = 2.0) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._watch(max(0.05, poll_interval_sec)), name="config-watcher")
        logger.info("config: watching %s (poll=%.1fs)", self._path, poll_interval_sec)

    async def stop_watching(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _watch(self, poll_interval_sec: float) -> None:
        while self._running:
            try:
                await self.check_for_changes()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("config: watch error")
            try:
                await asyncio.sleep(poll_interval_sec)
            except asyncio.CancelledError:
                break
