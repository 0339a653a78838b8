"""Keeps the set of running RetentionWorkers in line with configuration."""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from discord_retention_bot.config import ChannelConfigurationEntry, RetentionConfig
from discord_retention_bot.domain.contracts import ChannelTransport
from discord_retention_bot.domain.messages import ChannelRetentionState
from discord_retention_bot.services.retention_worker import RetentionWorker, StepDelayFn

logger = logging.getLogger(__name__)

WorkerFactory = Callable[[ChannelRetentionState], RetentionWorker]


class WorkerSupervisor:
    """Owns one RetentionWorker per configured channel.

    ``reconcile`` is registered as a configuration subscriber. New channels
    get a fresh state and a started worker, removed channels are stopped and
    dropped, and channels present in both keep their worker and cursor while
    ``max_age``/``dry_run`` are updated in place.
    """

    def __init__(
        self,
        transport: ChannelTransport,
        get_step_delay: StepDelayFn,
        worker_factory: Optional[WorkerFactory] = None,
    ) -> None:
        self._transport = transport
        self._get_step_delay = get_step_delay
        self._worker_factory = worker_factory or self._default_worker
        self._workers: Dict[int, RetentionWorker] = {}
        self._stopping: List[RetentionWorker] = []

    def _default_worker(self, state: ChannelRetentionState) -> RetentionWorker:
        return RetentionWorker(self._transport, state, get_step_delay=self._get_step_delay)

    @property
    def workers(self) -> Dict[int, RetentionWorker]:
        return dict(self._workers)

    def reconcile(self, config: RetentionConfig) -> None:
        configured = config.channels_by_id()

        for channel_id, entry in configured.items():
            worker = self._workers.get(channel_id)
            if worker is not None:
                logger.debug("Updating channel configuration for %s.", channel_id)
                self._apply_entry(worker.state, entry)

        for channel_id, entry in configured.items():
            if channel_id in self._workers:
                continue
            logger.debug("Starting channel configuration for %s.", channel_id)
            state = ChannelRetentionState.from_seconds(
                channel_id,
                entry.message_max_age_seconds,
                dry_run=entry.effective_dry_run,
            )
            worker = self._worker_factory(state)
            self._workers[channel_id] = worker
            worker.start(after=self._stopping_worker(channel_id))

        self._stopping = [w for w in self._stopping if w.active]
        for channel_id in [cid for cid in self._workers if cid not in configured]:
            logger.debug("Stopping channel configuration for %s.", channel_id)
            worker = self._workers.pop(channel_id)
            worker.stop()
            self._stopping.append(worker)

    def _stopping_worker(self, channel_id: int) -> Optional[RetentionWorker]:
        # A removed channel can still be mid-step; its replacement must not overlap it.
        for worker in reversed(self._stopping):
            if worker.channel_id == channel_id and worker.active:
                return worker
        return None

    @staticmethod
    def _apply_entry(state: ChannelRetentionState, entry: ChannelConfigurationEntry) -> None:
        state.max_age = timedelta(seconds=float(entry.message_max_age_seconds))
        state.dry_run = entry.effective_dry_run

    async def shutdown(self) -> None:
        workers = list(self._workers.values()) + self._stopping
        self._workers.clear()
        self._stopping = []
        for worker in workers:
            worker.stop()
        if workers:
            await asyncio.gather(*(worker.wait_stopped() for worker in workers))
        logger.info("Stopped %d retention workers.", len(workers))

    def snapshot(self) -> List[Dict[str, Any]]:
        return [self._workers[cid].snapshot() for cid in sorted(self._workers)]
