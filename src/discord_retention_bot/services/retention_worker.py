"""Per-channel retention loop.

A RetentionWorker runs as an asyncio background task and, once per cycle,
performs a single delete step for its channel:

  - re-establish the cursor if it is unknown or its message is gone,
  - stop early when the cursor message is still too new,
  - plan the eligible run of messages and delete it.

Step failures are turned into a ``StepResult`` and logged; they never end
the loop. Only ``stop()`` does, and only between steps.

Usage::

    worker = RetentionWorker(transport, state, get_step_delay=lambda: 300)
    worker.start()
    # ... later ...
    worker.stop()
    await worker.wait_stopped()
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from discord_retention_bot.domain.contracts import ChannelTransport, ChannelUnavailableError
from discord_retention_bot.domain.messages import ChannelRetentionState, is_expired
from discord_retention_bot.observability.structured_log import log_json
from discord_retention_bot.services.bulk_batcher import BulkBatcher
from discord_retention_bot.services.deletion_planner import DeletionPlanner

logger = logging.getLogger(__name__)

STEP_ERROR_CHANNEL_UNAVAILABLE = "channel_unavailable"
STEP_ERROR_TRANSPORT = "transport"

StepDelayFn = Callable[[], float]
ClockFn = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StepResult:
    channel_id: int
    ok: bool
    deleted: int = 0
    bulk_deleted: int = 0
    candidates: int = 0
    dry_run: bool = False
    error_kind: str = ""
    error: str = ""
    finished_at: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "deleted": self.deleted,
            "bulk_deleted": self.bulk_deleted,
            "candidates": self.candidates,
            "dry_run": self.dry_run,
            "error_kind": self.error_kind,
            "error": self.error,
            "finished_at": self.finished_at.isoformat(),
        }


class RetentionWorker:
    def __init__(
        self,
        transport: ChannelTransport,
        state: ChannelRetentionState,
        get_step_delay: StepDelayFn,
        planner: Optional[DeletionPlanner] = None,
        batcher: Optional[BulkBatcher] = None,
        clock: ClockFn = _utc_now,
    ) -> None:
        self._transport = transport
        self._state = state
        self._get_step_delay = get_step_delay
        self._planner = planner or DeletionPlanner(transport)
        self._batcher = batcher or BulkBatcher(transport)
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()
        self._predecessor: Optional[RetentionWorker] = None

        self.last_result: Optional[StepResult] = None
        self.steps = 0
        self.failed_steps = 0
        self.deleted_total = 0

    @property
    def state(self) -> ChannelRetentionState:
        return self._state

    @property
    def channel_id(self) -> int:
        return self._state.channel_id

    @property
    def running(self) -> bool:
        return self._state.running

    @property
    def active(self) -> bool:
        """True while the loop task exists and has not finished."""
        return self._task is not None and not self._task.done()

    def start(self, after: Optional[RetentionWorker] = None) -> None:
        """Start the loop. With ``after``, the first step waits for that worker to finish."""
        if self._state.running:
            return
        self._state.running = True
        self._wakeup.clear()
        if self._task is not None and not self._task.done():
            # Stopped but still finishing its last step: keep the same loop.
            return
        self._predecessor = after
        self._task = asyncio.create_task(self._loop(), name=f"retention-{self.channel_id}")

    def stop(self) -> None:
        self._state.running = False
        self._wakeup.set()

    async def wait_stopped(self) -> None:
        if self._task is None:
            return
        await self._task
        self._task = None

    async def _loop(self) -> None:
        predecessor, self._predecessor = self._predecessor, None
        if predecessor is not None:
            logger.debug("Waiting for the previous worker of %s to stop.", self.channel_id)
            await predecessor.wait_stopped()
        while self._state.running:
            await self.run_step()
            if not self._state.running:
                break
            await self._sleep(self._step_delay())

    def _step_delay(self) -> float:
        try:
            return max(0.0, float(self._get_step_delay()))
        except Exception:
            logger.exception("Could not read step delay for %s, using 60s.", self.channel_id)
            return 60.0

    async def _sleep(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def run_step(self) -> StepResult:
        """Run one delete step and record its outcome. Never raises."""
        t0 = time.monotonic()
        try:
            result = await self._perform_step()
        except ChannelUnavailableError as exc:
            logger.warning("%s", exc)
            result = StepResult(
                channel_id=self.channel_id,
                ok=False,
                error_kind=STEP_ERROR_CHANNEL_UNAVAILABLE,
                error=str(exc),
            )
        except Exception as exc:
            logger.exception("Delete step failed for channel %s", self.channel_id)
            result = StepResult(
                channel_id=self.channel_id,
                ok=False,
                error_kind=STEP_ERROR_TRANSPORT,
                error=f"{type(exc).__name__}: {exc}",
            )
        self._record(result)
        log_json(
            logger,
            "retention.step",
            channel_id=self.channel_id,
            ok=result.ok,
            deleted=result.deleted,
            candidates=result.candidates,
            dry_run=result.dry_run,
            error_kind=result.error_kind,
            cursor_id=self._state.cursor.id if self._state.cursor else None,
            elapsed_ms=round((time.monotonic() - t0) * 1000, 1),
        )
        return result

    def _record(self, result: StepResult) -> None:
        self.last_result = result
        self.steps += 1
        if result.ok:
            if not result.dry_run:
                self.deleted_total += result.deleted
        else:
            self.failed_steps += 1

    async def _perform_step(self) -> StepResult:
        state = self._state
        channel_id = state.channel_id
        logger.info("Checking for messages to delete in %s", channel_id)

        cursor = state.cursor
        if cursor is None or await self._transport.get_message(channel_id, cursor.id) is None:
            logger.debug("Getting oldest message for %s.", channel_id)
            cursor = await self._planner.find_oldest(channel_id)
            if cursor is None:
                logger.info("Channel %s has no messages.", channel_id)
                state.cursor = None
                return StepResult(channel_id=channel_id, ok=True)
            logger.debug("Found first message %s in %s.", cursor.id, channel_id)
            state.cursor = cursor

        now = self._clock()
        max_age = state.max_age
        if not is_expired(cursor, now, max_age):
            logger.info("Oldest message in %s is too recent. No messages deleted.", channel_id)
            return StepResult(channel_id=channel_id, ok=True, dry_run=state.dry_run)

        plan = await self._planner.plan(channel_id, cursor, max_age, now)
        outcome = await self._batcher.execute(state, plan, now)
        return StepResult(
            channel_id=channel_id,
            ok=True,
            deleted=outcome.deleted,
            bulk_deleted=outcome.bulk_deleted,
            candidates=len(plan.candidates),
            dry_run=outcome.dry_run,
        )

    def snapshot(self) -> Dict[str, Any]:
        data = self._state.to_dict()
        data.update(
            {
                "steps": self.steps,
                "failed_steps": self.failed_steps,
                "deleted_total": self.deleted_total,
                "last_result": self.last_result.to_dict() if self.last_result else None,
            }
        )
        return data
