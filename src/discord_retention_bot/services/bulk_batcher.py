"""Executes a deletion plan, bulk first, then one message at a time.

Messages young enough for bulk deletion go out in batches. Whatever is left
(too old for bulk, or part of a batch that failed) is deleted individually
in chronological order. After every deletion the channel cursor is moved to
the oldest message still pending so an interrupted step resumes where it
stopped.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List

from discord_retention_bot.domain.contracts import ChannelTransport
from discord_retention_bot.domain.messages import (
    BULK_DELETE_BATCH_SIZE,
    ChannelRetentionState,
    MessageRef,
    is_bulk_deletable,
)
from discord_retention_bot.services.deletion_planner import DeletionPlan

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    bulk_deleted: int = 0
    individually_deleted: int = 0
    bulk_failures: int = 0
    dry_run: bool = False

    @property
    def deleted(self) -> int:
        return self.bulk_deleted + self.individually_deleted


def chunk_messages(messages: List[MessageRef], size: int) -> List[List[MessageRef]]:
    if size <= 0:
        return [list(messages)]
    return [messages[i:i + size] for i in range(0, len(messages), size)]


class BulkBatcher:
    def __init__(self, transport: ChannelTransport, batch_size: int = BULK_DELETE_BATCH_SIZE) -> None:
        self._transport = transport
        self._batch_size = max(1, min(int(batch_size), BULK_DELETE_BATCH_SIZE))

    async def execute(self, state: ChannelRetentionState, plan: DeletionPlan, now: datetime) -> BatchOutcome:
        channel_id = state.channel_id
        dry_run = state.dry_run
        outcome = BatchOutcome(dry_run=dry_run)
        pending = sorted(plan.candidates, key=lambda m: m.id)

        if not dry_run:
            bulk_eligible = [m for m in pending if is_bulk_deletable(m, now)]
            for group in chunk_messages(bulk_eligible, self._batch_size):
                try:
                    await self._transport.delete_bulk(channel_id, group)
                except Exception as exc:
                    outcome.bulk_failures += 1
                    logger.warning(
                        "Bulk delete of %d messages in %s failed, falling back to single deletes: %s",
                        len(group), channel_id, exc,
                    )
                    continue
                group_ids = {m.id for m in group}
                pending = [m for m in pending if m.id not in group_ids]
                outcome.bulk_deleted += len(group)
                logger.info("Bulk deleted %d messages in %s.", len(group), channel_id)
                self._commit_progress(state, pending)

        while pending:
            message = pending[0]
            if dry_run:
                logger.info("[DRY RUN] Deleted message %s in %s.", message.id, channel_id)
            else:
                logger.debug("Deleting message %s in %s", message.id, channel_id)
                await self._transport.delete_one(channel_id, message)
                logger.info("Deleted message %s in %s.", message.id, channel_id)
            pending = pending[1:]
            outcome.individually_deleted += 1
            self._commit_progress(state, pending)

        if plan.next_remaining is not None:
            state.cursor = plan.next_remaining
            logger.debug("Next message to be deleted in channel %s will be %s", channel_id, plan.next_remaining.id)
        else:
            state.cursor = None
            logger.debug("End of channel %s reached. No more messages to delete.", channel_id)
        return outcome

    @staticmethod
    def _commit_progress(state: ChannelRetentionState, pending: List[MessageRef]) -> None:
        # Once nothing is pending, the plan's lookahead message takes over.
        if pending:
            state.cursor = pending[0]
