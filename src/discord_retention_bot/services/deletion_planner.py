"""Selection of the messages a retention step is going to delete.

Starting from the cursor, pages forward through the channel collecting every
message old enough to be removed. Because pages are chronological and age
only decreases going forward, the first page without a newly eligible
message ends the scan.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Set

from discord_retention_bot.domain.contracts import ChannelTransport
from discord_retention_bot.domain.messages import MessageRef, is_expired

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
LOOKAHEAD_SIZE = 2


@dataclass(frozen=True)
class DeletionPlan:
    candidates: List[MessageRef]
    next_remaining: Optional[MessageRef]


class DeletionPlanner:
    def __init__(
        self,
        transport: ChannelTransport,
        page_size: int = PAGE_SIZE,
        lookahead_size: int = LOOKAHEAD_SIZE,
    ) -> None:
        self._transport = transport
        self._page_size = max(1, int(page_size))
        self._lookahead_size = max(1, int(lookahead_size))

    async def plan(
        self,
        channel_id: int,
        cursor: MessageRef,
        max_age: timedelta,
        now: datetime,
    ) -> DeletionPlan:
        """Collect eligible messages from ``cursor`` onwards.

        The caller has already checked that ``cursor`` itself is eligible.
        The message following the candidates is fetched before anything is
        deleted so the next cursor does not depend on deletion outcome.
        """
        candidates: List[MessageRef] = [cursor]
        seen: Set[int] = {cursor.id}
        while True:
            page = await self._transport.fetch_after(channel_id, candidates[-1].id, self._page_size)
            fresh = sorted(
                (m for m in page if m.id not in seen and is_expired(m, now, max_age)),
                key=lambda m: m.id,
            )
            if not fresh:
                break
            candidates.extend(fresh)
            seen.update(m.id for m in fresh)
            if len(page) < self._page_size:
                # Short page: end of history.
                break
        logger.debug("Found %d messages to delete in %s.", len(candidates), channel_id)

        next_remaining = await self._find_next_remaining(channel_id, candidates[-1], seen)
        return DeletionPlan(candidates=candidates, next_remaining=next_remaining)

    async def _find_next_remaining(
        self,
        channel_id: int,
        newest: MessageRef,
        seen: Set[int],
    ) -> Optional[MessageRef]:
        page = await self._transport.fetch_after(channel_id, newest.id, self._lookahead_size)
        for message in sorted(page, key=lambda m: m.id):
            if message.id not in seen:
                return message
        return None

    async def find_oldest(self, channel_id: int) -> Optional[MessageRef]:
        """Walk the whole history backwards and return the oldest message.

        Costs one fetch per page of history. Returns None for an empty
        channel without issuing any backward fetch.
        """
        latest = await self._transport.fetch_latest(channel_id, 1)
        if not latest:
            return None
        oldest = min(latest, key=lambda m: m.id)
        while True:
            page = await self._transport.fetch_before(channel_id, oldest.id, self._page_size)
            if not page:
                return oldest
            candidate = min(page, key=lambda m: m.id)
            if candidate.id >= oldest.id:
                return oldest
            oldest = candidate
