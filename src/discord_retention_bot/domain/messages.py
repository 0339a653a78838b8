"""Message references and per-channel retention state."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional


# Platform limits for bulk deletion. Not configurable.
BULK_DELETE_MAX_AGE = timedelta(days=14)
BULK_DELETE_BATCH_SIZE = 50


@dataclass(frozen=True)
class MessageRef:
    id: int
    created_at: datetime

    def age(self, now: datetime) -> timedelta:
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return now - created


def is_expired(message: MessageRef, now: datetime, max_age: timedelta) -> bool:
    """True when the message is old enough to be deleted."""
    return message.age(now) >= max_age


def is_bulk_deletable(message: MessageRef, now: datetime) -> bool:
    return message.age(now) <= BULK_DELETE_MAX_AGE


@dataclass
class ChannelRetentionState:
    """Mutable retention state owned by a single worker.

    ``cursor`` is the oldest message not yet confirmed deleted or confirmed
    too new. ``None`` means the position is unknown and must be rediscovered.
    """

    channel_id: int
    max_age: timedelta
    dry_run: bool = False
    cursor: Optional[MessageRef] = None
    running: bool = False

    @classmethod
    def from_seconds(cls, channel_id: int, max_age_seconds: float, dry_run: bool = False) -> "ChannelRetentionState":
        return cls(channel_id=channel_id, max_age=timedelta(seconds=float(max_age_seconds)), dry_run=bool(dry_run))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "max_age_seconds": self.max_age.total_seconds(),
            "dry_run": self.dry_run,
            "running": self.running,
            "cursor_id": self.cursor.id if self.cursor else None,
            "cursor_created_at": self.cursor.created_at.isoformat() if self.cursor else None,
        }
