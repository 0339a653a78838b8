from typing import List, Optional, Protocol, Sequence

from discord_retention_bot.domain.messages import MessageRef


class TransportError(Exception):
    """A fetch or delete call against the chat platform failed."""


class ChannelUnavailableError(TransportError):
    def __init__(self, channel_id: int, reason: str) -> None:
        super().__init__(f"Channel {channel_id} {reason}.")
        self.channel_id = channel_id
        self.reason = reason


class ChannelNotFoundError(ChannelUnavailableError):
    def __init__(self, channel_id: int) -> None:
        super().__init__(channel_id, "was not found")


class ChannelKindError(ChannelUnavailableError):
    def __init__(self, channel_id: int) -> None:
        super().__init__(channel_id, "was found but is not a message channel")


class ChannelTransport(Protocol):
    """Message access for one platform.

    ``fetch_latest`` and ``fetch_before`` return messages newest first,
    ``fetch_after`` returns them oldest first. ``delete_bulk`` may only be
    given messages within the bulk age bound, at most the bulk batch size.
    """

    async def fetch_latest(self, channel_id: int, limit: int) -> List[MessageRef]:
        ...

    async def fetch_before(self, channel_id: int, anchor_id: int, limit: int) -> List[MessageRef]:
        ...

    async def fetch_after(self, channel_id: int, anchor_id: int, limit: int) -> List[MessageRef]:
        ...

    async def get_message(self, channel_id: int, message_id: int) -> Optional[MessageRef]:
        ...

    async def delete_one(self, channel_id: int, message: MessageRef) -> None:
        ...

    async def delete_bulk(self, channel_id: int, messages: Sequence[MessageRef]) -> None:
        ...
