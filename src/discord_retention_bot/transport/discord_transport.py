"""ChannelTransport backed by a discord.py client."""
from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import discord

from discord_retention_bot.domain.contracts import (
    ChannelKindError,
    ChannelNotFoundError,
    TransportError,
)
from discord_retention_bot.domain.messages import MessageRef

logger = logging.getLogger(__name__)


def to_message_ref(message: Any) -> MessageRef:
    return MessageRef(id=int(message.id), created_at=message.created_at)


class DiscordChannelTransport:
    def __init__(self, client: discord.Client) -> None:
        self._client = client

    async def _channel(self, channel_id: int) -> Any:
        channel = self._client.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self._client.fetch_channel(channel_id)
            except (discord.NotFound, discord.Forbidden, discord.InvalidData):
                raise ChannelNotFoundError(channel_id) from None
            except discord.HTTPException as exc:
                raise TransportError(f"Could not fetch channel {channel_id}: {exc}") from exc
        if not isinstance(channel, discord.abc.Messageable):
            raise ChannelKindError(channel_id)
        return channel

    async def _history(self, channel_id: int, **kwargs: Any) -> List[MessageRef]:
        channel = await self._channel(channel_id)
        try:
            return [to_message_ref(m) async for m in channel.history(**kwargs)]
        except discord.HTTPException as exc:
            raise TransportError(f"Fetching messages in {channel_id} failed: {exc}") from exc

    async def fetch_latest(self, channel_id: int, limit: int) -> List[MessageRef]:
        return await self._history(channel_id, limit=limit)

    async def fetch_before(self, channel_id: int, anchor_id: int, limit: int) -> List[MessageRef]:
        return await self._history(channel_id, limit=limit, before=discord.Object(id=anchor_id))

    async def fetch_after(self, channel_id: int, anchor_id: int, limit: int) -> List[MessageRef]:
        return await self._history(
            channel_id,
            limit=limit,
            after=discord.Object(id=anchor_id),
            oldest_first=True,
        )

    async def get_message(self, channel_id: int, message_id: int) -> Optional[MessageRef]:
        channel = await self._channel(channel_id)
        try:
            message = await channel.fetch_message(message_id)
        except discord.NotFound:
            return None
        except discord.HTTPException as exc:
            raise TransportError(f"Fetching message {message_id} in {channel_id} failed: {exc}") from exc
        return to_message_ref(message)

    async def delete_one(self, channel_id: int, message: MessageRef) -> None:
        channel = await self._channel(channel_id)
        get_partial = getattr(channel, "get_partial_message", None)
        try:
            if get_partial is not None:
                await get_partial(message.id).delete()
            else:
                await (await channel.fetch_message(message.id)).delete()
        except discord.NotFound:
            logger.debug("Message %s in %s was already deleted.", message.id, channel_id)
        except discord.HTTPException as exc:
            raise TransportError(f"Deleting message {message.id} in {channel_id} failed: {exc}") from exc

    async def delete_bulk(self, channel_id: int, messages: Sequence[MessageRef]) -> None:
        channel = await self._channel(channel_id)
        delete_messages = getattr(channel, "delete_messages", None)
        if delete_messages is None:
            raise TransportError(f"Channel {channel_id} does not support bulk deletion.")
        try:
            await delete_messages([discord.Object(id=m.id) for m in messages])
        except (discord.HTTPException, discord.ClientException) as exc:
            raise TransportError(f"Bulk deleting {len(messages)} messages in {channel_id} failed: {exc}") from exc
