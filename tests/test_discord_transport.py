import unittest
from datetime import timedelta
from types import SimpleNamespace

import discord

from discord_retention_bot.domain.contracts import ChannelKindError, ChannelNotFoundError, TransportError
from discord_retention_bot.domain.messages import MessageRef
from discord_retention_bot.transport.discord_transport import DiscordChannelTransport
from fakes import NOW


def _not_found() -> discord.NotFound:
    return discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "Unknown Message")


def _forbidden() -> discord.Forbidden:
    return discord.Forbidden(SimpleNamespace(status=403, reason="Forbidden"), "Missing Access")


class _FakeMessage:
    def __init__(self, message_id: int, age: timedelta, channel=None):
        self.id = message_id
        self.created_at = NOW - age
        self._channel = channel

    async def delete(self):
        self._channel.deleted.append(self.id)


class _FakePartial:
    def __init__(self, channel, message_id):
        self._channel = channel
        self.id = message_id

    async def delete(self):
        if self.id in self._channel.gone:
            raise _not_found()
        self._channel.deleted.append(self.id)


class _FakeTextChannel(discord.abc.Messageable):
    def __init__(self, messages):
        self.messages = messages
        self.history_calls = []
        self.deleted = []
        self.bulk = []
        self.gone = set()
        self.bulk_error = None

    async def _get_channel(self):
        return self

    async def history(self, **kwargs):
        self.history_calls.append(kwargs)
        for message in self.messages[: kwargs.get("limit")]:
            yield message

    async def fetch_message(self, message_id):
        for message in self.messages:
            if message.id == message_id:
                return message
        raise _not_found()

    def get_partial_message(self, message_id):
        return _FakePartial(self, message_id)

    async def delete_messages(self, messages):
        if self.bulk_error is not None:
            raise self.bulk_error
        self.bulk.append([m.id for m in messages])


class _FakeClient:
    def __init__(self, channels, fetch_error=None):
        self._channels = channels
        self._fetch_error = fetch_error

    def get_channel(self, channel_id):
        return self._channels.get(channel_id)

    async def fetch_channel(self, channel_id):
        raise self._fetch_error or _not_found()


class TestDiscordChannelTransport(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.channel = _FakeTextChannel([])
        self.channel.messages = [
            _FakeMessage(3, timedelta(days=1), self.channel),
            _FakeMessage(2, timedelta(days=2), self.channel),
        ]
        self.transport = DiscordChannelTransport(_FakeClient({10: self.channel, 11: object()}))

    async def test_fetches_convert_to_message_refs(self):
        refs = await self.transport.fetch_latest(10, 5)
        self.assertEqual(refs, [MessageRef(3, NOW - timedelta(days=1)), MessageRef(2, NOW - timedelta(days=2))])
        self.assertEqual(self.channel.history_calls, [{"limit": 5}])

    async def test_fetch_direction_arguments(self):
        await self.transport.fetch_before(10, 99, 100)
        await self.transport.fetch_after(10, 42, 2)
        before, after = self.channel.history_calls
        self.assertEqual(before["before"].id, 99)
        self.assertEqual(after["after"].id, 42)
        self.assertTrue(after["oldest_first"])
        self.assertEqual(after["limit"], 2)

    async def test_get_message_missing_returns_none(self):
        self.assertIsNone(await self.transport.get_message(10, 12345))
        found = await self.transport.get_message(10, 2)
        self.assertEqual(found.id, 2)

    async def test_unknown_channel_raises_not_found(self):
        with self.assertRaises(ChannelNotFoundError):
            await self.transport.fetch_latest(99, 1)

    async def test_inaccessible_channel_raises_not_found(self):
        transport = DiscordChannelTransport(_FakeClient({}, fetch_error=_forbidden()))
        with self.assertRaises(ChannelNotFoundError):
            await transport.get_message(5, 1)

    async def test_non_message_channel_raises_kind_error(self):
        with self.assertRaises(ChannelKindError):
            await self.transport.fetch_latest(11, 1)

    async def test_delete_one_ignores_already_deleted(self):
        self.channel.gone.add(7)
        await self.transport.delete_one(10, MessageRef(7, NOW))
        await self.transport.delete_one(10, MessageRef(3, NOW))
        self.assertEqual(self.channel.deleted, [3])

    async def test_delete_bulk_sends_object_ids(self):
        await self.transport.delete_bulk(10, [MessageRef(2, NOW), MessageRef(3, NOW)])
        self.assertEqual(self.channel.bulk, [[2, 3]])

    async def test_delete_bulk_failure_is_transport_error(self):
        self.channel.bulk_error = _forbidden()
        with self.assertRaises(TransportError):
            await self.transport.delete_bulk(10, [MessageRef(2, NOW)])


if __name__ == "__main__":
    unittest.main()
