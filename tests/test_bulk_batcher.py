import unittest
from datetime import timedelta

from discord_retention_bot.domain.contracts import TransportError
from discord_retention_bot.domain.messages import ChannelRetentionState
from discord_retention_bot.services.bulk_batcher import BulkBatcher, chunk_messages
from discord_retention_bot.services.deletion_planner import DeletionPlan
from fakes import NOW, FakeTransport, days, messages_aged


def _state(channel_id=1, max_age=timedelta(days=1), dry_run=False, cursor=None):
    return ChannelRetentionState(channel_id=channel_id, max_age=max_age, dry_run=dry_run, cursor=cursor, running=True)


class TestChunkMessages(unittest.TestCase):
    def test_chunks_keep_order_and_remainder(self):
        msgs = messages_aged([timedelta(hours=h) for h in range(1, 121)])
        chunks = chunk_messages(msgs, 50)
        self.assertEqual([len(c) for c in chunks], [50, 50, 20])
        self.assertEqual([m for c in chunks for m in c], msgs)


class TestBulkBatcher(unittest.IsolatedAsyncioTestCase):
    async def test_bulk_eligible_candidates_go_out_in_batches_of_fifty(self):
        msgs = messages_aged([timedelta(days=2, minutes=m) for m in range(120)])
        tail = messages_aged(days(0.5), first_id=9000)
        transport = FakeTransport({1: msgs + tail})
        state = _state(cursor=msgs[0])

        outcome = await BulkBatcher(transport).execute(state, DeletionPlan(msgs, tail[0]), NOW)

        self.assertEqual([len(ids) for ids in transport.bulk_calls], [50, 50, 20])
        self.assertEqual(transport.deleted_one, [])
        self.assertEqual(outcome.bulk_deleted, 120)
        self.assertEqual(state.cursor, tail[0])

    async def test_messages_older_than_fourteen_days_are_deleted_one_by_one(self):
        msgs = messages_aged(days(40, 38, 36, 34, 32, 30, 28, 26, 24, 22))
        transport = FakeTransport({1: msgs})
        state = _state(cursor=msgs[0])

        outcome = await BulkBatcher(transport).execute(state, DeletionPlan(msgs, None), NOW)

        self.assertEqual(transport.calls_named("delete_bulk"), [])
        self.assertEqual(transport.deleted_one, [m.id for m in msgs])
        self.assertEqual(outcome.individually_deleted, 10)
        self.assertIsNone(state.cursor)

    async def test_failed_bulk_group_falls_back_to_single_deletes(self):
        msgs = messages_aged([timedelta(days=3, minutes=m) for m in range(60)])
        transport = FakeTransport({1: msgs})
        transport.fail_bulk_call_indexes = {0}
        state = _state(cursor=msgs[0])

        with self.assertLogs("discord_retention_bot.services.bulk_batcher", level="WARNING"):
            outcome = await BulkBatcher(transport).execute(state, DeletionPlan(msgs, None), NOW)

        # First group failed, second was still attempted and succeeded.
        self.assertEqual(len(transport.calls_named("delete_bulk")), 2)
        self.assertEqual(transport.bulk_calls, [[m.id for m in msgs[50:]]])
        self.assertEqual(transport.deleted_one, [m.id for m in msgs[:50]])
        self.assertEqual(outcome.bulk_failures, 1)
        self.assertEqual(outcome.deleted, 60)
        self.assertEqual(transport.remaining_ids(1), [])

    async def test_dry_run_issues_no_delete_calls(self):
        msgs = messages_aged(days(30, 10, 5, 4, 0.1))
        transport = FakeTransport({1: msgs})
        state = _state(dry_run=True, cursor=msgs[0])

        with self.assertLogs("discord_retention_bot.services.bulk_batcher", level="INFO") as logs:
            outcome = await BulkBatcher(transport).execute(state, DeletionPlan(msgs[:4], msgs[4]), NOW)

        self.assertEqual(transport.delete_call_count, 0)
        self.assertEqual(transport.remaining_ids(1), [m.id for m in msgs])
        self.assertTrue(outcome.dry_run)
        self.assertEqual(sum("[DRY RUN]" in line for line in logs.output), 4)
        self.assertEqual(state.cursor, msgs[4])

    async def test_failure_mid_list_commits_progress(self):
        msgs = messages_aged(days(30, 29, 28, 27, 26))
        transport = FakeTransport({1: msgs})
        transport.fail_delete_ids = {msgs[3].id}
        state = _state(cursor=msgs[0])

        with self.assertRaises(TransportError):
            await BulkBatcher(transport).execute(state, DeletionPlan(msgs, None), NOW)

        self.assertEqual(transport.deleted_one, [m.id for m in msgs[:3]])
        # Resume point is the first message that was not deleted.
        self.assertEqual(state.cursor, msgs[3])

    async def test_cursor_stays_on_older_pending_message_after_bulk_success(self):
        msgs = messages_aged(days(20, 10, 9))
        transport = FakeTransport({1: msgs})
        transport.fail_delete_ids = {msgs[0].id}
        state = _state(cursor=msgs[0])

        with self.assertRaises(TransportError):
            await BulkBatcher(transport).execute(state, DeletionPlan(msgs, None), NOW)

        self.assertEqual(transport.bulk_calls, [[msgs[1].id, msgs[2].id]])
        self.assertEqual(state.cursor, msgs[0])


if __name__ == "__main__":
    unittest.main()
