import asyncio
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from live_auction.bidding.auction_event import Bid
from live_auction.bidding.errors import InvalidIntent, InvalidTransition, StaleBid, Unauthorized
from live_auction.bidding.event_store import SaleEventStore
from live_auction.bidding.session_manager import (
    ADVANCE_ITEM,
    FORCE_END,
    START_SESSION,
    SUBMIT_BID,
    AuctionSessionRunner,
    NoActiveSessionError,
    SessionAlreadyActiveError,
    SessionManager,
)
from live_auction.bidding.session_models import Item, ItemOpen, ItemResolving, ItemStatus
from live_auction.bidding.session_setup import SessionSetup, TeamEntry
from tests.test_support import ADMIN, AuctionIsolatedAsyncioTestCase, ManualTimers, flat_settings, owner

A = owner('a')
B = owner('b')


def make_setup(auction_id: str = 'auc-1', **settings) -> SessionSetup:
    return SessionSetup(
        auction_id=auction_id,
        name='Test Auction',
        settings=flat_settings(**settings),
        items=[Item(item_id=i, name=f'Player {i}', base_price=100) for i in ('p1', 'p2')],
        teams=[TeamEntry('a', 'Team A', 1000), TeamEntry('b', 'Team B', 1000)]
    )


class Recorder:
    def __init__(self):
        self.messages = []

    async def __call__(self, message: dict) -> None:
        self.messages.append(message)


class AuctionSessionRunnerTestCase(AuctionIsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.store_path = Path(self.tmp.name) / 'auction_auc-1.jsonl'
        self.timers = ManualTimers()
        self.runners = []

    async def asyncTearDown(self) -> None:
        for runner in self.runners:
            await runner.stop()
        self.tmp.cleanup()

    async def make_runner(
        self,
        setup: SessionSetup = None,
        completion_listeners=()
    ) -> AuctionSessionRunner:
        runner = AuctionSessionRunner(
            setup or make_setup(),
            event_store=SaleEventStore(self.store_path),
            completion_listeners=completion_listeners,
            time_source=self.timers.time,
            timer_factory=self.timers
        )
        await runner.start()
        self.runners.append(runner)
        return runner

    async def test_concurrent_bids_resolved_in_arrival_order(self):
        runner = await self.make_runner()
        await runner.submit(ADMIN, START_SESSION)

        results = await asyncio.gather(
            runner.submit(A, SUBMIT_BID, {'amount': 150}),
            runner.submit(B, SUBMIT_BID, {'amount': 150}),
            return_exceptions=True
        )

        self.assertIsInstance(results[0], Bid)
        self.assertIsInstance(results[1], StaleBid)
        self.assertEqual('a', runner.state_machine.ledger.current_leader('p1'))
        self.assertEqual(1, runner.intents_rejected)

    async def test_bid_queued_before_expiry_wins(self):
        runner = await self.make_runner()
        await runner.submit(ADMIN, START_SESSION)
        self.timers.advance(29)

        bid = asyncio.create_task(runner.submit(A, SUBMIT_BID, {'amount': 150}))
        await asyncio.sleep(0)
        # expiry arrives while the bid is still waiting in the queue
        self.timers.advance(1)

        await bid
        await runner.wait_idle()

        self.assertEqual(ItemOpen('p1'), runner.state_machine.state)
        self.assertAlmostEqual(30, runner.clock.remaining())
        self.assertEqual('a', runner.state_machine.ledger.current_leader('p1'))

    async def test_bid_queued_after_expiry_is_rejected(self):
        runner = await self.make_runner()
        await runner.submit(ADMIN, START_SESSION)

        self.timers.advance(30)
        with self.assertRaises(InvalidTransition):
            await runner.submit(A, SUBMIT_BID, {'amount': 150})

        self.assertEqual(ItemResolving('p1'), runner.state_machine.state)
        self.assertEqual(ItemStatus.UNSOLD, runner.state_machine.sequencer.get('p1').status)

    async def test_rejections_go_to_submitter(self):
        runner = await self.make_runner()

        with self.assertRaises(InvalidTransition):
            await runner.submit(A, SUBMIT_BID, {'amount': 150})
        with self.assertRaises(Unauthorized):
            await runner.submit(A, START_SESSION)
        with self.assertRaises(InvalidIntent):
            await runner.submit(ADMIN, 'clockExpired', {})
        with self.assertRaises(InvalidIntent):
            await runner.submit(ADMIN, SUBMIT_BID, {'amount': 'lots'})

    async def test_deltas_reach_connected_clients(self):
        runner = await self.make_runner()
        client = Recorder()
        connection = runner.join(A, client)

        await runner.submit(ADMIN, START_SESSION)
        await runner.submit(A, SUBMIT_BID, {'amount': 150})
        self.timers.advance(30)
        await runner.wait_idle()
        await connection.flush()

        self.assertEqual(
            ['snapshot', 'itemAdvanced', 'bidAccepted', 'itemResolved'],
            [message['type'] for message in client.messages]
        )
        self.assertEqual([0, 1, 2, 3], [message['version'] for message in client.messages])

        await runner.leave(connection)
        self.assertEqual([], runner.channel.connections)

    async def test_sale_log_resumes_auction(self):
        runner = await self.make_runner()
        await runner.submit(ADMIN, START_SESSION)
        await runner.submit(A, SUBMIT_BID, {'amount': 150})
        self.timers.advance(30)
        await runner.wait_idle()
        await runner.stop()

        self.assertEqual(1, SaleEventStore(self.store_path).get_event_count())

        resumed = await self.make_runner()
        self.assertEqual(850, resumed.state_machine.budgets.remaining_budget('a'))
        self.assertEqual(ItemStatus.SOLD, resumed.state_machine.sequencer.get('p1').status)

        item = await resumed.submit(ADMIN, START_SESSION)
        self.assertEqual('p2', item.item_id)

    async def test_auto_advance(self):
        runner = await self.make_runner(make_setup(auto_advance_seconds=0))
        await runner.submit(ADMIN, START_SESSION)

        self.timers.advance(30)
        await runner.wait_idle()
        await asyncio.sleep(0.05)
        await runner.wait_idle()

        self.assertEqual(ItemOpen('p2'), runner.state_machine.state)

    async def test_auto_advance_skipped_after_manual_advance(self):
        runner = await self.make_runner(make_setup(auto_advance_seconds=0.05))
        await runner.submit(ADMIN, START_SESSION)

        self.timers.advance(30)
        await runner.wait_idle()
        await runner.submit(ADMIN, ADVANCE_ITEM)
        await asyncio.sleep(0.1)
        await runner.wait_idle()

        self.assertEqual(ItemOpen('p2'), runner.state_machine.state)
        self.assertEqual(ItemStatus.ACTIVE, runner.state_machine.sequencer.get('p2').status)

    async def test_force_end(self):
        runner = await self.make_runner()
        await runner.submit(ADMIN, START_SESSION)
        await runner.submit(A, SUBMIT_BID, {'amount': 150})

        snapshot = await runner.submit(ADMIN, FORCE_END)

        self.assertEqual('completed', snapshot['status'])
        self.assertEqual('forced', snapshot['completionReason'])
        self.assertEqual(ItemStatus.UNSOLD, runner.state_machine.sequencer.get('p1').status)
        self.assertEqual(1000, runner.state_machine.budgets.remaining_budget('a'))

    async def test_completion_reported_once(self):
        completed = []
        runner = await self.make_runner(completion_listeners=[completed.append])
        await runner.submit(ADMIN, START_SESSION)

        for _ in range(2):
            self.timers.advance(30)
            await runner.wait_idle()
            self.assertEqual([], completed)
            await runner.submit(ADMIN, ADVANCE_ITEM)

        self.assertTrue(runner.state_machine.is_complete)
        with self.assertRaises(InvalidTransition):
            await runner.submit(ADMIN, FORCE_END)
        self.assertEqual(['auc-1'], completed)

    async def test_stopped_runner_rejects_intents(self):
        runner = await self.make_runner()
        await runner.stop()

        self.assertFalse(runner.running)
        with self.assertRaises(InvalidTransition):
            await runner.submit(ADMIN, START_SESSION)


class SessionManagerTestCase(AuctionIsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.manager = SessionManager(events_dir=Path(self.tmp.name), max_sessions=2)

    async def asyncTearDown(self) -> None:
        await self.manager.close_all()
        self.tmp.cleanup()

    async def test_one_session_per_auction(self):
        runner = await self.manager.open_session(make_setup('auc-1'))
        self.assertIs(runner, self.manager.get('auc-1'))

        with self.assertRaises(SessionAlreadyActiveError):
            await self.manager.open_session(make_setup('auc-1'))

    async def test_completed_session_can_be_reopened(self):
        runner = await self.manager.open_session(make_setup('auc-1'))
        await runner.submit(ADMIN, FORCE_END)

        reopened = await self.manager.open_session(make_setup('auc-1'))
        self.assertIsNot(runner, reopened)
        self.assertFalse(runner.running)

    async def test_session_limit(self):
        await self.manager.open_session(make_setup('auc-1'))
        await self.manager.open_session(make_setup('auc-2'))
        with self.assertRaises(SessionAlreadyActiveError):
            await self.manager.open_session(make_setup('auc-3'))

    async def test_unknown_session(self):
        with self.assertRaises(NoActiveSessionError):
            self.manager.get('nope')
        with self.assertRaises(NoActiveSessionError):
            await self.manager.close_session('nope')

    async def test_list_and_close(self):
        await self.manager.open_session(make_setup('auc-1'))

        sessions = self.manager.list_sessions()
        self.assertEqual(1, len(sessions))
        self.assertEqual('auc-1', sessions[0]['auction_id'])
        self.assertEqual('upcoming', sessions[0]['status'])
        self.assertEqual(2, sessions[0]['teams'])

        runner = await self.manager.close_session('auc-1')
        self.assertFalse(runner.running)
        self.assertEqual([], self.manager.list_sessions())

    async def test_remote_recording(self):
        api_client = MagicMock()
        manager = SessionManager(
            events_dir=Path(self.tmp.name),
            api_client=api_client,
            record_remotely=True
        )
        runner = await manager.open_session(make_setup('auc-9'))
        await runner.submit(ADMIN, START_SESSION)
        await runner.submit(ADMIN, FORCE_END)
        await manager.close_all()

        self.assertEqual('p1', api_client.record_result.call_args.args[0].item_id)
        api_client.end_auction.assert_called_once_with('auc-9')

    async def test_open_from_backend_requires_client(self):
        with self.assertRaises(RuntimeError):
            await self.manager.open_from_backend('auc-1')


if __name__ == "__main__":
    unittest.main()
