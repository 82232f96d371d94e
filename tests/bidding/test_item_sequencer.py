import unittest

from live_auction.bidding.item_sequencer import ItemSequencer
from live_auction.bidding.session_models import Item, ItemStatus
from tests.test_support import AuctionTestCase


def queue(*item_ids: str) -> ItemSequencer:
    return ItemSequencer([Item(item_id=i, name=f'Player {i}', base_price=100) for i in item_ids])


class ItemSequencerTestCase(AuctionTestCase):
    def test_activates_in_queue_order(self):
        sequencer = queue('p1', 'p2', 'p3')

        first = sequencer.activate_next()
        self.assertEqual('p1', first.item_id)
        self.assertEqual(ItemStatus.ACTIVE, first.status)
        self.assertIs(first, sequencer.current)

        sequencer.resolve('p1', ItemStatus.SOLD, 'a', 150)
        self.assertIsNone(sequencer.current)
        self.assertEqual('p2', sequencer.activate_next().item_id)

    def test_only_one_active_item(self):
        sequencer = queue('p1', 'p2')
        sequencer.activate_next()

        with self.assertRaises(RuntimeError):
            sequencer.activate_next()
        self.assertEqual(1, sequencer.counts()['active'])

    def test_exhausted_queue(self):
        sequencer = queue('p1')
        sequencer.activate_next()
        sequencer.resolve('p1', ItemStatus.UNSOLD)

        self.assertFalse(sequencer.has_next())
        self.assertIsNone(sequencer.activate_next())

    def test_skips_items_closed_before_start(self):
        sequencer = queue('p1', 'p2')
        sequencer.resolve('p1', ItemStatus.SOLD, 'a', 300)

        self.assertEqual(['p2'], [item.item_id for item in sequencer.pending()])
        self.assertEqual('p2', sequencer.activate_next().item_id)

    def test_resolve_records_outcome(self):
        sequencer = queue('p1', 'p2')
        sequencer.activate_next()
        sold = sequencer.resolve('p1', ItemStatus.SOLD, 'a', 150)

        self.assertEqual('a', sold.winning_team)
        self.assertEqual(150, sold.final_price)

        sequencer.activate_next()
        unsold = sequencer.resolve('p2', ItemStatus.UNSOLD, 'ignored', 999)
        self.assertIsNone(unsold.winning_team)
        self.assertIsNone(unsold.final_price)

        self.assertEqual(
            {'pending': 0, 'active': 0, 'sold': 1, 'unsold': 1},
            sequencer.counts()
        )

    def test_resolve_twice_fails(self):
        sequencer = queue('p1')
        sequencer.activate_next()
        sequencer.resolve('p1', ItemStatus.UNSOLD)

        with self.assertRaises(ValueError):
            sequencer.resolve('p1', ItemStatus.SOLD, 'a', 100)

    def test_resolve_requires_terminal_status(self):
        sequencer = queue('p1')
        with self.assertRaises(ValueError):
            sequencer.resolve('p1', ItemStatus.ACTIVE)

    def test_duplicate_and_unknown_ids(self):
        sequencer = queue('p1')
        with self.assertRaises(ValueError):
            sequencer.add(Item(item_id='p1', name='Again', base_price=100))
        with self.assertRaises(KeyError):
            sequencer.get('p9')


if __name__ == "__main__":
    unittest.main()
