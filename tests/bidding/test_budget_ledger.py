import unittest
from datetime import datetime

from live_auction.bidding.auction_event import SOLD, UNSOLD, ItemResolved
from live_auction.bidding.budget_ledger import BudgetLedger
from live_auction.bidding.errors import DuplicateCommit, RegistrationError
from tests.test_support import AuctionTestCase, flat_settings


def sale(item_id: str, winner: str, price: int) -> ItemResolved:
    return ItemResolved(
        item_id=item_id,
        outcome=SOLD,
        price=price,
        winner=winner,
        timestamp=datetime(2026, 3, 1, 18, 0)
    )


class BudgetLedgerTestCase(AuctionTestCase):
    def setUp(self):
        self.ledger = BudgetLedger(flat_settings())
        self.ledger.register('a', 'Team A', 1000)
        self.ledger.register('b', 'Team B', 500)

    def test_register_rejects_duplicates(self):
        with self.assertRaises(RegistrationError):
            self.ledger.register('a', 'Again', 1000)

    def test_register_rejects_purse_below_minimum(self):
        ledger = BudgetLedger(flat_settings(min_purse=500))
        with self.assertRaises(RegistrationError):
            ledger.register('c', 'Team C', 499)

    def test_reserve_does_not_mutate(self):
        self.assertTrue(self.ledger.reserve('a', 1000))
        self.assertFalse(self.ledger.reserve('a', 1001))
        self.assertEqual(1000, self.ledger.remaining_budget('a'))

    def test_shortfall_for_unknown_team(self):
        self.assertIsNotNone(self.ledger.shortfall('zz', 10))
        self.assertFalse(self.ledger.reserve('zz', 10))

    def test_commit_debits_once(self):
        self.ledger.commit('p1', 'b', 200)
        self.assertEqual(300, self.ledger.remaining_budget('b'))
        self.assertEqual(1, self.ledger.get('b').players_acquired)

        with self.assertRaises(DuplicateCommit):
            self.ledger.commit('p1', 'b', 200)
        self.assertEqual(300, self.ledger.remaining_budget('b'))

    def test_commit_beyond_budget_fails(self):
        with self.assertRaises(ValueError):
            self.ledger.commit('p1', 'b', 501)
        self.assertEqual(500, self.ledger.remaining_budget('b'))

    def test_replayed_resolution_is_idempotent(self):
        event = sale('p1', 'a', 250)

        self.assertTrue(self.ledger.apply_resolution(event))
        self.assertFalse(self.ledger.apply_resolution(event))

        self.assertEqual(750, self.ledger.remaining_budget('a'))
        self.assertEqual({'p1': 250}, self.ledger.get('a').purchases)
        self.ledger.validate()

    def test_unsold_resolution_changes_nothing(self):
        event = ItemResolved(
            item_id='p1',
            outcome=UNSOLD,
            price=None,
            winner=None,
            timestamp=datetime(2026, 3, 1, 18, 0)
        )
        self.assertFalse(self.ledger.apply_resolution(event))
        self.assertEqual(1000, self.ledger.remaining_budget('a'))
        self.assertEqual(500, self.ledger.remaining_budget('b'))

    def test_full_roster_cannot_bid(self):
        ledger = BudgetLedger(flat_settings(max_roster_size=1))
        ledger.register('a', 'Team A', 1000)
        ledger.commit('p1', 'a', 100)

        reason = ledger.shortfall('a', 100)
        self.assertIsNotNone(reason)
        self.assertIn('Roster is full', reason)

    def test_roster_reserve_policy(self):
        settings = flat_settings(enforce_roster_reserve=True, min_roster_size=3, min_bid_amount=100)
        ledger = BudgetLedger(settings)
        ledger.register('a', 'Team A', 1000)

        # two more spots to fill after this one at 100 each
        self.assertTrue(ledger.reserve('a', 800))
        self.assertFalse(ledger.reserve('a', 801))

    def test_roster_reserve_off_by_default(self):
        ledger = BudgetLedger(flat_settings(min_roster_size=3))
        ledger.register('a', 'Team A', 1000)
        self.assertTrue(ledger.reserve('a', 1000))

    def test_summary_sorted_by_team(self):
        self.ledger.register('0', 'Zero', 100)
        self.ledger.commit('p1', 'a', 300)

        rows = self.ledger.summary()
        self.assertEqual(['0', 'a', 'b'], [row['team_id'] for row in rows])
        self.assertEqual(
            {
                'team_id': 'a',
                'team_name': 'Team A',
                'players': 1,
                'spent': 300,
                'remaining_budget': 700,
                'total_purse': 1000
            },
            rows[1]
        )


if __name__ == "__main__":
    unittest.main()
