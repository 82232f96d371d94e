import tempfile
import unittest
from pathlib import Path

from live_auction.bidding.budget_ledger import BudgetLedger
from live_auction.bidding.session_setup import SessionSetup, load_setup_from_csv, team_summary_frame
from tests.test_support import AuctionTestCase, flat_settings


class SessionSetupTestCase(AuctionTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, name: str, content: str) -> Path:
        path = self.dir / name
        path.write_text(content, encoding='utf-8')
        return path

    def test_load_from_csv(self):
        items = self.write('players.csv', (
            "item_id,name,base_price,role\n"
            "007,Virat Kohli,200000,batter\n"
            "018,Jasprit Bumrah,200000,\n"
        ))
        teams = self.write('teams.csv', (
            "team_id,team_name,purse\n"
            "rcb,Royal Challengers,10000000\n"
            "mi,Mumbai,9500000\n"
        ))

        setup = load_setup_from_csv('ipl-2026', items, teams, name='IPL 2026')

        self.assertEqual('ipl-2026', setup.auction_id)
        self.assertEqual(['007', '018'], [item.item_id for item in setup.items])
        self.assertEqual(200000, setup.items[0].base_price)
        self.assertEqual('batter', setup.items[0].role)
        self.assertIsNone(setup.items[1].role)
        self.assertEqual([('rcb', 10000000), ('mi', 9500000)], [(t.team_id, t.purse) for t in setup.teams])

    def test_missing_columns(self):
        items = self.write('players.csv', "item_id,name\np1,Someone\n")
        teams = self.write('teams.csv', "team_id,team_name,purse\na,A,100\n")

        with self.assertRaises(ValueError) as ctx:
            load_setup_from_csv('auc', items, teams)
        self.assertIn('base_price', str(ctx.exception))

    def test_duplicate_ids(self):
        items = self.write('players.csv', "item_id,name,base_price\np1,One,100\np1,Two,100\n")
        teams = self.write('teams.csv', "team_id,team_name,purse\na,A,100\n")

        with self.assertRaises(ValueError):
            load_setup_from_csv('auc', items, teams)

    def test_from_dict(self):
        setup = SessionSetup.from_dict({
            'auction_id': 42,
            'name': 'Friday League',
            'settings': {'time_per_player': 45, 'bid_increment': [5, 10, 25]},
            'items': [{'item_id': 'p1', 'name': 'One', 'base_price': 50}],
            'teams': [{'team_id': 'a', 'purse': 1000}]
        })

        self.assertEqual('42', setup.auction_id)
        self.assertEqual(45, setup.settings.time_per_item)
        self.assertEqual((5, 10, 25), setup.settings.increment_rule.steps)
        self.assertEqual('a', setup.teams[0].team_name)

    def test_team_summary_frame(self):
        ledger = BudgetLedger(flat_settings())
        ledger.register('b', 'Team B', 500)
        ledger.register('a', 'Team A', 1000)
        ledger.commit('p1', 'a', 300)

        frame = team_summary_frame(ledger)

        self.assertEqual(['a', 'b'], list(frame['team_id']))
        self.assertEqual([300, 0], list(frame['spent']))
        self.assertEqual([700, 500], list(frame['remaining_budget']))
        self.assertEqual([1, 0], list(frame['players']))

    def test_team_summary_frame_empty(self):
        frame = team_summary_frame(BudgetLedger(flat_settings()))
        self.assertTrue(frame.empty)
        self.assertIn('remaining_budget', frame.columns)


if __name__ == "__main__":
    unittest.main()
