import contextlib
import io
import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from live_auction import main
from live_auction.bidding.auction_event import SOLD, ItemResolved
from live_auction.bidding.event_store import SaleEventStore
from tests.test_support import AuctionTestCase


class MainTestCase(AuctionTestCase):
    def test_parse_serve(self):
        args = main.parse_arguments(['serve', '--port', '9000'])
        self.assertEqual('serve', args.command)
        self.assertEqual(9000, args.port)
        self.assertFalse(args.verbose)

    def test_replay_prints_team_summary(self):
        with tempfile.TemporaryDirectory() as tmp:
            tmp = Path(tmp)
            (tmp / 'players.csv').write_text(
                "item_id,name,base_price\np1,One,100\np2,Two,100\n", encoding='utf-8'
            )
            (tmp / 'teams.csv').write_text(
                "team_id,team_name,purse\na,Team A,1000\nb,Team B,1000\n", encoding='utf-8'
            )
            events = tmp / 'auction_auc-1.jsonl'
            SaleEventStore(events).append_event(ItemResolved(
                item_id='p1',
                outcome=SOLD,
                price=400,
                winner='b',
                timestamp=datetime(2026, 3, 1, 18, 30),
                auction_id='auc-1'
            ))
            export = tmp / 'results.csv'

            args = main.parse_arguments([
                'replay', '--auction-id', 'auc-1',
                '--items', str(tmp / 'players.csv'),
                '--teams', str(tmp / 'teams.csv'),
                '--events', str(events),
                '--export', str(export),
            ])
            output = io.StringIO()
            with contextlib.redirect_stdout(output):
                main.run_replay(args)

            self.assertTrue(export.exists())

        lines = output.getvalue().strip().splitlines()
        self.assertIn('remaining_budget', lines[0])
        self.assertEqual(['b', 'Team', 'B', '1', '400', '600', '1000'], lines[-1].split())


if __name__ == "__main__":
    unittest.main()
