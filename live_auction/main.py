"""
Main CLI entry point for the live auction bidding coordinator.
"""

import argparse
import logging
import sys
from pathlib import Path

from . import config


def setup_logging(verbose: bool = False):
    """
    Configure logging for the application.

    Args:
        verbose: Enable verbose (DEBUG) logging
    """
    level = logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL)
    logging.basicConfig(
        level=level,
        format=config.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def parse_arguments(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Live Auction Bidding Coordinator',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the API and WebSocket server
  python -m live_auction.main serve --port 8000

  # Rebuild team budgets from a sale log
  python -m live_auction.main replay --auction-id ipl-2026 \\
      --items players.csv --teams teams.csv \\
      --events data/auction_events/auction_ipl-2026.jsonl

  # Same, and export the outcomes for the results sheet
  python -m live_auction.main replay --auction-id ipl-2026 \\
      --items players.csv --teams teams.csv \\
      --events data/auction_events/auction_ipl-2026.jsonl --export results.csv
        """
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    serve = subparsers.add_parser('serve', help='Run the API server')
    serve.add_argument(
        '--host',
        type=str,
        default=config.API_HOST,
        help=f'Bind address (default: {config.API_HOST})'
    )
    serve.add_argument(
        '--port',
        type=int,
        default=config.API_PORT,
        help=f'Port (default: {config.API_PORT})'
    )

    replay = subparsers.add_parser('replay', help='Rebuild budgets from a sale log')
    replay.add_argument(
        '--auction-id',
        type=str,
        required=True,
        help='Auction identifier'
    )
    replay.add_argument(
        '--items',
        type=str,
        required=True,
        help='CSV of players (item_id, name, base_price)'
    )
    replay.add_argument(
        '--teams',
        type=str,
        required=True,
        help='CSV of teams (team_id, team_name, purse)'
    )
    replay.add_argument(
        '--events',
        type=str,
        required=True,
        help='Sale log (JSONL) to replay'
    )
    replay.add_argument(
        '--export',
        type=str,
        default=None,
        help='Write the replayed outcomes to this CSV file'
    )

    return parser.parse_args(argv)


def run_server(args):
    """Run the FastAPI app under uvicorn."""
    import uvicorn

    logger = logging.getLogger(__name__)
    logger.info(f"Starting Live Auction API on {args.host}:{args.port}")

    uvicorn.run(
        'live_auction.bidding.api_server:app',
        host=args.host,
        port=args.port,
        log_level='debug' if args.verbose else config.LOG_LEVEL.lower()
    )


def run_replay(args):
    """Restore an auction from its sale log and print the team summary."""
    from .bidding.auction_state_machine import AuctionStateMachine
    from .bidding.budget_ledger import BudgetLedger
    from .bidding.event_store import SaleEventStore
    from .bidding.item_sequencer import ItemSequencer
    from .bidding.session_setup import load_setup_from_csv, team_summary_frame

    logger = logging.getLogger(__name__)

    try:
        setup = load_setup_from_csv(args.auction_id, Path(args.items), Path(args.teams))

        budgets = BudgetLedger(setup.settings)
        for team in setup.teams:
            budgets.register(team.team_id, team.team_name, team.purse)
        state_machine = AuctionStateMachine(
            auction_id=setup.auction_id,
            settings=setup.settings,
            sequencer=ItemSequencer(setup.items),
            budgets=budgets
        )

        store = SaleEventStore(Path(args.events))
        applied = store.replay(state_machine)
        budgets.validate()

        counts = state_machine.sequencer.counts()
        logger.info("=" * 60)
        logger.info(f"Auction {setup.auction_id}: {applied} outcomes replayed")
        logger.info(
            f"{counts['sold']} sold, {counts['unsold']} unsold, {counts['pending']} not yet auctioned"
        )
        logger.info("=" * 60)

        print(team_summary_frame(budgets).to_string(index=False))

        if args.export:
            store.export_to_csv(Path(args.export))

    except Exception as e:
        logger.exception(f"Error during replay: {e}")
        sys.exit(1)


def main(argv=None):
    """Main execution function with command branching."""
    args = parse_arguments(argv)

    setup_logging(args.verbose)

    if args.command == 'serve':
        run_server(args)
    else:
        run_replay(args)


if __name__ == '__main__':
    main()
