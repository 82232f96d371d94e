"""
Live bidding subsystem for player auctions.

This package accepts bids from many connected team owners, keeps the single
authoritative order of bids, enforces budgets and the per-player clock, and
broadcasts every state change to the connected clients.
"""

from .auction_event import Bid, ItemResolved
from .auction_state_machine import AuctionStateMachine
from .bid_ledger import BidLedger
from .broadcast_channel import BroadcastChannel
from .budget_ledger import BudgetLedger
from .event_store import SaleEventStore
from .item_sequencer import ItemSequencer
from .rest_client import AuctionApiClient
from .session_clock import SessionClock
from .session_manager import AuctionSessionRunner, SessionManager
from .session_models import ClientIdentity, Item, Role, SessionSettings, TeamRegistration
from .session_setup import SessionSetup

__all__ = [
    'Bid',
    'ItemResolved',
    'AuctionStateMachine',
    'BidLedger',
    'BroadcastChannel',
    'BudgetLedger',
    'SaleEventStore',
    'ItemSequencer',
    'AuctionApiClient',
    'SessionClock',
    'AuctionSessionRunner',
    'SessionManager',
    'ClientIdentity',
    'Item',
    'Role',
    'SessionSettings',
    'TeamRegistration',
    'SessionSetup',
]
