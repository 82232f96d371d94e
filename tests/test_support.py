import logging
import unittest
from logging import Logger
from typing import Callable, List, Optional

from live_auction.bidding.auction_event import AuctionDelta
from live_auction.bidding.auction_state_machine import AuctionStateMachine
from live_auction.bidding.budget_ledger import BudgetLedger
from live_auction.bidding.item_sequencer import ItemSequencer
from live_auction.bidding.session_clock import SessionClock
from live_auction.bidding.session_models import (
    ClientIdentity,
    IncrementRule,
    Item,
    Role,
    SessionSettings,
)

logging.basicConfig(level=logging.DEBUG)

ADMIN = ClientIdentity(principal_id='admin-1', role=Role.ADMIN)
VIEWER = ClientIdentity(principal_id='viewer-1', role=Role.VIEWER)


def owner(team_id: str) -> ClientIdentity:
    return ClientIdentity(principal_id=f'owner-{team_id}', role=Role.TEAM_OWNER, team_id=team_id)


class ManualTimer:
    def __init__(self, deadline: float, callback: Callable[[], None]):
        self.deadline = deadline
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimers:
    """Timer factory and time source driven by the test instead of the event loop."""

    def __init__(self):
        self.now = 0.0
        self._timers: List[ManualTimer] = []

    def time(self) -> float:
        return self.now

    def __call__(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [timer for timer in self._timers if not timer.cancelled]

    def advance(self, seconds: float) -> None:
        """Move time forward, firing every live timer that comes due."""
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.deadline <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.deadline)
            self._timers.remove(timer)
            self.now = timer.deadline
            timer.callback()
        self.now = target


def flat_settings(time_per_item: float = 30, increment: int = 10, **overrides) -> SessionSettings:
    values = dict(
        time_per_item=time_per_item,
        increment_rule=IncrementRule(steps=(increment,)),
        min_purse=0,
        min_bid_amount=100,
        min_roster_size=0,
        max_roster_size=5,
    )
    values.update(overrides)
    return SessionSettings(**values)


def build_state_machine(
    items: List[Item],
    teams: dict,
    settings: Optional[SessionSettings] = None,
    timers: Optional[ManualTimers] = None,
    publish: Optional[Callable[[AuctionDelta], None]] = None
) -> AuctionStateMachine:
    """
    State machine whose clock runs on ``timers``.

    Args:
        items: Player queue
        teams: team_id -> purse
    """
    settings = settings or flat_settings()
    budgets = BudgetLedger(settings)
    for team_id, purse in teams.items():
        budgets.register(team_id, team_id.upper(), purse)

    state_machine = AuctionStateMachine(
        auction_id='test-auction',
        settings=settings,
        sequencer=ItemSequencer(items),
        budgets=budgets,
        publish=publish
    )
    timers = timers or ManualTimers()
    state_machine.clock = SessionClock(
        on_expire=state_machine.on_clock_expire,
        time_source=timers.time,
        timer_factory=timers
    )
    return state_machine


class AuctionTestCase(unittest.TestCase):
    maxDiff = None

    def get_logger(self, name: str) -> Logger:
        return logging.getLogger(f"{self.__class__.__name__}.{name}")


class AuctionIsolatedAsyncioTestCase(unittest.IsolatedAsyncioTestCase):
    maxDiff = None

    def get_logger(self, name: str) -> Logger:
        return logging.getLogger(f"{self.__class__.__name__}.{name}")
