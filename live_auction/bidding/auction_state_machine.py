"""
Authoritative state machine for one auction session.

The AuctionStateMachine is responsible for:
- Moving the session through Idle → ItemOpen → ItemResolving → ... → SessionComplete
- Accepting or rejecting every bid against the bid ledger, budgets and clock
- Selling players to the leader (or closing them unsold) when the clock runs out
- Publishing a delta for every accepted transition

It is not thread-safe and does not need to be: the session runner feeds it
one intent at a time. Every operation checks everything before it mutates
anything, so a rejected intent leaves no trace.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from .auction_event import (
    SOLD,
    UNSOLD,
    AuctionDelta,
    Bid,
    BidAccepted,
    ClockPaused,
    ClockResumed,
    ItemAdvanced,
    ItemResolved,
    SessionCompleted,
)
from .bid_ledger import BidHistory, BidLedger
from .budget_ledger import BudgetLedger
from .errors import (
    InsufficientBudget,
    InvalidTransition,
    RegistrationError,
    SelfOutbid,
    StaleBid,
    Unauthorized,
)
from .item_sequencer import ItemSequencer
from .session_clock import ExpiryToken, SessionClock
from .session_models import (
    AuctionState,
    ClientIdentity,
    Idle,
    Item,
    ItemOpen,
    ItemResolving,
    ItemStatus,
    Role,
    SessionComplete,
    SessionSettings,
    SessionStatus,
    TeamRegistration,
)
from .. import config

logger = logging.getLogger(__name__)


class AuctionStateMachine:
    """Sole authority over one auction's items, bids and budgets."""

    def __init__(
        self,
        auction_id: str,
        settings: Optional[SessionSettings] = None,
        sequencer: Optional[ItemSequencer] = None,
        budgets: Optional[BudgetLedger] = None,
        ledger: Optional[BidLedger] = None,
        clock: Optional[SessionClock] = None,
        publish: Optional[Callable[[AuctionDelta], None]] = None,
        name: str = '',
        now: Callable[[], datetime] = datetime.now
    ):
        """
        Initialize a session in the Idle state.

        Args:
            auction_id: Auction identifier
            settings: Session rules (default: config values)
            sequencer: Player queue (default: empty)
            budgets: Team budgets (default: empty ledger under ``settings``)
            ledger: Bid log (default: empty)
            clock: Countdown; by default expiry calls ``on_clock_expire`` directly
            publish: Receives every outbound delta after the state has changed
            name: Display name of the auction
            now: Wall clock for bid and sale timestamps
        """
        self.auction_id = auction_id
        self.name = name or auction_id
        self.settings = settings or SessionSettings()
        self.sequencer = sequencer if sequencer is not None else ItemSequencer()
        self.budgets = budgets or BudgetLedger(self.settings)
        self.ledger = ledger or BidLedger()
        self.clock = clock or SessionClock(on_expire=self.on_clock_expire)
        self._publish = publish
        self._now = now

        self._state: AuctionState = Idle()
        self._resolution_listeners: List[Callable[[ItemResolved], None]] = []
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None

    # ===== State =====

    @property
    def state(self) -> AuctionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        if isinstance(self._state, Idle):
            return SessionStatus.UPCOMING
        if isinstance(self._state, SessionComplete):
            return SessionStatus.COMPLETED
        return SessionStatus.ACTIVE

    @property
    def is_complete(self) -> bool:
        return isinstance(self._state, SessionComplete)

    def set_publisher(self, publish: Callable[[AuctionDelta], None]) -> None:
        self._publish = publish

    def add_resolution_listener(self, listener: Callable[[ItemResolved], None]) -> None:
        """Register a sink for sold/unsold outcomes (sale log, REST backend)."""
        self._resolution_listeners.append(listener)

    # ===== Setup (Idle only) =====

    def register_team(
        self,
        actor: ClientIdentity,
        team_id: str,
        team_name: str,
        purse: int
    ) -> TeamRegistration:
        """Register a team before the start. Owners may register only their own team."""
        own_team = (
            actor is not None
            and actor.role == Role.TEAM_OWNER
            and actor.team_id == team_id
        )
        if not own_team:
            self._require_admin(actor, 'register another team')
        self._require_state(Idle, 'register teams')
        return self.budgets.register(team_id, team_name, purse)

    def restore_resolution(self, event: ItemResolved) -> None:
        """
        Re-apply an outcome from a previous run of this auction.

        Used when resuming from the sale log: the player is closed without
        being auctioned again and the sale is debited once.

        Raises:
            KeyError: If the player or the winning team is not in this auction
            RegistrationError: If the winner can no longer pay for the sale
        """
        self._require_state(Idle, 'restore outcomes')
        item = self.sequencer.get(event.item_id)
        if event.is_sale and not self.budgets.is_registered(event.winner):
            raise KeyError(f"Unknown team_id: {event.winner}")

        try:
            self.budgets.apply_resolution(event)
        except ValueError as e:
            raise RegistrationError(
                f"Logged sale of {event.item_id} to {event.winner} for {event.price} "
                f"does not fit the team's purse or roster: {e}"
            )

        if not item.is_closed:
            status = ItemStatus.SOLD if event.is_sale else ItemStatus.UNSOLD
            self.sequencer.resolve(event.item_id, status, event.winner, event.price)

    # ===== Transitions =====

    def start_session(self, actor: ClientIdentity) -> Item:
        """
        Open the first pending player and start the clock.

        Raises:
            Unauthorized: If actor is not the admin
            InvalidTransition: If not Idle or nothing is queued
        """
        self._require_admin(actor, 'start the auction')
        self._require_state(Idle, 'start the auction')
        if not self.sequencer.has_next():
            raise InvalidTransition("Cannot start an auction with no players queued")

        item = self.sequencer.activate_next()
        self.clock.start(self.settings.time_per_item)
        self._state = ItemOpen(item.item_id)
        self.started_at = self._now()

        logger.info(
            f"Auction {self.auction_id} started: {len(self.sequencer)} players, "
            f"{len(self.budgets.teams)} teams"
        )
        self._emit(ItemAdvanced(item=self._item_view(item), time_remaining=self.clock.remaining()))
        return item

    def submit_bid(
        self,
        actor: ClientIdentity,
        amount: int,
        item_id: Optional[str] = None
    ) -> Bid:
        """
        Validate and accept a bid from the actor's team.

        Args:
            actor: Team owner placing the bid
            amount: Bid amount
            item_id: Player the client believes is on the block (optional)

        Returns:
            The accepted Bid

        Raises:
            Unauthorized: If actor is not a registered team owner
            InvalidTransition: If no player is open for bidding
            StaleBid: If the amount does not beat the current price, is below
                the next acceptable price, or targets a player no longer open
            InsufficientBudget: If the team cannot afford the amount
            SelfOutbid: If the team already leads
        """
        team_id = self._require_bidder(actor)
        if not isinstance(self._state, ItemOpen):
            raise InvalidTransition(f"No player is open for bidding ({self._state.phase})")

        item = self.sequencer.get(self._state.item_id)
        if item_id is not None and item_id != item.item_id:
            raise StaleBid(f"Bid for {item_id}, but {item.item_id} is on the block")

        head = self.ledger.head(item.item_id)
        current_price = head.amount if head is not None else None
        minimum = self.settings.increment_rule.minimum_next(current_price, item.base_price)

        if current_price is not None and amount <= current_price:
            raise StaleBid(f"Bid of {amount} does not beat current price {current_price}")
        if amount < minimum:
            raise StaleBid(f"Bid of {amount} is below the minimum of {minimum}")

        shortfall = self.budgets.shortfall(team_id, amount)
        if shortfall is not None:
            raise InsufficientBudget(shortfall)

        if head is not None and head.team_id == team_id:
            raise SelfOutbid(f"{team_id} already leads at {head.amount}")

        bid = self.ledger.append(item.item_id, team_id, amount, timestamp=self._now())
        self.clock.reset(self.settings.time_per_item)

        logger.info(f"Bid accepted on {item.item_id}: {team_id} → {amount} (#{bid.sequence})")
        self._emit(BidAccepted(
            item_id=item.item_id,
            price=amount,
            leader=team_id,
            time_remaining=self.clock.remaining(),
            sequence=bid.sequence
        ))
        return bid

    def on_clock_expire(self, token: Optional[ExpiryToken] = None) -> Optional[ItemResolved]:
        """
        Resolve the open player when its clock runs out.

        Args:
            token: Token reported by the clock (default: the current one)

        Returns:
            The resolution, or None if the token was superseded by a reset

        Raises:
            InvalidTransition: If no player is open
        """
        if not isinstance(self._state, ItemOpen):
            raise InvalidTransition(f"Clock expiry outside of bidding ({self._state.phase})")
        if not self.clock.claim_expiry(token if token is not None else self.clock.token):
            return None

        item = self.sequencer.get(self._state.item_id)
        self._state = ItemResolving(item.item_id)

        head = self.ledger.head(item.item_id)
        if head is not None:
            event = ItemResolved(
                item_id=item.item_id,
                outcome=SOLD,
                price=head.amount,
                winner=head.team_id,
                timestamp=self._now(),
                auction_id=self.auction_id
            )
            self.sequencer.resolve(item.item_id, ItemStatus.SOLD, head.team_id, head.amount)
            self.budgets.apply_resolution(event)
            logger.info(f"SOLD: {item.name} → {head.team_id} for {head.amount}")
        else:
            event = ItemResolved(
                item_id=item.item_id,
                outcome=UNSOLD,
                price=None,
                winner=None,
                timestamp=self._now(),
                auction_id=self.auction_id
            )
            self.sequencer.resolve(item.item_id, ItemStatus.UNSOLD)
            logger.info(f"UNSOLD: {item.name}")

        self._emit(event)
        self._notify_resolution(event)
        return event

    def advance_to_next_item(self, actor: ClientIdentity) -> Optional[Item]:
        """
        Open the next pending player, or complete the session.

        Returns:
            The newly open Item, or None if the session completed

        Raises:
            Unauthorized: If actor is not the admin (or the system)
            InvalidTransition: If the current player is not resolved yet
        """
        self._require_admin(actor, 'advance to the next player')
        self._require_state(ItemResolving, 'advance to the next player')

        item = self.sequencer.activate_next()
        if item is None:
            self._complete('exhausted')
            return None

        self.clock.start(self.settings.time_per_item)
        self._state = ItemOpen(item.item_id)
        self._emit(ItemAdvanced(item=self._item_view(item), time_remaining=self.clock.remaining()))
        return item

    def force_end(self, actor: ClientIdentity) -> None:
        """
        End the auction immediately.

        A player still open is closed unsold, whatever bids it has.

        Raises:
            Unauthorized: If actor is not the admin
            InvalidTransition: If the session already completed
        """
        self._require_admin(actor, 'end the auction')
        if isinstance(self._state, SessionComplete):
            raise InvalidTransition("Auction has already completed")

        unsold_item = None
        if isinstance(self._state, ItemOpen):
            item = self.sequencer.resolve(self._state.item_id, ItemStatus.UNSOLD)
            unsold_item = item.item_id
            logger.warning(
                f"Auction {self.auction_id} forced to end with {item.name} on the block "
                f"({self.ledger.bid_count(item.item_id)} bids discarded)"
            )
            self._notify_resolution(ItemResolved(
                item_id=item.item_id,
                outcome=UNSOLD,
                price=None,
                winner=None,
                timestamp=self._now(),
                auction_id=self.auction_id
            ))

        self._complete('forced', unsold_item)

    def pause_clock(self, actor: ClientIdentity) -> float:
        self._require_admin(actor, 'pause the clock')
        self._require_state(ItemOpen, 'pause the clock')
        remaining = self.clock.pause()
        self._emit(ClockPaused(item_id=self._state.item_id, time_remaining=remaining))
        return remaining

    def resume_clock(self, actor: ClientIdentity) -> float:
        self._require_admin(actor, 'resume the clock')
        self._require_state(ItemOpen, 'resume the clock')
        self.clock.resume()
        remaining = self.clock.remaining()
        self._emit(ClockResumed(item_id=self._state.item_id, time_remaining=remaining))
        return remaining

    # ===== Views =====

    def current_item(self) -> Optional[Item]:
        """Player referenced by the current state (open or just resolved)."""
        item_id = getattr(self._state, 'item_id', None)
        return self.sequencer.get(item_id) if item_id is not None else None

    def history(self, item_id: str) -> BidHistory:
        self.sequencer.get(item_id)
        return self.ledger.history(item_id)

    def snapshot(self) -> dict:
        """Full state for (re)connecting clients. Clients never compute state."""
        item = self.current_item()
        snapshot = {
            'auctionId': self.auction_id,
            'name': self.name,
            'status': self.status.value,
            'phase': self._state.phase,
            'completionReason': getattr(self._state, 'reason', None),
            'currentItem': self._item_view(item) if item is not None else None,
            'timeRemaining': round(self.clock.remaining(), 3),
            'clockRunning': self.clock.is_running,
            'clockPaused': self.clock.is_paused,
            'teams': [team.to_dict() for team in self.budgets.teams.values()],
            'queue': self.sequencer.counts(),
            'upcoming': [pending.item_id for pending in self.sequencer.pending()[:5]],
            'settings': self.settings.to_dict()
        }
        return snapshot

    def _item_view(self, item: Item) -> dict:
        head = self.ledger.head(item.item_id)
        current_price = head.amount if head is not None else None
        view = item.to_dict()
        view.update({
            'currentPrice': current_price if current_price is not None else item.base_price,
            'leader': head.team_id if head is not None else None,
            'bidCount': self.ledger.bid_count(item.item_id),
            'recentBids': [
                bid.to_dict()
                for bid in self.ledger.history(item.item_id).latest(config.SNAPSHOT_BID_HISTORY)
            ]
        })
        if item.status == ItemStatus.ACTIVE:
            view['nextMinimumBid'] = self.settings.increment_rule.minimum_next(
                current_price, item.base_price
            )
        return view

    # ===== Internals =====

    def _complete(self, reason: str, unsold_item: Optional[str] = None) -> None:
        self.clock.stop()
        self._state = SessionComplete(reason)
        self.completed_at = self._now()

        counts = self.sequencer.counts()
        logger.info(
            f"Auction {self.auction_id} complete ({reason}): "
            f"{counts['sold']} sold, {counts['unsold']} unsold, {counts['pending']} never auctioned"
        )
        self._emit(SessionCompleted(reason=reason, unsold_item=unsold_item))

    def _require_state(self, state_type, action: str) -> None:
        if not isinstance(self._state, state_type):
            raise InvalidTransition(f"Cannot {action} while {self._state.phase}")

    def _require_admin(self, actor: Optional[ClientIdentity], action: str) -> None:
        if actor is None or not actor.is_admin:
            raise Unauthorized(f"Only the admin may {action}")

    def _require_bidder(self, actor: Optional[ClientIdentity]) -> str:
        if actor is None or actor.role != Role.TEAM_OWNER or not actor.team_id:
            raise Unauthorized("Only team owners may bid")
        if not self.budgets.is_registered(actor.team_id):
            raise Unauthorized(f"Team {actor.team_id} is not registered for this auction")
        return actor.team_id

    def _emit(self, delta: AuctionDelta) -> None:
        if self._publish is None:
            return
        try:
            self._publish(delta)
        except Exception as e:
            logger.error(f"Failed to publish {delta.TYPE}: {e}", exc_info=True)

    def _notify_resolution(self, event: ItemResolved) -> None:
        for listener in self._resolution_listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Sale outcome sink failed for {event.item_id}: {e}", exc_info=True)
