"""
Core data structures for an auction session.

These dataclasses describe the players on the block, the registered teams and
their purses, the session settings, the connected client identities, and the
tagged states the auction moves through.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from .. import config


class SessionStatus(str, Enum):
    UPCOMING = 'upcoming'
    ACTIVE = 'active'
    COMPLETED = 'completed'


class ItemStatus(str, Enum):
    PENDING = 'pending'
    ACTIVE = 'active'
    SOLD = 'sold'
    UNSOLD = 'unsold'


class Role(str, Enum):
    ADMIN = config.ROLE_ADMIN
    TEAM_OWNER = config.ROLE_TEAM_OWNER
    VIEWER = config.ROLE_VIEWER
    SYSTEM = 'system'


@dataclass(frozen=True)
class ClientIdentity:
    """Authenticated sender of an intent, fixed for the life of a connection."""

    principal_id: str
    role: Role
    team_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role in (Role.ADMIN, Role.SYSTEM)

    def to_dict(self) -> dict:
        return {
            'principal_id': self.principal_id,
            'role': self.role.value,
            'team_id': self.team_id
        }


# Identity used for clock expiry and automatic advancing
SYSTEM = ClientIdentity(principal_id='system', role=Role.SYSTEM)


@dataclass
class Item:
    """A player on the auction queue."""

    item_id: str
    name: str
    base_price: int
    status: ItemStatus = ItemStatus.PENDING
    winning_team: Optional[str] = None
    final_price: Optional[int] = None
    role: Optional[str] = None        # batter, bowler, all-rounder, keeper

    @property
    def is_closed(self) -> bool:
        return self.status in (ItemStatus.SOLD, ItemStatus.UNSOLD)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'item_id': self.item_id,
            'name': self.name,
            'base_price': self.base_price,
            'status': self.status.value,
            'winning_team': self.winning_team,
            'final_price': self.final_price,
            'role': self.role
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Item':
        """Create Item from dictionary."""
        return cls(
            item_id=str(data['item_id']),
            name=data.get('name', str(data['item_id'])),
            base_price=int(data.get('base_price', config.MIN_BID_AMOUNT)),
            status=ItemStatus(data.get('status', ItemStatus.PENDING.value)),
            winning_team=data.get('winning_team'),
            final_price=data.get('final_price'),
            role=data.get('role')
        )


@dataclass
class TeamRegistration:
    """Tracks a single team's purse and roster during the auction."""

    team_id: str
    team_name: str
    total_purse: int
    remaining_budget: Optional[int] = None
    players_acquired: int = 0
    max_roster_size: Optional[int] = None
    purchases: Dict[str, int] = field(default_factory=dict)   # item_id -> price

    def __post_init__(self):
        if self.remaining_budget is None:
            self.remaining_budget = self.total_purse - sum(self.purchases.values())

    @property
    def roster_full(self) -> bool:
        return (
            self.max_roster_size is not None
            and self.players_acquired >= self.max_roster_size
        )

    def total_spent(self) -> int:
        """Calculate total amount spent so far."""
        return sum(self.purchases.values())

    def add_purchase(self, item_id: str, price: int) -> None:
        """
        Record a won player against this team.

        Args:
            item_id: Player that was sold to this team
            price: Final price paid

        Raises:
            ValueError: If budget or roster spots insufficient
        """
        if price > self.remaining_budget:
            raise ValueError(
                f"Insufficient budget: {self.remaining_budget} < {price}"
            )
        if self.roster_full:
            raise ValueError("No roster spots remaining")

        self.purchases[item_id] = price
        self.remaining_budget -= price
        self.players_acquired += 1

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'team_id': self.team_id,
            'team_name': self.team_name,
            'total_purse': self.total_purse,
            'remaining_budget': self.remaining_budget,
            'players_acquired': self.players_acquired,
            'max_roster_size': self.max_roster_size,
            'purchases': dict(self.purchases)
        }


@dataclass(frozen=True)
class IncrementRule:
    """
    Minimum raise between consecutive bids.

    With a single step the increment is flat. With several steps the increment
    grows with the price relative to the player's base price: below
    ``tier_multipliers[0] * base`` the first step applies, below
    ``tier_multipliers[1] * base`` the second, and so on.
    """

    steps: Tuple[int, ...] = (config.DEFAULT_BID_INCREMENT,)
    tier_multipliers: Tuple[int, ...] = config.INCREMENT_TIER_MULTIPLIERS

    def __post_init__(self):
        if not self.steps or any(step <= 0 for step in self.steps):
            raise ValueError(f"Bid increments must be positive: {self.steps}")

    def increment_at(self, price: int, base_price: int) -> int:
        for step, multiplier in zip(self.steps, self.tier_multipliers):
            if price < base_price * multiplier:
                return step
        return self.steps[-1]

    def minimum_next(self, current_price: Optional[int], base_price: int) -> int:
        """
        Lowest amount the next bid may carry.

        Args:
            current_price: Leading bid, or None if nobody has bid yet
            base_price: Player's base price (the opening minimum)
        """
        if current_price is None:
            return base_price
        return current_price + self.increment_at(current_price, base_price)

    @classmethod
    def from_value(cls, value) -> 'IncrementRule':
        """Build from a single increment or a list of tiered increments."""
        if value is None:
            return cls()
        if isinstance(value, (list, tuple)):
            return cls(steps=tuple(int(v) for v in value))
        return cls(steps=(int(value),))

    def to_dict(self) -> dict:
        return {
            'steps': list(self.steps),
            'tier_multipliers': list(self.tier_multipliers)
        }


@dataclass(frozen=True)
class SessionSettings:
    """Per-auction rules, defaulted from config."""

    time_per_item: float = config.DEFAULT_TIME_PER_ITEM
    increment_rule: IncrementRule = field(default_factory=IncrementRule)
    min_purse: int = config.MIN_PURSE
    min_bid_amount: int = config.MIN_BID_AMOUNT
    min_roster_size: int = config.MIN_PLAYERS_PER_TEAM
    max_roster_size: Optional[int] = config.MAX_PLAYERS_PER_TEAM
    enforce_roster_reserve: bool = config.ENFORCE_ROSTER_RESERVE
    auto_advance_seconds: Optional[float] = config.AUTO_ADVANCE_SECONDS

    def __post_init__(self):
        if self.time_per_item <= 0:
            raise ValueError(f"time_per_item must be positive: {self.time_per_item}")

    def to_dict(self) -> dict:
        return {
            'time_per_player': self.time_per_item,
            'bid_increment': list(self.increment_rule.steps),
            'min_purse': self.min_purse,
            'min_bid_amount': self.min_bid_amount,
            'min_players_per_team': self.min_roster_size,
            'max_players_per_team': self.max_roster_size,
            'enforce_roster_reserve': self.enforce_roster_reserve,
            'auto_advance_seconds': self.auto_advance_seconds
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SessionSettings':
        """Create settings from an auction record, falling back to config."""
        return cls(
            time_per_item=float(data.get('time_per_player', config.DEFAULT_TIME_PER_ITEM)),
            increment_rule=IncrementRule.from_value(data.get('bid_increment')),
            min_purse=int(data.get('min_purse', config.MIN_PURSE)),
            min_bid_amount=int(data.get('min_bid_amount', config.MIN_BID_AMOUNT)),
            min_roster_size=int(data.get('min_players_per_team', config.MIN_PLAYERS_PER_TEAM)),
            max_roster_size=data.get('max_players_per_team', config.MAX_PLAYERS_PER_TEAM),
            enforce_roster_reserve=bool(
                data.get('enforce_roster_reserve', config.ENFORCE_ROSTER_RESERVE)
            ),
            auto_advance_seconds=data.get('auto_advance_seconds', config.AUTO_ADVANCE_SECONDS)
        )


# ===== Auction states =====

@dataclass(frozen=True)
class Idle:
    """Session created, waiting for the admin to start it."""

    phase = 'idle'


@dataclass(frozen=True)
class ItemOpen:
    """A player is on the block and the clock is running."""

    item_id: str
    phase = 'itemOpen'


@dataclass(frozen=True)
class ItemResolving:
    """The clock ran out; the player is sold or unsold, waiting to advance."""

    item_id: str
    phase = 'itemResolving'


@dataclass(frozen=True)
class SessionComplete:
    """Terminal. Reason is 'exhausted' or 'forced'."""

    reason: str = 'exhausted'
    phase = 'sessionComplete'


AuctionState = Union[Idle, ItemOpen, ItemResolving, SessionComplete]
