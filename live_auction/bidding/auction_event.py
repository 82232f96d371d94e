"""
Bids and the outbound deltas broadcast to connected clients.

``Bid`` and ``ItemResolved`` are the durable facts of an auction; the other
classes are the messages of the client-facing event vocabulary. Every outbound
message serializes to a dict with a ``type`` key.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import json

SOLD = 'sold'
UNSOLD = 'unsold'


@dataclass(frozen=True)
class Bid:
    """An accepted bid. Never edited or deleted once appended."""

    item_id: str
    team_id: str
    amount: int
    sequence: int             # 1, 2, 3... per item
    timestamp: datetime

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'item_id': self.item_id,
            'team_id': self.team_id,
            'amount': self.amount,
            'sequence': self.sequence,
            'timestamp': self.timestamp.isoformat()
        }


@dataclass(frozen=True)
class AuctionDelta:
    """Base for outbound messages."""

    TYPE = 'delta'

    def payload(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        return {'type': self.TYPE, **self.payload()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass(frozen=True)
class ItemResolved(AuctionDelta):
    """Terminal outcome of a player. Also the record kept in the sale log."""

    TYPE = 'itemResolved'

    item_id: str
    outcome: str                 # 'sold' or 'unsold'
    price: Optional[int]
    winner: Optional[str]
    timestamp: datetime
    auction_id: str = ''

    @property
    def is_sale(self) -> bool:
        return self.outcome == SOLD

    def payload(self) -> dict:
        return {
            'item': self.item_id,
            'outcome': self.outcome,
            'price': self.price,
            'winner': self.winner,
            'timestamp': self.timestamp.isoformat()
        }

    def to_record(self) -> dict:
        """Dictionary written to the sale log."""
        return {
            'auction_id': self.auction_id,
            'item_id': self.item_id,
            'outcome': self.outcome,
            'price': self.price,
            'winner': self.winner,
            'timestamp': self.timestamp.isoformat()
        }

    @classmethod
    def from_record(cls, data: dict) -> 'ItemResolved':
        """Create ItemResolved from a sale log record."""
        outcome = data['outcome']
        if outcome not in (SOLD, UNSOLD):
            raise ValueError(f"Unknown outcome: {outcome}")
        return cls(
            item_id=data['item_id'],
            outcome=outcome,
            price=data.get('price'),
            winner=data.get('winner'),
            timestamp=datetime.fromisoformat(data['timestamp']),
            auction_id=data.get('auction_id', '')
        )

    def to_record_json(self) -> str:
        return json.dumps(self.to_record())

    @classmethod
    def from_record_json(cls, json_str: str) -> 'ItemResolved':
        return cls.from_record(json.loads(json_str))


@dataclass(frozen=True)
class BidAccepted(AuctionDelta):
    TYPE = 'bidAccepted'

    item_id: str
    price: int
    leader: str
    time_remaining: float
    sequence: int

    def payload(self) -> dict:
        return {
            'item': self.item_id,
            'price': self.price,
            'leader': self.leader,
            'timeRemaining': round(self.time_remaining, 3),
            'sequence': self.sequence
        }


@dataclass(frozen=True)
class ItemAdvanced(AuctionDelta):
    TYPE = 'itemAdvanced'

    item: dict
    time_remaining: float

    def payload(self) -> dict:
        return {'item': self.item, 'timeRemaining': round(self.time_remaining, 3)}


@dataclass(frozen=True)
class SessionCompleted(AuctionDelta):
    TYPE = 'sessionComplete'

    reason: str
    unsold_item: Optional[str] = None

    def payload(self) -> dict:
        return {'reason': self.reason, 'unsoldItem': self.unsold_item}


@dataclass(frozen=True)
class ClockPaused(AuctionDelta):
    TYPE = 'clockPaused'

    item_id: str
    time_remaining: float

    def payload(self) -> dict:
        return {'item': self.item_id, 'timeRemaining': round(self.time_remaining, 3)}


@dataclass(frozen=True)
class ClockResumed(ClockPaused):
    TYPE = 'clockResumed'


@dataclass(frozen=True)
class BidRejected(AuctionDelta):
    """Sent only to the client whose intent was rejected."""

    TYPE = 'bidRejected'

    reason: str
    message: str = ''

    def payload(self) -> dict:
        return {'reason': self.reason, 'message': self.message}


@dataclass(frozen=True)
class Snapshot(AuctionDelta):
    """Full authoritative state, sent on connect and on request."""

    TYPE = 'snapshot'

    state: dict

    def payload(self) -> dict:
        return {'state': self.state}


