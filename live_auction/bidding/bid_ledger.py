"""
Append-only log of accepted bids, one sequence per player.

The ledger keeps a head pointer per item so the current price and leader are
available without scanning the history. The head is replaced in the same step
as the append, so readers never see a price that is not in the history.
"""

import logging
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from .auction_event import Bid
from .errors import StaleBid

logger = logging.getLogger(__name__)


class BidHistory:
    """
    Read-only view of an item's bids, most recent first.

    The view is fixed at the length the history had when it was taken, so
    iterating is finite even if bids arrive meanwhile, and it can be iterated
    any number of times.
    """

    def __init__(self, bids: List[Bid]):
        self._bids = bids
        self._count = len(bids)

    def __iter__(self) -> Iterator[Bid]:
        for index in range(self._count - 1, -1, -1):
            yield self._bids[index]

    def __len__(self) -> int:
        return self._count

    def oldest_first(self) -> Iterator[Bid]:
        """Iterate in acceptance order."""
        for index in range(self._count):
            yield self._bids[index]

    def latest(self, limit: int) -> List[Bid]:
        result = []
        for bid in self:
            if len(result) >= limit:
                break
            result.append(bid)
        return result


class BidLedger:
    """Per-item ordered log of accepted bids."""

    def __init__(self):
        self._bids: Dict[str, List[Bid]] = {}
        self._heads: Dict[str, Bid] = {}

    def append(
        self,
        item_id: str,
        team_id: str,
        amount: int,
        timestamp: Optional[datetime] = None
    ) -> Bid:
        """
        Append an accepted bid.

        Args:
            item_id: Player being bid on
            team_id: Bidding team
            amount: Bid amount, must beat the current head
            timestamp: Acceptance time (default: now)

        Returns:
            The appended Bid with its sequence number

        Raises:
            StaleBid: If amount does not exceed the current price
        """
        head = self._heads.get(item_id)
        if head is not None and amount <= head.amount:
            raise StaleBid(
                f"Bid of {amount} does not beat current price {head.amount}"
            )

        bid = Bid(
            item_id=item_id,
            team_id=team_id,
            amount=amount,
            sequence=1 if head is None else head.sequence + 1,
            timestamp=timestamp or datetime.now()
        )
        self._bids.setdefault(item_id, []).append(bid)
        self._heads[item_id] = bid

        logger.debug(f"Bid #{bid.sequence} on {item_id}: {team_id} → {amount}")
        return bid

    def head(self, item_id: str) -> Optional[Bid]:
        return self._heads.get(item_id)

    def current_price(self, item_id: str, default: Optional[int] = None) -> Optional[int]:
        head = self._heads.get(item_id)
        return head.amount if head is not None else default

    def current_leader(self, item_id: str) -> Optional[str]:
        head = self._heads.get(item_id)
        return head.team_id if head is not None else None

    def bid_count(self, item_id: str) -> int:
        return len(self._bids.get(item_id, []))

    def history(self, item_id: str) -> BidHistory:
        return BidHistory(self._bids.get(item_id, []))
