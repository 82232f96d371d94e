"""
Ordered queue of players for one auction session.
"""

import logging
from typing import Iterable, List, Optional

from .session_models import Item, ItemStatus

logger = logging.getLogger(__name__)


class ItemSequencer:
    """Walks the queue in order, activating one pending player at a time."""

    def __init__(self, items: Iterable[Item] = ()):
        self._items: List[Item] = []
        self._by_id = {}
        self._cursor = -1
        for item in items:
            self.add(item)

    def add(self, item: Item) -> None:
        """
        Append a player to the end of the queue.

        Raises:
            ValueError: If the item id is already queued
        """
        if item.item_id in self._by_id:
            raise ValueError(f"Item {item.item_id} is already queued")
        self._items.append(item)
        self._by_id[item.item_id] = item

    def get(self, item_id: str) -> Item:
        if item_id not in self._by_id:
            raise KeyError(f"Unknown item_id: {item_id}")
        return self._by_id[item_id]

    @property
    def items(self) -> List[Item]:
        return list(self._items)

    @property
    def current(self) -> Optional[Item]:
        """The active player, if any."""
        if 0 <= self._cursor < len(self._items):
            item = self._items[self._cursor]
            if item.status == ItemStatus.ACTIVE:
                return item
        return None

    def pending(self) -> List[Item]:
        return [item for item in self._items if item.status == ItemStatus.PENDING]

    def has_next(self) -> bool:
        return any(item.status == ItemStatus.PENDING for item in self._items)

    def activate_next(self) -> Optional[Item]:
        """
        Activate the next pending player in queue order.

        Returns:
            The newly active Item, or None if the queue is exhausted

        Raises:
            RuntimeError: If a player is still active
        """
        if self.current is not None:
            raise RuntimeError(f"Item {self.current.item_id} is still active")

        for index, item in enumerate(self._items):
            if item.status == ItemStatus.PENDING:
                item.status = ItemStatus.ACTIVE
                self._cursor = index
                logger.info(
                    f"Now on the block: {item.name} ({item.item_id}), "
                    f"base {item.base_price} [{index + 1}/{len(self._items)}]"
                )
                return item

        return None

    def resolve(
        self,
        item_id: str,
        status: ItemStatus,
        winner: Optional[str] = None,
        price: Optional[int] = None
    ) -> Item:
        """
        Close a player as sold or unsold.

        Raises:
            ValueError: If the item is already closed or the status is not terminal
        """
        if status not in (ItemStatus.SOLD, ItemStatus.UNSOLD):
            raise ValueError(f"Not a terminal status: {status}")

        item = self.get(item_id)
        if item.is_closed:
            raise ValueError(f"Item {item_id} is already {item.status.value}")

        item.status = status
        item.winning_team = winner if status == ItemStatus.SOLD else None
        item.final_price = price if status == ItemStatus.SOLD else None
        return item

    def counts(self) -> dict:
        counts = {status.value: 0 for status in ItemStatus}
        for item in self._items:
            counts[item.status.value] += 1
        return counts

    def __len__(self) -> int:
        return len(self._items)
