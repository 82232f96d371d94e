"""
Team purses and roster counts for one auction session.

Bids only ever *check* the ledger (``reserve``); the purse is debited once per
player when the player is sold (``commit``). Commits are keyed by item id so a
replayed resolution never debits twice.
"""

import logging
from typing import Dict, List, Optional, Tuple

from .auction_event import ItemResolved
from .errors import DuplicateCommit, RegistrationError
from .session_models import SessionSettings, TeamRegistration

logger = logging.getLogger(__name__)


class BudgetLedger:
    """Remaining purse and roster size per registered team."""

    def __init__(self, settings: SessionSettings):
        """
        Initialize an empty ledger.

        Args:
            settings: Session rules (minimum purse, roster sizes, reserve policy)
        """
        self.settings = settings
        self.teams: Dict[str, TeamRegistration] = {}
        self._commits: Dict[str, Tuple[str, int]] = {}   # item_id -> (team_id, price)

    def register(
        self,
        team_id: str,
        team_name: str,
        purse: int
    ) -> TeamRegistration:
        """
        Register a team with its purse.

        Raises:
            RegistrationError: If the team is already registered or the purse
                is below the session minimum
        """
        if team_id in self.teams:
            raise RegistrationError(f"Team {team_id} is already registered")
        if purse < self.settings.min_purse:
            raise RegistrationError(
                f"Purse {purse} is below the minimum of {self.settings.min_purse}"
            )

        team = TeamRegistration(
            team_id=team_id,
            team_name=team_name,
            total_purse=purse,
            max_roster_size=self.settings.max_roster_size
        )
        self.teams[team_id] = team

        logger.info(f"Registered {team_name} ({team_id}) with purse {purse}")
        return team

    def is_registered(self, team_id: Optional[str]) -> bool:
        return team_id is not None and team_id in self.teams

    def get(self, team_id: str) -> TeamRegistration:
        if team_id not in self.teams:
            raise KeyError(f"Unknown team_id: {team_id}")
        return self.teams[team_id]

    def remaining_budget(self, team_id: str) -> int:
        return self.get(team_id).remaining_budget

    def shortfall(self, team_id: str, amount: int) -> Optional[str]:
        """
        Explain why a team cannot carry a bid of ``amount``.

        Returns:
            None if the bid is affordable, otherwise a human-readable reason
        """
        team = self.teams.get(team_id)
        if team is None:
            return f"Team {team_id} is not registered"

        if amount > team.remaining_budget:
            return (
                f"Bid of {amount} exceeds remaining budget of {team.remaining_budget}"
            )

        if team.roster_full:
            return f"Roster is full ({team.players_acquired} players)"

        if self.settings.enforce_roster_reserve:
            slots_after = max(0, self.settings.min_roster_size - (team.players_acquired + 1))
            reserve = slots_after * self.settings.min_bid_amount
            if team.remaining_budget - amount < reserve:
                return (
                    f"Bid of {amount} leaves {team.remaining_budget - amount}, "
                    f"but {reserve} is needed to fill {slots_after} more roster spots"
                )

        return None

    def reserve(self, team_id: str, amount: int) -> bool:
        """Check whether the team could pay ``amount``. Does not mutate."""
        return self.shortfall(team_id, amount) is None

    def commit(self, item_id: str, team_id: str, amount: int) -> TeamRegistration:
        """
        Debit a sale from the winning team.

        Args:
            item_id: Player that was sold
            team_id: Winning team
            amount: Final price

        Returns:
            Updated TeamRegistration

        Raises:
            DuplicateCommit: If a sale was already committed for item_id
            ValueError: If the team cannot pay (budget or roster exhausted)
        """
        if item_id in self._commits:
            raise DuplicateCommit(
                f"Sale of {item_id} already committed to {self._commits[item_id][0]}"
            )

        team = self.get(team_id)
        team.add_purchase(item_id, amount)
        self._commits[item_id] = (team_id, amount)

        logger.info(
            f"Committed {item_id} → {team.team_name} ({amount}) | "
            f"remaining {team.remaining_budget}, {team.players_acquired} players"
        )
        return team

    def apply_resolution(self, event: ItemResolved) -> bool:
        """
        Apply a resolved item, ignoring repeats.

        Returns:
            True if the budget changed, False for unsold items and replays
        """
        if not event.is_sale:
            return False

        try:
            self.commit(event.item_id, event.winner, event.price)
        except DuplicateCommit as e:
            logger.debug(f"Ignoring replayed resolution: {e}")
            return False
        return True

    def validate(self) -> None:
        """
        Validate purse consistency for every team.

        Raises:
            ValueError: If any team's books do not balance
        """
        for team in self.teams.values():
            if team.remaining_budget < 0:
                raise ValueError(f"{team.team_id} has negative budget {team.remaining_budget}")
            if team.remaining_budget != team.total_purse - team.total_spent():
                raise ValueError(
                    f"Budget mismatch for {team.team_id}: remaining {team.remaining_budget}, "
                    f"purse {team.total_purse}, spent {team.total_spent()}"
                )
            if team.players_acquired != len(team.purchases):
                raise ValueError(
                    f"Roster mismatch for {team.team_id}: {team.players_acquired} acquired, "
                    f"{len(team.purchases)} purchases"
                )

    def summary(self) -> List[dict]:
        """Team summary rows sorted by team_id."""
        rows = []
        for team_id, team in self.teams.items():
            rows.append({
                'team_id': team_id,
                'team_name': team.team_name,
                'players': team.players_acquired,
                'spent': team.total_spent(),
                'remaining_budget': team.remaining_budget,
                'total_purse': team.total_purse
            })
        rows.sort(key=lambda r: r['team_id'])
        return rows
