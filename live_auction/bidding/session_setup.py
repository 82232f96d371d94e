"""
Load the initial player queue and team purses for an auction session.

Setup arrives either as an API payload, from the tournament backend, or from
CSV files prepared ahead of auction day. All three produce a SessionSetup.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .budget_ledger import BudgetLedger
from .session_models import Item, SessionSettings

logger = logging.getLogger(__name__)

ITEM_COLUMNS_REQUIRED = ['item_id', 'name', 'base_price']
TEAM_COLUMNS_REQUIRED = ['team_id', 'team_name', 'purse']


@dataclass
class TeamEntry:
    """A team to register with its purse."""
    team_id: str
    team_name: str
    purse: int


@dataclass
class SessionSetup:
    """Everything needed to open an auction session."""
    auction_id: str
    name: str = ''
    settings: SessionSettings = field(default_factory=SessionSettings)
    items: List[Item] = field(default_factory=list)
    teams: List[TeamEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> 'SessionSetup':
        """
        Create setup from a JSON payload.

        Expected keys: auction_id, name, settings (auction record fields such
        as time_per_player and bid_increment), items, teams.
        """
        return cls(
            auction_id=str(data['auction_id']),
            name=data.get('name', ''),
            settings=SessionSettings.from_dict(data.get('settings', {})),
            items=[Item.from_dict(item) for item in data.get('items', [])],
            teams=[
                TeamEntry(
                    team_id=str(team['team_id']),
                    team_name=team.get('team_name', str(team['team_id'])),
                    purse=int(team['purse'])
                )
                for team in data.get('teams', [])
            ]
        )


def _validate_columns(df: pd.DataFrame, required: List[str], source: Path) -> None:
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"{source} is missing required columns: {missing}")


def load_setup_from_csv(
    auction_id: str,
    items_csv: Path,
    teams_csv: Path,
    settings: Optional[SessionSettings] = None,
    name: str = ''
) -> SessionSetup:
    """
    Load players and teams from CSV files.

    Args:
        auction_id: Auction identifier
        items_csv: CSV with item_id, name, base_price (optional: role)
        teams_csv: CSV with team_id, team_name, purse
        settings: Session rules (default: config values)
        name: Display name of the auction

    Returns:
        SessionSetup with players in file order

    Raises:
        ValueError: If required columns are missing or ids repeat
    """
    items_csv, teams_csv = Path(items_csv), Path(teams_csv)

    items_df = pd.read_csv(items_csv, dtype={'item_id': str})
    _validate_columns(items_df, ITEM_COLUMNS_REQUIRED, items_csv)
    if items_df['item_id'].duplicated().any():
        dupes = items_df.loc[items_df['item_id'].duplicated(), 'item_id'].tolist()
        raise ValueError(f"Duplicate item_id values in {items_csv}: {dupes}")

    teams_df = pd.read_csv(teams_csv, dtype={'team_id': str})
    _validate_columns(teams_df, TEAM_COLUMNS_REQUIRED, teams_csv)
    if teams_df['team_id'].duplicated().any():
        dupes = teams_df.loc[teams_df['team_id'].duplicated(), 'team_id'].tolist()
        raise ValueError(f"Duplicate team_id values in {teams_csv}: {dupes}")

    has_role = 'role' in items_df.columns
    items = [
        Item(
            item_id=row['item_id'],
            name=row['name'],
            base_price=int(row['base_price']),
            role=row['role'] if has_role and pd.notna(row['role']) else None
        )
        for row in items_df.to_dict('records')
    ]
    teams = [
        TeamEntry(team_id=row['team_id'], team_name=row['team_name'], purse=int(row['purse']))
        for row in teams_df.to_dict('records')
    ]

    logger.info(f"Loaded {len(items)} players from {items_csv}, {len(teams)} teams from {teams_csv}")

    return SessionSetup(
        auction_id=auction_id,
        name=name,
        settings=settings or SessionSettings(),
        items=items,
        teams=teams
    )


def team_summary_frame(budgets: BudgetLedger) -> pd.DataFrame:
    """
    Summary statistics for all teams.

    Returns:
        DataFrame with team_id, team_name, players, spent, remaining_budget,
        total_purse, sorted by team_id
    """
    columns = ['team_id', 'team_name', 'players', 'spent', 'remaining_budget', 'total_purse']
    rows = budgets.summary()
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(rows, columns=columns).sort_values('team_id').reset_index(drop=True)
