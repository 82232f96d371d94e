"""
Request/response models for the auction API and WebSocket intents.

Inbound messages are validated here before they reach a session runner; a
message that fails validation never enters the intent queue.
"""

from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from .bid_ledger import BidHistory
from .errors import InvalidIntent
from .session_setup import SessionSetup
from .. import config


# ========== Session Setup ==========

class ItemPayload(BaseModel):
    """A player to put on the auction queue."""
    item_id: str
    name: str
    base_price: int = Field(config.MIN_BID_AMOUNT, gt=0, description="Opening minimum bid")
    role: Optional[str] = Field(None, description="batter, bowler, all-rounder, keeper")


class TeamPayload(BaseModel):
    """A team and the purse it brings to the auction."""
    team_id: str
    team_name: Optional[str] = None
    purse: int = Field(..., ge=0)


class SettingsPayload(BaseModel):
    """Per-auction rules. Omitted fields fall back to config."""
    time_per_player: float = Field(config.DEFAULT_TIME_PER_ITEM, gt=0, description="Seconds per player")
    bid_increment: Union[int, List[int]] = Field(
        config.DEFAULT_BID_INCREMENT,
        description="Flat increment, or tiered increments by multiple of base price"
    )
    min_purse: int = Field(config.MIN_PURSE, ge=0)
    min_bid_amount: int = Field(config.MIN_BID_AMOUNT, gt=0)
    min_players_per_team: int = Field(config.MIN_PLAYERS_PER_TEAM, ge=0)
    max_players_per_team: Optional[int] = Field(config.MAX_PLAYERS_PER_TEAM, gt=0)
    enforce_roster_reserve: bool = config.ENFORCE_ROSTER_RESERVE
    auto_advance_seconds: Optional[float] = Field(
        config.AUTO_ADVANCE_SECONDS,
        ge=0,
        description="Advance automatically this long after each result (None: admin advances)"
    )


class CreateAuctionRequest(BaseModel):
    """Request model for opening an auction session."""
    auction_id: str = Field(..., description="Auction identifier")
    name: str = Field('', description="Display name")
    settings: SettingsPayload = Field(default_factory=SettingsPayload)
    items: List[ItemPayload] = Field(default_factory=list, description="Players in auction order")
    teams: List[TeamPayload] = Field(default_factory=list)

    @field_validator('items')
    @classmethod
    def unique_item_ids(cls, items: List[ItemPayload]) -> List[ItemPayload]:
        seen = set()
        for item in items:
            if item.item_id in seen:
                raise ValueError(f"Player {item.item_id} is listed more than once")
            seen.add(item.item_id)
        return items

    def to_setup(self) -> SessionSetup:
        data = self.model_dump()
        for team in data['teams']:
            if team['team_name'] is None:
                team['team_name'] = team['team_id']
        return SessionSetup.from_dict(data)


class RegisterTeamRequest(BaseModel):
    """Request model for registering a team before the start."""
    team_id: str
    team_name: Optional[str] = None
    purse: int = Field(..., ge=0)


class SubmitBidRequest(BaseModel):
    """Request model for the REST bid fallback."""
    amount: int = Field(..., gt=0, description="Bid amount")
    item_id: Optional[str] = Field(None, description="Player the bidder believes is on the block")


# ========== Responses ==========

class SessionStatusResponse(BaseModel):
    """Response model for session operations."""
    success: bool = Field(..., description="Whether operation succeeded")
    message: str = Field(..., description="Human-readable status message")
    session: Optional[Dict] = Field(None, description="Session state details")


class BidResponse(BaseModel):
    """Response for an accepted bid."""
    success: bool
    bid: Dict = Field(..., description="The accepted bid")


class TeamSummaryResponse(BaseModel):
    """Per-team spend and roster counts."""
    team_id: str
    team_name: str
    players: int
    spent: int
    remaining_budget: int
    total_purse: int


class BidHistoryResponse(BaseModel):
    """Bid history for one player, most recent first."""
    item_id: str
    total_bids: int
    bids: List[Dict]


def serialize_team_summary(rows: List[Dict[str, Any]]) -> List[TeamSummaryResponse]:
    return [
        TeamSummaryResponse(
            team_id=str(row['team_id']),
            team_name=str(row['team_name']),
            players=int(row['players']),
            spent=int(row['spent']),
            remaining_budget=int(row['remaining_budget']),
            total_purse=int(row['total_purse'])
        )
        for row in rows
    ]


def serialize_bid_history(item_id: str, history: BidHistory, limit: Optional[int] = None) -> BidHistoryResponse:
    bids = history.latest(limit) if limit is not None else list(history)
    return BidHistoryResponse(
        item_id=item_id,
        total_bids=len(history),
        bids=[bid.to_dict() for bid in bids]
    )


# ========== WebSocket Intents ==========

class SubmitBidIntent(BaseModel):
    amount: int = Field(..., gt=0)
    item: Optional[str] = None


class RegisterTeamIntent(BaseModel):
    team_id: str
    team_name: Optional[str] = None
    purse: int = Field(..., ge=0)


class EmptyIntent(BaseModel):
    pass


INTENT_MODELS = {
    'submitBid': SubmitBidIntent,
    'registerTeam': RegisterTeamIntent,
    'startSession': EmptyIntent,
    'advanceItem': EmptyIntent,
    'forceEnd': EmptyIntent,
    'pauseClock': EmptyIntent,
    'resumeClock': EmptyIntent,
    'snapshot': EmptyIntent,
}


def parse_intent(message: Any) -> Tuple[str, Dict[str, Any]]:
    """
    Validate an inbound WebSocket message.

    Args:
        message: Decoded JSON, e.g. ``{"type": "submitBid", "amount": 250000}``

    Returns:
        Tuple of (intent type, validated payload)

    Raises:
        InvalidIntent: If the message is not a known, well-formed intent
    """
    if not isinstance(message, dict):
        raise InvalidIntent("Intent must be a JSON object")

    kind = message.get('type')
    model = INTENT_MODELS.get(kind)
    if model is None:
        raise InvalidIntent(f"Unknown intent type: {kind}")

    fields = {key: value for key, value in message.items() if key != 'type'}
    try:
        payload = model.model_validate(fields)
    except ValidationError as e:
        errors = '; '.join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise InvalidIntent(f"Invalid {kind}: {errors}")

    return kind, payload.model_dump(exclude_none=True)
