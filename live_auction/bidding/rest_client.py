"""
Client for the tournament backend's REST API.

The backend owns auctions, players and team registrations. The coordinator
reads the setup once when a session is opened and reports each outcome after
it happens; it never consults the backend while bids are being taken.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

import requests

from .auction_event import ItemResolved
from .session_models import Item, SessionSettings
from .session_setup import SessionSetup, TeamEntry
from .. import config

logger = logging.getLogger(__name__)


class AuctionApiClient:
    """Client for the auctions/players/teams endpoints."""

    def __init__(
        self,
        base_url: str = config.API_BASE_URL,
        token: Optional[str] = config.API_TOKEN,
        timeout: int = config.API_TIMEOUT,
        max_retries: int = config.API_MAX_RETRIES
    ):
        """
        Initialize client.

        Args:
            base_url: Backend base URL, e.g. http://localhost:5000/api
            token: Service bearer token
            timeout: Request timeout in seconds
            max_retries: Attempts per request before giving up
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries

        # Session for connection pooling
        self.session = requests.Session()
        if token:
            self.session.headers['Authorization'] = f'Bearer {token}'

    def fetch_setup(self, auction_id: str) -> SessionSetup:
        """
        Fetch an auction with its queued players and registered teams.

        Raises:
            requests.RequestException: On API failure
            KeyError: If a record lacks a required field
        """
        auction = self._make_request('GET', f"/auctions/{auction_id}")
        players = self._make_request('GET', f"/auctions/{auction_id}/players") or []
        teams = self._make_request('GET', f"/auctions/{auction_id}/teams") or []

        setup = SessionSetup(
            auction_id=str(auction_id),
            name=auction.get('auction_name') or auction.get('name', ''),
            settings=SessionSettings.from_dict(auction),
            items=self._parse_players(players),
            teams=self._parse_teams(teams)
        )
        logger.info(
            f"Fetched auction {auction_id}: {len(setup.items)} players, {len(setup.teams)} teams"
        )
        return setup

    def record_result(self, event: ItemResolved) -> Dict:
        """Report a sold/unsold outcome to the backend."""
        path = f"/auctions/{event.auction_id}/players/{event.item_id}/result"
        response = self._make_request('POST', path, json=event.to_record())
        logger.info(f"Recorded {event.outcome} result for {event.item_id} with backend")
        return response

    def end_auction(self, auction_id: str) -> Dict:
        """Tell the backend the auction is over."""
        response = self._make_request('POST', f"/auctions/{auction_id}/end", json={})
        logger.info(f"Marked auction {auction_id} completed with backend")
        return response

    def _parse_players(self, players: List[Dict]) -> List[Item]:
        items = []
        for player in players:
            try:
                items.append(Item(
                    item_id=str(player.get('id', player.get('player_id'))),
                    name=player.get('name') or player.get('player_name', ''),
                    base_price=int(player.get('base_price', config.MIN_BID_AMOUNT)),
                    role=player.get('role')
                ))
            except (TypeError, ValueError) as e:
                logger.error(f"Failed to parse player: {e}\nData: {player}")
        return items

    def _parse_teams(self, teams: List[Dict]) -> List[TeamEntry]:
        entries = []
        for team in teams:
            purse = team.get('purse_amount', team.get('total_budget', team.get('budget')))
            if purse is None:
                logger.error(f"Team record has no purse, skipping: {team}")
                continue
            team_id = str(team.get('team_id', team.get('id')))
            entries.append(TeamEntry(
                team_id=team_id,
                team_name=team.get('team_name', team_id),
                purse=int(purse)
            ))
        return entries

    def _make_request(self, method: str, path: str, json: Optional[Dict] = None):
        """
        Make HTTP request with retries.

        Raises:
            requests.RequestException: After all retries exhausted
        """
        url = f"{self.base_url}{path}"
        for attempt in range(1, self.max_retries + 1):
            try:
                logger.debug(f"{method} {url} (attempt {attempt}/{self.max_retries})")
                response = self.session.request(method, url, json=json, timeout=self.timeout)
                response.raise_for_status()
                if not response.content:
                    return {}
                return response.json()

            except requests.Timeout:
                logger.warning(f"Request timeout (attempt {attempt}/{self.max_retries})")
                if attempt == self.max_retries:
                    raise
                time.sleep(2 ** attempt)

            except requests.RequestException as e:
                logger.error(f"Request failed (attempt {attempt}/{self.max_retries}): {e}")
                if attempt == self.max_retries:
                    raise
                time.sleep(2 ** attempt)

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()


class RemoteResultSink:
    """
    Resolution and completion listener that reports to the backend without
    blocking the event loop.

    The blocking HTTP call runs in the loop's default executor; failures are
    logged and never reach the auction.
    """

    def __init__(self, client: AuctionApiClient):
        self.client = client
        self._pending = set()

    def __call__(self, event: ItemResolved) -> None:
        self._submit(self.client.record_result, event)

    def session_completed(self, auction_id: str) -> None:
        """Completion listener: mark the auction over on the backend."""
        self._submit(self.client.end_auction, auction_id)

    def _submit(self, call, argument) -> None:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, call, argument)
        self._pending.add(future)
        future.add_done_callback(self._done)

    def _done(self, future) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Failed to report to backend: {error}")

    async def drain(self) -> None:
        """Wait for outstanding reports (used on shutdown)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
