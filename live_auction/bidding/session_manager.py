"""
Single-writer runners for live auction sessions.

Each AuctionSessionRunner owns one AuctionStateMachine and feeds it intents
from a single asyncio queue, one at a time, in the order they were received.
Bids from every team, admin controls, clock expiries and automatic advances
all wait in the same queue, so no two intents are ever validated against the
same snapshot of the auction.

The SessionManager keeps one runner per auction id.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from .auction_event import ItemResolved
from .auction_state_machine import AuctionStateMachine
from .broadcast_channel import BroadcastChannel, ClientConnection, Closer, Sender
from .budget_ledger import BudgetLedger
from .errors import AuctionError, InvalidIntent, InvalidTransition
from .event_store import SaleEventStore, create_session_filepath
from .item_sequencer import ItemSequencer
from .rest_client import AuctionApiClient, RemoteResultSink
from .session_clock import ExpiryToken, SessionClock
from .session_models import SYSTEM, ClientIdentity, ItemResolving
from .session_setup import SessionSetup
from .. import config

logger = logging.getLogger(__name__)

# Inbound intents
SUBMIT_BID = 'submitBid'
START_SESSION = 'startSession'
ADVANCE_ITEM = 'advanceItem'
FORCE_END = 'forceEnd'
PAUSE_CLOCK = 'pauseClock'
RESUME_CLOCK = 'resumeClock'
REGISTER_TEAM = 'registerTeam'
SNAPSHOT = 'snapshot'

# System-only intents
CLOCK_EXPIRED = 'clockExpired'
AUTO_ADVANCE = 'autoAdvance'

CLIENT_INTENTS = (
    SUBMIT_BID, START_SESSION, ADVANCE_ITEM, FORCE_END,
    PAUSE_CLOCK, RESUME_CLOCK, REGISTER_TEAM, SNAPSHOT,
)


class SessionAlreadyActiveError(Exception):
    """An auction with this id is already running."""


class NoActiveSessionError(Exception):
    """No auction with this id is running."""


@dataclass
class Intent:
    kind: str
    actor: ClientIdentity
    payload: Dict[str, Any] = field(default_factory=dict)
    future: Optional[asyncio.Future] = None


class AuctionSessionRunner:
    """Serializes every intent for one auction through its state machine."""

    def __init__(
        self,
        setup: SessionSetup,
        event_store: Optional[SaleEventStore] = None,
        result_sinks: Iterable[Callable[[ItemResolved], None]] = (),
        completion_listeners: Iterable[Callable[[str], None]] = (),
        time_source: Callable[[], float] = time.monotonic,
        timer_factory: Optional[Callable] = None
    ):
        """
        Build the session from its setup. Call ``start()`` to begin taking intents.

        Args:
            setup: Players, teams and rules
            event_store: Sale log; existing outcomes are replayed before start
            result_sinks: Extra listeners for sold/unsold outcomes
            completion_listeners: Called with the auction id once the session completes
            time_source: Monotonic clock for the countdown
            timer_factory: Timer backend for the countdown (default: asyncio)
        """
        self.auction_id = setup.auction_id
        self.settings = setup.settings
        self.created_at = datetime.now()

        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._auto_advance_handle: Optional[asyncio.TimerHandle] = None
        self._closed = False
        self.intents_processed = 0
        self.intents_rejected = 0

        self.clock = SessionClock(
            on_expire=self._on_clock_expired,
            time_source=time_source,
            timer_factory=timer_factory
        )
        budgets = BudgetLedger(setup.settings)
        for team in setup.teams:
            budgets.register(team.team_id, team.team_name, team.purse)

        self.state_machine = AuctionStateMachine(
            auction_id=setup.auction_id,
            settings=setup.settings,
            sequencer=ItemSequencer(setup.items),
            budgets=budgets,
            clock=self.clock,
            name=setup.name
        )

        self.event_store = event_store
        if event_store is not None:
            event_store.replay(self.state_machine)
            self.state_machine.add_resolution_listener(event_store.append_event)

        self._result_sinks = list(result_sinks)
        for sink in self._result_sinks:
            self.state_machine.add_resolution_listener(sink)
        self._completion_listeners = list(completion_listeners)
        self._completion_reported = False

        self.channel = BroadcastChannel(self.auction_id, self.state_machine.snapshot)
        self.state_machine.set_publisher(self.channel.publish)

        self._handlers = {
            SUBMIT_BID: self._handle_submit_bid,
            START_SESSION: lambda intent: self.state_machine.start_session(intent.actor),
            ADVANCE_ITEM: lambda intent: self.state_machine.advance_to_next_item(intent.actor),
            FORCE_END: self._handle_force_end,
            PAUSE_CLOCK: lambda intent: self.state_machine.pause_clock(intent.actor),
            RESUME_CLOCK: lambda intent: self.state_machine.resume_clock(intent.actor),
            REGISTER_TEAM: self._handle_register_team,
            SNAPSHOT: lambda intent: self.state_machine.snapshot(),
            CLOCK_EXPIRED: self._handle_clock_expired,
            AUTO_ADVANCE: self._handle_auto_advance,
        }

    # ===== Lifecycle =====

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run())
        logger.info(f"Session runner for auction {self.auction_id} started")

    async def stop(self) -> None:
        """Stop taking intents and disconnect every client. State is kept."""
        self._closed = True
        self._cancel_auto_advance()
        self.clock.stop()

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        # Intents still queued will never run
        while not self._queue.empty():
            intent = self._queue.get_nowait()
            if intent.future is not None and not intent.future.done():
                intent.future.set_exception(InvalidTransition("Auction session closed"))
            self._queue.task_done()

        await self.channel.close()
        for sink in self._result_sinks:
            if isinstance(sink, RemoteResultSink):
                await sink.drain()

        logger.info(
            f"Session runner for auction {self.auction_id} stopped "
            f"({self.intents_processed} intents, {self.intents_rejected} rejected)"
        )

    # ===== Intents =====

    async def submit(
        self,
        actor: ClientIdentity,
        kind: str,
        payload: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Queue an intent and wait for the state machine's answer.

        Returns:
            Whatever the state machine operation returned

        Raises:
            AuctionError: If the intent was rejected
        """
        if kind not in CLIENT_INTENTS:
            raise InvalidIntent(f"Unknown intent: {kind}")
        if self._closed:
            raise InvalidTransition("Auction session closed")

        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(Intent(kind, actor, payload or {}, future))
        return await future

    async def wait_idle(self) -> None:
        """Wait until every queued intent has been processed."""
        await self._queue.join()

    def join(
        self,
        identity: ClientIdentity,
        sender: Sender,
        closer: Optional[Closer] = None
    ) -> ClientConnection:
        return self.channel.connect(identity, sender, closer)

    async def leave(self, connection: ClientConnection) -> None:
        await self.channel.disconnect(connection)

    def _enqueue_system(self, kind: str, payload: Dict[str, Any]) -> None:
        if self._closed:
            return
        self._queue.put_nowait(Intent(kind, SYSTEM, payload))

    async def _run(self) -> None:
        while True:
            intent = await self._queue.get()
            try:
                result = self._dispatch(intent)
            except AuctionError as e:
                self.intents_rejected += 1
                if intent.future is None:
                    logger.debug(f"Ignored {intent.kind}: {e.message}")
                else:
                    logger.info(
                        f"Rejected {intent.kind} from {intent.actor.principal_id}: "
                        f"{e.reason} ({e.message})"
                    )
                    if not intent.future.done():
                        intent.future.set_exception(e)
            except Exception as e:
                logger.error(f"Unexpected error handling {intent.kind}: {e}", exc_info=True)
                if intent.future is not None and not intent.future.done():
                    intent.future.set_exception(e)
            else:
                if intent.future is not None and not intent.future.done():
                    intent.future.set_result(result)
                self._report_completion()
            finally:
                self.intents_processed += 1
                self._queue.task_done()

    def _report_completion(self) -> None:
        if self._completion_reported or not self.state_machine.is_complete:
            return
        self._completion_reported = True
        for listener in self._completion_listeners:
            try:
                listener(self.auction_id)
            except Exception as e:
                logger.error(
                    f"Completion listener failed for auction {self.auction_id}: {e}",
                    exc_info=True
                )

    def _dispatch(self, intent: Intent) -> Any:
        handler = self._handlers.get(intent.kind)
        if handler is None:
            raise InvalidIntent(f"Unknown intent: {intent.kind}")
        return handler(intent)

    # ===== Handlers =====

    def _handle_submit_bid(self, intent: Intent):
        try:
            amount = int(intent.payload['amount'])
        except (KeyError, TypeError, ValueError):
            raise InvalidIntent("submitBid requires an integer amount")
        return self.state_machine.submit_bid(intent.actor, amount, intent.payload.get('item'))

    def _handle_register_team(self, intent: Intent):
        payload = intent.payload
        try:
            team_id = str(payload['team_id'])
            purse = int(payload['purse'])
        except (KeyError, TypeError, ValueError):
            raise InvalidIntent("registerTeam requires team_id and an integer purse")
        return self.state_machine.register_team(
            intent.actor, team_id, payload.get('team_name') or team_id, purse
        )

    def _handle_force_end(self, intent: Intent):
        self.state_machine.force_end(intent.actor)
        self._cancel_auto_advance()
        return self.state_machine.snapshot()

    def _handle_clock_expired(self, intent: Intent):
        event = self.state_machine.on_clock_expire(intent.payload['token'])
        if event is not None and self.settings.auto_advance_seconds is not None:
            self._schedule_auto_advance(event.item_id)
        return event

    def _handle_auto_advance(self, intent: Intent):
        # The admin may have advanced (or ended) in the meantime
        if self.state_machine.state != ItemResolving(intent.payload['item_id']):
            logger.debug(f"Auto-advance from {intent.payload['item_id']} no longer applies")
            return None
        return self.state_machine.advance_to_next_item(SYSTEM)

    def _on_clock_expired(self, token: ExpiryToken) -> None:
        self._enqueue_system(CLOCK_EXPIRED, {'token': token})

    def _schedule_auto_advance(self, item_id: str) -> None:
        self._cancel_auto_advance()
        self._auto_advance_handle = asyncio.get_running_loop().call_later(
            self.settings.auto_advance_seconds,
            self._enqueue_system,
            AUTO_ADVANCE,
            {'item_id': item_id}
        )

    def _cancel_auto_advance(self) -> None:
        if self._auto_advance_handle is not None:
            self._auto_advance_handle.cancel()
            self._auto_advance_handle = None

    def to_dict(self) -> dict:
        state_machine = self.state_machine
        return {
            'auction_id': self.auction_id,
            'name': state_machine.name,
            'status': state_machine.status.value,
            'phase': state_machine.state.phase,
            'queue': state_machine.sequencer.counts(),
            'teams': len(state_machine.budgets.teams),
            'connected_clients': len(self.channel.connections),
            'intents_processed': self.intents_processed,
            'intents_rejected': self.intents_rejected,
            'created_at': self.created_at.isoformat()
        }


class SessionManager:
    """Registry of running auction sessions, one per auction id."""

    def __init__(
        self,
        events_dir: Optional[Path] = Path(config.AUCTION_EVENTS_DIR),
        api_client: Optional[AuctionApiClient] = None,
        record_remotely: bool = config.RECORD_RESULTS_REMOTELY,
        max_sessions: int = config.MAX_SESSIONS
    ):
        """
        Initialize an empty registry.

        Args:
            events_dir: Directory for sale logs (None disables the log)
            api_client: Backend client for setup and result recording
            record_remotely: Report each outcome to the backend
            max_sessions: Maximum number of concurrently running sessions
        """
        self.events_dir = Path(events_dir) if events_dir is not None else None
        self.api_client = api_client
        self.record_remotely = record_remotely
        self.max_sessions = max_sessions
        self._runners: Dict[str, AuctionSessionRunner] = {}

    async def open_session(self, setup: SessionSetup) -> AuctionSessionRunner:
        """
        Create and start a runner for an auction.

        Raises:
            SessionAlreadyActiveError: If the auction is already running or the
                session limit is reached
        """
        existing = self._runners.get(setup.auction_id)
        if existing is not None:
            if not existing.state_machine.is_complete:
                raise SessionAlreadyActiveError(
                    f"Auction {setup.auction_id} is already running"
                )
            await self.close_session(setup.auction_id)

        if len(self._runners) >= self.max_sessions:
            raise SessionAlreadyActiveError(
                f"Session limit of {self.max_sessions} reached"
            )

        event_store = None
        if self.events_dir is not None:
            event_store = SaleEventStore(create_session_filepath(self.events_dir, setup.auction_id))

        sinks = []
        completion_listeners = []
        if self.record_remotely and self.api_client is not None:
            remote = RemoteResultSink(self.api_client)
            sinks.append(remote)
            completion_listeners.append(remote.session_completed)

        runner = AuctionSessionRunner(
            setup,
            event_store=event_store,
            result_sinks=sinks,
            completion_listeners=completion_listeners
        )
        await runner.start()
        self._runners[setup.auction_id] = runner

        logger.info(
            f"Opened auction {setup.auction_id}: {len(setup.items)} players, "
            f"{len(setup.teams)} teams"
        )
        return runner

    async def open_from_backend(self, auction_id: str) -> AuctionSessionRunner:
        """Fetch setup from the backend (off the event loop) and open the session."""
        if self.api_client is None:
            raise RuntimeError("No backend client configured")
        loop = asyncio.get_running_loop()
        setup = await loop.run_in_executor(None, self.api_client.fetch_setup, auction_id)
        return await self.open_session(setup)

    def get(self, auction_id: str) -> AuctionSessionRunner:
        runner = self._runners.get(auction_id)
        if runner is None:
            raise NoActiveSessionError(f"No session for auction {auction_id}")
        return runner

    async def close_session(self, auction_id: str) -> AuctionSessionRunner:
        runner = self.get(auction_id)
        await runner.stop()
        del self._runners[auction_id]
        return runner

    async def close_all(self) -> None:
        for auction_id in list(self._runners):
            await self.close_session(auction_id)

    def list_sessions(self) -> List[dict]:
        return [runner.to_dict() for runner in self._runners.values()]
