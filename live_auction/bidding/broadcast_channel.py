"""
Fan-out of authoritative deltas to the clients connected to one auction.

Each connection gets a bounded outbound queue drained by its own task, so
``publish`` never waits on the network: the state has already changed by the
time a delta is handed over, and a slow socket can only delay its own client.
A client whose queue overflows or whose socket fails is dropped; when it
reconnects it receives a fresh snapshot instead of the deltas it missed.
"""

import asyncio
import itertools
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

from .auction_event import AuctionDelta, Snapshot
from .session_models import ClientIdentity
from .. import config

logger = logging.getLogger(__name__)

Sender = Callable[[dict], Awaitable[None]]

# Tells the transport to hang up on the client, with one of the reasons below
Closer = Callable[[str], Awaitable[None]]

# Close reasons
CLOSE_LAGGING = 'lagging'
CLOSE_SESSION_ENDED = 'sessionClosed'

_connection_ids = itertools.count(1)


class ClientConnection:
    """One connected client and its outbound queue."""

    def __init__(
        self,
        identity: ClientIdentity,
        sender: Sender,
        queue_size: int = config.CLIENT_QUEUE_SIZE,
        on_closed: Optional[Callable[['ClientConnection'], None]] = None,
        closer: Optional[Closer] = None
    ):
        self.connection_id = next(_connection_ids)
        self.identity = identity
        self._sender = sender
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._on_closed = on_closed
        self._closer = closer
        self._task: Optional[asyncio.Task] = None
        self.closed = False

    def start(self) -> None:
        self._task = asyncio.create_task(self._drain())

    def offer(self, message: dict) -> bool:
        """Queue a message. Returns False if the client is closed or too far behind."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                f"Client {self.connection_id} ({self.identity.principal_id}) "
                f"is {self._queue.qsize()} messages behind, dropping"
            )
            return False
        return True

    async def flush(self) -> None:
        """Wait until every queued message has been handed to the sender."""
        await self._queue.join()

    async def close(self, reason: Optional[str] = None) -> None:
        """
        Stop delivering messages.

        Args:
            reason: When given, the transport is asked to hang up on the client
                so it reconnects; None when the client already went away
        """
        if self.closed:
            return
        self.closed = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

        if reason is not None and self._closer is not None:
            try:
                await self._closer(reason)
            except Exception as e:
                logger.debug(f"Client {self.connection_id} already gone on close ({reason}): {e}")

    async def _drain(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._sender(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"Send to client {self.connection_id} failed: {e}; disconnecting"
                )
                self.closed = True
                if self._on_closed is not None:
                    self._on_closed(self)
                return
            finally:
                self._queue.task_done()


class BroadcastChannel:
    """Versioned delta stream for one auction."""

    def __init__(
        self,
        auction_id: str,
        snapshot_provider: Callable[[], dict],
        queue_size: int = config.CLIENT_QUEUE_SIZE
    ):
        """
        Initialize an empty channel.

        Args:
            auction_id: Auction identifier (for logging)
            snapshot_provider: Returns the current full state
            queue_size: Outbound buffer per client
        """
        self.auction_id = auction_id
        self._snapshot_provider = snapshot_provider
        self._queue_size = queue_size
        self._connections: Dict[int, ClientConnection] = {}
        self._closing: Set[asyncio.Task] = set()
        self.version = 0

    @property
    def connections(self) -> List[ClientConnection]:
        return list(self._connections.values())

    def connect(
        self,
        identity: ClientIdentity,
        sender: Sender,
        closer: Optional[Closer] = None
    ) -> ClientConnection:
        """
        Register a client and queue its initial snapshot.

        Must be called from the session's event loop. ``closer`` hangs up
        the client's transport when the channel drops it or shuts down.
        """
        connection = ClientConnection(
            identity,
            sender,
            queue_size=self._queue_size,
            on_closed=self._forget,
            closer=closer
        )
        self._connections[connection.connection_id] = connection
        connection.start()
        self.send_snapshot(connection)

        logger.info(
            f"Client {connection.connection_id} joined auction {self.auction_id} "
            f"as {identity.role.value} {identity.team_id or identity.principal_id} "
            f"({len(self._connections)} connected)"
        )
        return connection

    async def disconnect(self, connection: ClientConnection) -> None:
        self._forget(connection)
        await connection.close()
        logger.info(
            f"Client {connection.connection_id} left auction {self.auction_id} "
            f"({len(self._connections)} connected)"
        )

    def publish(self, delta: AuctionDelta) -> int:
        """
        Fan a delta out to every connected client.

        Returns:
            Number of clients the delta was queued for
        """
        message = self._stamp(delta)
        delivered = 0
        dead = []
        for connection in self._connections.values():
            if connection.offer(message):
                delivered += 1
            else:
                dead.append(connection)

        for connection in dead:
            self._drop(connection)

        logger.debug(f"Published {delta.TYPE} v{self.version} to {delivered} clients")
        return delivered

    def send_to(self, connection: ClientConnection, delta: AuctionDelta) -> bool:
        """Queue a delta for one client only (rejections, requested snapshots)."""
        if not connection.offer(self._stamp(delta, advance=False)):
            self._drop(connection)
            return False
        return True

    def send_snapshot(self, connection: ClientConnection) -> bool:
        return self.send_to(connection, Snapshot(state=self._snapshot_provider()))

    async def close(self) -> None:
        """Hang up on every client and wait for pending drops to finish."""
        for connection in self.connections:
            self._forget(connection)
            await connection.close(CLOSE_SESSION_ENDED)
        if self._closing:
            await asyncio.gather(*self._closing)
        logger.info(f"Closed broadcast channel for auction {self.auction_id}")

    def _stamp(self, delta: AuctionDelta, advance: bool = True) -> dict:
        if advance:
            self.version += 1
        message = delta.to_dict()
        message['version'] = self.version
        message['auctionId'] = self.auction_id
        return message

    def _drop(self, connection: ClientConnection) -> None:
        self._forget(connection)
        task = asyncio.get_running_loop().create_task(connection.close(CLOSE_LAGGING))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def _forget(self, connection: ClientConnection) -> None:
        self._connections.pop(connection.connection_id, None)
