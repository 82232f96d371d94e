"""
FastAPI server for live auction sessions.

HTTP endpoints open, control and inspect auction sessions; the WebSocket
endpoint is the broadcast channel through which connected clients submit
intents and receive every authoritative delta.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware

from .. import config
from .api_serializers import (
    BidHistoryResponse,
    BidResponse,
    CreateAuctionRequest,
    RegisterTeamRequest,
    SessionStatusResponse,
    SubmitBidRequest,
    TeamSummaryResponse,
    parse_intent,
    serialize_bid_history,
    serialize_team_summary,
)
from .auction_event import BidRejected
from .auth import TokenAuthenticator
from .broadcast_channel import CLOSE_LAGGING, CLOSE_SESSION_ENDED, ClientConnection
from .errors import AuctionError, InvalidIntent, Unauthorized
from .rest_client import AuctionApiClient
from .session_manager import (
    ADVANCE_ITEM,
    FORCE_END,
    PAUSE_CLOCK,
    REGISTER_TEAM,
    RESUME_CLOCK,
    SNAPSHOT,
    START_SESSION,
    SUBMIT_BID,
    AuctionSessionRunner,
    NoActiveSessionError,
    SessionAlreadyActiveError,
    SessionManager,
)
from .session_models import ClientIdentity
from .session_setup import team_summary_frame

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Live Auction Bidding API",
    description="Run live player auctions: bids, clock and results",
    version="1.0.0"
)

# CORS middleware for web UI access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global collaborators, replaced in tests
api_client = AuctionApiClient()
session_manager = SessionManager(Path(config.AUCTION_EVENTS_DIR), api_client=api_client)
authenticator = TokenAuthenticator.from_file(Path(config.AUTH_TOKENS_FILE))

REJECTION_STATUS = {
    'unauthorized': 403,
    'invalidTransition': 409,
    'staleBid': 409,
    'selfOutbid': 409,
    'insufficientBudget': 409,
    'registrationRejected': 409,
    'invalidIntent': 422,
}


def get_identity(authorization: Optional[str] = Header(None)) -> ClientIdentity:
    """Resolve the ``Authorization: Bearer`` header to a client identity."""
    try:
        return authenticator.authenticate_header(authorization)
    except Unauthorized as e:
        raise HTTPException(status_code=401, detail=e.message)


def _rejection(e: AuctionError) -> HTTPException:
    return HTTPException(
        status_code=REJECTION_STATUS.get(e.reason, 400),
        detail={'reason': e.reason, 'message': e.message}
    )


def _get_runner(auction_id: str) -> AuctionSessionRunner:
    try:
        return session_manager.get(auction_id)
    except NoActiveSessionError as e:
        logger.warning(f"Auction lookup failed: {e}")
        raise HTTPException(status_code=404, detail=str(e))


async def _control(auction_id: str, identity: ClientIdentity, kind: str, action: str) -> SessionStatusResponse:
    """Run an admin control intent and report the resulting session state."""
    runner = _get_runner(auction_id)
    try:
        logger.info(f"{identity.principal_id} requested {kind} on auction {auction_id}")
        await runner.submit(identity, kind)
        return SessionStatusResponse(
            success=True,
            message=f"Auction {auction_id} {action}",
            session=runner.state_machine.snapshot()
        )

    except AuctionError as e:
        logger.warning(f"Cannot {kind} auction {auction_id}: {e.message}")
        raise _rejection(e)

    except Exception as e:
        logger.error(f"Failed to {kind} auction {auction_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to {kind}: {e}")


# ===== Session Lifecycle =====

@app.post("/auctions", response_model=SessionStatusResponse)
async def create_auction(request: CreateAuctionRequest, identity: ClientIdentity = Depends(get_identity)):
    """
    Open a new auction session from a setup payload.

    Replays the auction's sale log if one exists, so reopening a crashed
    auction resumes it.

    Raises:
        403 Forbidden: If the caller is not the admin
        409 Conflict: If a session for this auction is already running
        422 Unprocessable Entity: If the teams or the sale log are invalid
    """
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Only the admin may open an auction")

    try:
        logger.info(
            f"Opening auction {request.auction_id}: {len(request.items)} players, "
            f"{len(request.teams)} teams"
        )
        runner = await session_manager.open_session(request.to_setup())
        return SessionStatusResponse(
            success=True,
            message=f"Auction {request.auction_id} opened",
            session=runner.state_machine.snapshot()
        )

    except SessionAlreadyActiveError as e:
        logger.warning(f"Cannot open auction: {e}")
        raise HTTPException(status_code=409, detail=str(e))

    except AuctionError as e:
        logger.warning(f"Cannot open auction {request.auction_id}: {e.message}")
        raise HTTPException(status_code=422, detail={'reason': e.reason, 'message': e.message})

    except Exception as e:
        logger.error(f"Failed to open auction: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to open auction: {e}")


@app.post("/auctions/{auction_id}/load", response_model=SessionStatusResponse)
async def load_auction(auction_id: str, identity: ClientIdentity = Depends(get_identity)):
    """
    Open an auction session with setup fetched from the tournament backend.

    Raises:
        403 Forbidden: If the caller is not the admin
        409 Conflict: If a session for this auction is already running
        422 Unprocessable Entity: If the teams or the sale log are invalid
        502 Bad Gateway: If the backend could not be reached
    """
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Only the admin may open an auction")

    try:
        runner = await session_manager.open_from_backend(auction_id)
        return SessionStatusResponse(
            success=True,
            message=f"Auction {auction_id} loaded from backend",
            session=runner.state_machine.snapshot()
        )

    except SessionAlreadyActiveError as e:
        logger.warning(f"Cannot open auction: {e}")
        raise HTTPException(status_code=409, detail=str(e))

    except AuctionError as e:
        logger.warning(f"Cannot open auction {auction_id}: {e.message}")
        raise HTTPException(status_code=422, detail={'reason': e.reason, 'message': e.message})

    except Exception as e:
        logger.error(f"Failed to load auction {auction_id}: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail=f"Failed to load auction: {e}")


@app.delete("/auctions/{auction_id}", response_model=SessionStatusResponse)
async def close_auction(auction_id: str, identity: ClientIdentity = Depends(get_identity)):
    """
    Stop the session runner and disconnect its clients.

    The sale log is kept; opening the auction again resumes from it.

    Raises:
        404 Not Found: If no session is running for the auction
    """
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Only the admin may close an auction")

    try:
        runner = await session_manager.close_session(auction_id)
        return SessionStatusResponse(
            success=True,
            message=f"Auction {auction_id} closed",
            session=runner.to_dict()
        )

    except NoActiveSessionError as e:
        logger.warning(f"Cannot close auction: {e}")
        raise HTTPException(status_code=404, detail=str(e))

    except Exception as e:
        logger.error(f"Failed to close auction: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to close auction: {e}")


@app.post("/auctions/{auction_id}/teams", response_model=SessionStatusResponse)
async def register_team(
    auction_id: str,
    request: RegisterTeamRequest,
    identity: ClientIdentity = Depends(get_identity)
):
    """
    Register a team before the auction starts.

    Team owners may register their own team; the admin may register any.

    Raises:
        409 Conflict: If the team is already registered or the auction started
    """
    runner = _get_runner(auction_id)
    try:
        team = await runner.submit(identity, REGISTER_TEAM, request.model_dump())
        return SessionStatusResponse(
            success=True,
            message=f"Team {team.team_id} registered with purse {team.total_purse}",
            session=team.to_dict()
        )

    except AuctionError as e:
        logger.warning(f"Cannot register team {request.team_id}: {e.message}")
        raise _rejection(e)


@app.post("/auctions/{auction_id}/start", response_model=SessionStatusResponse)
async def start_auction(auction_id: str, identity: ClientIdentity = Depends(get_identity)):
    """Open the first player and start the clock (admin)."""
    return await _control(auction_id, identity, START_SESSION, "started")


@app.post("/auctions/{auction_id}/advance", response_model=SessionStatusResponse)
async def advance_auction(auction_id: str, identity: ClientIdentity = Depends(get_identity)):
    """Move from a resolved player to the next one, or complete the auction (admin)."""
    return await _control(auction_id, identity, ADVANCE_ITEM, "advanced")


@app.post("/auctions/{auction_id}/end", response_model=SessionStatusResponse)
async def end_auction(auction_id: str, identity: ClientIdentity = Depends(get_identity)):
    """End the auction now. A player still open is closed unsold (admin)."""
    return await _control(auction_id, identity, FORCE_END, "ended")


@app.post("/auctions/{auction_id}/pause", response_model=SessionStatusResponse)
async def pause_auction(auction_id: str, identity: ClientIdentity = Depends(get_identity)):
    """Freeze the clock of the open player (admin)."""
    return await _control(auction_id, identity, PAUSE_CLOCK, "paused")


@app.post("/auctions/{auction_id}/resume", response_model=SessionStatusResponse)
async def resume_auction(auction_id: str, identity: ClientIdentity = Depends(get_identity)):
    """Restart a frozen clock (admin)."""
    return await _control(auction_id, identity, RESUME_CLOCK, "resumed")


# ===== Bidding =====

@app.post("/auctions/{auction_id}/bids", response_model=BidResponse)
async def submit_bid(
    auction_id: str,
    request: SubmitBidRequest,
    identity: ClientIdentity = Depends(get_identity)
):
    """
    Submit a bid without a WebSocket connection.

    The bid goes through the same queue as WebSocket bids and is broadcast the
    same way when accepted.

    Raises:
        403 Forbidden: If the caller is not a registered team owner
        409 Conflict: If the bid is stale, unaffordable, self-outbidding or no
            player is open
    """
    runner = _get_runner(auction_id)
    payload = {'amount': request.amount}
    if request.item_id is not None:
        payload['item'] = request.item_id

    try:
        bid = await runner.submit(identity, SUBMIT_BID, payload)
        return BidResponse(success=True, bid=bid.to_dict())

    except AuctionError as e:
        logger.info(f"Bid from {identity.team_id} rejected: {e.reason}")
        raise _rejection(e)


# ===== Views =====

@app.get("/auctions/{auction_id}/snapshot")
def get_snapshot(auction_id: str):
    """Full authoritative state of the auction."""
    runner = _get_runner(auction_id)
    return runner.state_machine.snapshot()


@app.get("/auctions/{auction_id}/teams", response_model=List[TeamSummaryResponse])
def get_team_summary(auction_id: str):
    """Spend, remaining purse and roster count per team, sorted by team_id."""
    runner = _get_runner(auction_id)
    try:
        frame = team_summary_frame(runner.state_machine.budgets)
        return serialize_team_summary(frame.to_dict('records'))

    except Exception as e:
        logger.error(f"Failed to build team summary: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to build team summary: {e}")


@app.get("/auctions/{auction_id}/bids/{item_id}", response_model=BidHistoryResponse)
def get_bid_history(auction_id: str, item_id: str, limit: Optional[int] = None):
    """
    Accepted bids for one player, most recent first.

    Raises:
        404 Not Found: If the player is not in this auction
    """
    runner = _get_runner(auction_id)
    try:
        history = runner.state_machine.history(item_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown player: {item_id}")
    return serialize_bid_history(item_id, history, limit)


@app.get("/sessions")
def list_sessions():
    """Status of every running auction session."""
    return {'sessions': session_manager.list_sessions()}


@app.get("/health")
def health_check():
    """
    Simple health check endpoint.

    Returns:
        Status OK if server is running
    """
    return {
        "status": "ok",
        "service": "Live Auction Bidding API",
        "version": "1.0.0"
    }


# ===== WebSocket =====

# Dropped clients are told to reconnect for a fresh snapshot
CLOSE_CODES = {
    CLOSE_LAGGING: status.WS_1013_TRY_AGAIN_LATER,
    CLOSE_SESSION_ENDED: status.WS_1001_GOING_AWAY,
}


async def _handle_message(runner: AuctionSessionRunner, connection: ClientConnection, text: str) -> None:
    """Run one inbound message; rejections go back to this client only."""
    try:
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            raise InvalidIntent("Message is not valid JSON")

        kind, payload = parse_intent(message)
        if kind == SNAPSHOT:
            runner.channel.send_snapshot(connection)
            return
        await runner.submit(connection.identity, kind, payload)

    except AuctionError as e:
        runner.channel.send_to(connection, BidRejected(reason=e.reason, message=e.message))


@app.websocket("/auctions/{auction_id}/ws")
async def auction_socket(websocket: WebSocket, auction_id: str, token: Optional[str] = None):
    """
    Broadcast channel transport.

    The client authenticates with ``?token=``; unauthenticated connections are
    closed with a policy violation before they are accepted. A snapshot is the
    first message every client receives.
    """
    try:
        identity = authenticator.authenticate(token)
        runner = session_manager.get(auction_id)
    except (Unauthorized, NoActiveSessionError) as e:
        logger.warning(f"Refusing WebSocket for auction {auction_id}: {e}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async def hang_up(reason: str) -> None:
        await websocket.close(code=CLOSE_CODES[reason], reason=reason)

    await websocket.accept()
    connection = runner.join(identity, websocket.send_json, hang_up)
    try:
        while not connection.closed:
            text = await websocket.receive_text()
            await _handle_message(runner, connection, text)

    except WebSocketDisconnect:
        logger.debug(f"Client {connection.connection_id} disconnected")

    finally:
        await runner.leave(connection)


# Startup event
@app.on_event("startup")
async def startup_event():
    """Log startup message."""
    logger.info("Live Auction API server started")
    logger.info(f"Sale log directory: {config.AUCTION_EVENTS_DIR}")
    logger.info(f"Backend: {config.API_BASE_URL}")


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    """Stop every running session on shutdown."""
    logger.info("Live Auction API server shutting down")

    try:
        await session_manager.close_all()
    except Exception as e:
        logger.error(f"Error stopping sessions during shutdown: {e}")

    api_client.close()
