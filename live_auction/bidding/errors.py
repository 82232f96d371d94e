"""
Rejection and failure types raised by the bidding coordinator.

Every error carries a ``reason`` that is sent to the client as-is in a
``bidRejected`` message.
"""


class AuctionError(Exception):
    """Base class for all coordinator errors."""

    reason = 'auctionError'

    def __init__(self, message: str = ''):
        super().__init__(message or self.reason)
        self.message = message or self.reason


class InvalidTransition(AuctionError):
    """Intent is not valid in the session's current state."""

    reason = 'invalidTransition'


class StaleBid(AuctionError):
    """Bid does not beat the current price (or the next acceptable price)."""

    reason = 'staleBid'


class SelfOutbid(AuctionError):
    """The current leader tried to raise its own leading bid."""

    reason = 'selfOutbid'


class InsufficientBudget(AuctionError):
    """Team cannot afford the bid under the budget and roster rules."""

    reason = 'insufficientBudget'


class Unauthorized(AuctionError):
    """Sender is unauthenticated or lacks the role for the intent."""

    reason = 'unauthorized'


class InvalidIntent(AuctionError):
    """Inbound message could not be parsed into a known intent."""

    reason = 'invalidIntent'


class RegistrationError(AuctionError):
    """Team registration rejected (duplicate, purse too small, too late)."""

    reason = 'registrationRejected'


class DuplicateCommit(AuctionError):
    """A sale was committed twice for the same item. Internal only."""

    reason = 'duplicateCommit'
