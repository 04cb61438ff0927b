from __future__ import annotations


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket could not be located."""


class InvalidTicketTransitionError(TicketServiceError):
    """Raised when a lifecycle event is not legal from the ticket's current state."""


class AlreadyAcceptedError(InvalidTicketTransitionError):
    """Raised when another administrator has already claimed the ticket."""


class EmptyMessageError(TicketServiceError, ValueError):
    """Raised when a chat message has no visible content."""


class TicketNotMessageableError(TicketServiceError):
    """Raised when posting to a ticket that is not accepted or in progress."""


class ConcurrentModificationError(TicketServiceError):
    """Raised when a ticket keeps changing underneath an update after all retries."""
