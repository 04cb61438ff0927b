from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .models import Ticket


class UpdateType(str, Enum):
    """Kinds of committed mutation announced to administrative subscribers."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RESOLVED = "resolved"
    REOPENED = "reopened"
    MESSAGE_ADDED = "message_added"


@dataclass(frozen=True, slots=True)
class TicketUpdateEvent:
    """Notification published after a ticket mutation has been committed."""

    ticket_id: str
    update_type: UpdateType
    snapshot: Ticket


class EventBroadcaster(Protocol):
    """Fan-out capability injected into the ticket service."""

    async def publish(self, event: TicketUpdateEvent) -> None:
        ...


class NullBroadcaster:
    """Broadcaster that drops every event."""

    async def publish(self, event: TicketUpdateEvent) -> None:
        return None
