"""Ticket lifecycle, messaging and timeline reconciliation."""

from .errors import (
    AlreadyAcceptedError,
    ConcurrentModificationError,
    EmptyMessageError,
    InvalidTicketTransitionError,
    TicketNotFoundError,
    TicketNotMessageableError,
    TicketServiceError,
)
from .events import EventBroadcaster, NullBroadcaster, TicketUpdateEvent, UpdateType
from .grouping import MessagePresentation, group_messages
from .models import HistoryStatus, Message, SenderType, StatusHistoryEntry, Ticket
from .repository import InMemoryTicketStore, PostgresTicketStore, TicketStore
from .service import PostedMessage, TicketService
from .state import LifecycleEvent, TicketStateMachine, TicketStatus
from .timeline import TimelineKind, TimelineNode, reconcile_timeline

__all__ = [
    "AlreadyAcceptedError",
    "ConcurrentModificationError",
    "EmptyMessageError",
    "EventBroadcaster",
    "HistoryStatus",
    "InMemoryTicketStore",
    "InvalidTicketTransitionError",
    "LifecycleEvent",
    "Message",
    "MessagePresentation",
    "NullBroadcaster",
    "PostedMessage",
    "PostgresTicketStore",
    "SenderType",
    "StatusHistoryEntry",
    "Ticket",
    "TicketNotFoundError",
    "TicketNotMessageableError",
    "TicketService",
    "TicketServiceError",
    "TicketStateMachine",
    "TicketStatus",
    "TicketStore",
    "TicketUpdateEvent",
    "TimelineKind",
    "TimelineNode",
    "UpdateType",
    "group_messages",
    "reconcile_timeline",
]
