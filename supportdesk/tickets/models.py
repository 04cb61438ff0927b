from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from .state import TicketStatus


class SenderType(str, Enum):
    """Author role of a chat message."""

    ADMIN = "admin"
    REQUESTER = "requester"


class HistoryStatus(str, Enum):
    """Structured status changes recorded in a ticket's history."""

    RESOLVED = "resolved"
    REOPENED = "reopened"


@dataclass(frozen=True, slots=True)
class Message:
    """Single chat message appended to a ticket."""

    id: str
    ticket_id: str
    sender_type: SenderType
    sender_id: str
    sender_display_name: str
    text: str
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class StatusHistoryEntry:
    """Append-only record of a resolve or reopen transition."""

    status: HistoryStatus
    performed_by: str | None
    performed_by_name: str
    timestamp: datetime
    reason: str | None = None


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a support ticket with its conversation and history."""

    id: str
    subject: str
    category: str
    priority: str
    requester_id: str
    requester_name: str
    status: TicketStatus
    created_at: datetime
    updated_at: datetime
    origin: str = "web"
    assigned_admin: str | None = None
    assigned_admin_name: str | None = None
    accepted_at: datetime | None = None
    resolved_at: datetime | None = None
    resolution: str | None = None
    rejection_reason: str | None = None
    messages: tuple[Message, ...] = ()
    status_history: tuple[StatusHistoryEntry, ...] = ()
    version: int = 1

    @property
    def reference(self) -> str:
        """Short human readable identifier shown in the console."""

        return f"CHAT-{self.id[-8:].upper()}"

    @property
    def response_time(self) -> timedelta | None:
        if self.accepted_at is None:
            return None
        return self.accepted_at - self.created_at

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None
