"""Reconstruct a ticket's activity timeline.

Status changes are recorded twice in older tickets: once as a structured
``status_history`` entry and once as an admin chat notice ("Ticket has been
resolved"). The reconciler emits one node per structured entry and links it to the
matching notice when one was posted within the correlation window, so consumers can
jump from the timeline into the conversation without ever seeing the duplicate.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Sequence

from .models import HistoryStatus, Message, SenderType, StatusHistoryEntry, Ticket

DEFAULT_CORRELATION_WINDOW = timedelta(seconds=5)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class TimelineKind(str, Enum):
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    RESOLVED = "resolved"
    REOPENED = "reopened"


_TITLES: dict[TimelineKind, str] = {
    TimelineKind.SUBMITTED: "Ticket Submitted",
    TimelineKind.ACCEPTED: "Ticket Accepted",
    TimelineKind.RESOLVED: "Ticket has been resolved",
    TimelineKind.REOPENED: "Ticket Reopened",
}

# Ties on timestamp are ordered by this priority, then by input order.
_PRIORITY: dict[TimelineKind, int] = {
    TimelineKind.SUBMITTED: 0,
    TimelineKind.ACCEPTED: 1,
    TimelineKind.RESOLVED: 2,
    TimelineKind.REOPENED: 2,
}

_KEYWORDS: dict[HistoryStatus, tuple[str, ...]] = {
    HistoryStatus.RESOLVED: ("resolved", "closed"),
    HistoryStatus.REOPENED: ("reopened",),
}


@dataclass(frozen=True, slots=True)
class TimelineNode:
    """Presentation-ready event in a ticket's history."""

    kind: TimelineKind
    title: str
    timestamp: datetime
    linked_message_id: str | None = None
    reason: str | None = None


def reconcile_timeline(
    ticket: Ticket, *, window: timedelta = DEFAULT_CORRELATION_WINDOW
) -> list[TimelineNode]:
    """Merge a ticket's status history and messages into one ascending timeline.

    The function is pure: the same snapshot always yields the same list. Missing or
    malformed correlation data produces unlinked nodes, never errors or dropped nodes.
    """

    messages = [message for message in ticket.messages if _as_utc(getattr(message, "timestamp", None))]
    nodes: list[tuple[datetime, int, int, TimelineNode]] = []

    def add(node: TimelineNode) -> None:
        nodes.append((node.timestamp, _PRIORITY[node.kind], len(nodes), node))

    created_at = _as_utc(ticket.created_at) or _EPOCH
    first = messages[0] if messages else None
    submitted_link = None
    if first is not None and _within(_as_utc(first.timestamp), created_at, window):
        submitted_link = first.id
    add(_node(TimelineKind.SUBMITTED, created_at, submitted_link))

    first_admin = next((m for m in messages if m.sender_type == SenderType.ADMIN), None)
    if first_admin is not None:
        add(_node(TimelineKind.ACCEPTED, _as_utc(first_admin.timestamp), first_admin.id))

    claimed: set[str] = set()
    for entry in ticket.status_history:
        kind = _history_kind(entry)
        if kind is None:
            continue
        entry_time = _as_utc(entry.timestamp)
        linked = None
        if entry_time is not None:
            match = _find_notice(messages, entry, entry_time, window, claimed)
            if match is not None:
                claimed.add(match.id)
                linked = match.id
        add(_node(kind, entry_time or created_at, linked, getattr(entry, "reason", None)))

    nodes.sort(key=lambda item: item[:3])
    return [node for *_, node in nodes]


def _node(
    kind: TimelineKind, timestamp: datetime, linked: str | None, reason: str | None = None
) -> TimelineNode:
    return TimelineNode(
        kind=kind,
        title=_TITLES[kind],
        timestamp=timestamp,
        linked_message_id=linked,
        reason=reason,
    )


def _history_kind(entry: StatusHistoryEntry) -> TimelineKind | None:
    try:
        status = HistoryStatus(getattr(entry, "status", None))
    except ValueError:
        return None
    return TimelineKind(status.value)


def _find_notice(
    messages: Sequence[Message],
    entry: StatusHistoryEntry,
    entry_time: datetime,
    window: timedelta,
    claimed: set[str],
) -> Message | None:
    keywords = _KEYWORDS[HistoryStatus(entry.status)]
    for message in messages:
        if message.sender_type != SenderType.ADMIN or message.id in claimed:
            continue
        if not _within(_as_utc(message.timestamp), entry_time, window):
            continue
        text = (message.text or "").lower()
        if any(keyword in text for keyword in keywords):
            return message
    return None


def _within(moment: datetime | None, anchor: datetime, window: timedelta) -> bool:
    if moment is None:
        return False
    return abs(moment - anchor) < window


def _as_utc(value: Any) -> datetime | None:
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
