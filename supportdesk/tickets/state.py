from __future__ import annotations

from enum import Enum


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class LifecycleEvent(str, Enum):
    """Lifecycle events that may move a ticket between states."""

    ACCEPT = "accept"
    REJECT = "reject"
    RESOLVE = "resolve"
    REOPEN = "reopen"
    FIRST_ADMIN_MESSAGE = "first_admin_message"


class TicketStateMachine:
    """Validate ticket lifecycle transitions.

    ``FIRST_ADMIN_MESSAGE`` is never invoked by a client; the message service applies it
    when an administrator replies on an accepted ticket.
    """

    _TRANSITIONS: dict[tuple[TicketStatus, LifecycleEvent], TicketStatus] = {
        (TicketStatus.PENDING, LifecycleEvent.ACCEPT): TicketStatus.ACCEPTED,
        (TicketStatus.PENDING, LifecycleEvent.REJECT): TicketStatus.REJECTED,
        (TicketStatus.ACCEPTED, LifecycleEvent.RESOLVE): TicketStatus.RESOLVED,
        (TicketStatus.IN_PROGRESS, LifecycleEvent.RESOLVE): TicketStatus.RESOLVED,
        (TicketStatus.RESOLVED, LifecycleEvent.REOPEN): TicketStatus.ACCEPTED,
        (TicketStatus.ACCEPTED, LifecycleEvent.FIRST_ADMIN_MESSAGE): TicketStatus.IN_PROGRESS,
    }

    MESSAGEABLE: frozenset[TicketStatus] = frozenset({TicketStatus.ACCEPTED, TicketStatus.IN_PROGRESS})

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.PENDING

    @classmethod
    def can_apply(cls, current: TicketStatus, event: LifecycleEvent) -> bool:
        return (current, event) in cls._TRANSITIONS

    @classmethod
    def next_state(cls, current: TicketStatus, event: LifecycleEvent) -> TicketStatus:
        try:
            return cls._TRANSITIONS[(current, event)]
        except KeyError:
            raise ValueError(f"Invalid ticket transition: {event.value} from {current.value}") from None

    @classmethod
    def is_messageable(cls, status: TicketStatus) -> bool:
        return status in cls.MESSAGEABLE
