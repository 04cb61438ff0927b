from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable

from opentelemetry import trace

from supportdesk.metrics import MetricsRegistry, metrics_registry
from supportdesk.metrics.definitions import (
    TICKET_ACCEPT_CONFLICTS_TOTAL,
    TICKET_BROADCAST_DURATION_SECONDS,
    TICKET_BROADCAST_FAILURES_TOTAL,
    TICKET_MESSAGES_TOTAL,
    TICKET_TRANSITIONS_TOTAL,
)

from .errors import (
    AlreadyAcceptedError,
    ConcurrentModificationError,
    EmptyMessageError,
    InvalidTicketTransitionError,
    TicketNotFoundError,
    TicketNotMessageableError,
)
from .events import EventBroadcaster, NullBroadcaster, TicketUpdateEvent, UpdateType
from .grouping import DEFAULT_GROUPING_WINDOW, MessagePresentation, group_messages
from .models import HistoryStatus, Message, SenderType, StatusHistoryEntry, Ticket
from .repository import TicketStore
from .state import LifecycleEvent, TicketStateMachine, TicketStatus
from .timeline import DEFAULT_CORRELATION_WINDOW, TimelineNode, reconcile_timeline

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Clock = Callable[[], datetime]

DEFAULT_ADMIN_NAME = "Support Agent"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _performer_name(admin_id: str | None, admin_name: str | None) -> str:
    return admin_name or admin_id or DEFAULT_ADMIN_NAME


@dataclass(frozen=True, slots=True)
class PostedMessage:
    """Result of appending a chat message: the stored message and the committed ticket."""

    message: Message
    ticket: Ticket


class TicketService:
    """Lifecycle controller and message service for support tickets.

    Every mutation is committed to the store before an update event is published. The
    broadcaster is best effort: a failed publish is logged and never reaches the caller.
    """

    def __init__(
        self,
        store: TicketStore,
        *,
        broadcaster: EventBroadcaster | None = None,
        clock: Clock | None = None,
        metrics: MetricsRegistry | None = None,
        announce_transitions: bool = False,
        message_append_retries: int = 3,
        correlation_window: timedelta = DEFAULT_CORRELATION_WINDOW,
        grouping_window: timedelta = DEFAULT_GROUPING_WINDOW,
    ) -> None:
        self._store = store
        self._broadcaster = broadcaster or NullBroadcaster()
        self._clock = clock or _utcnow
        self._metrics = metrics or metrics_registry
        self._announce_transitions = announce_transitions
        self._retries = max(1, message_append_retries)
        self._correlation_window = correlation_window
        self._grouping_window = grouping_window

    async def ensure_schema(self) -> None:
        await self._store.ensure_schema()

    # Intake -----------------------------------------------------------------

    async def create_ticket(
        self,
        *,
        requester_id: str,
        requester_name: str,
        subject: str,
        category: str = "general",
        priority: str = "medium",
        description: str | None = None,
        origin: str = "web",
    ) -> Ticket:
        now = self._clock()
        ticket_id = uuid.uuid4().hex
        messages: tuple[Message, ...] = ()
        body = (description or "").strip()
        if body:
            messages = (
                Message(
                    id=uuid.uuid4().hex,
                    ticket_id=ticket_id,
                    sender_type=SenderType.REQUESTER,
                    sender_id=requester_id,
                    sender_display_name=requester_name,
                    text=body,
                    timestamp=now,
                ),
            )
        ticket = Ticket(
            id=ticket_id,
            subject=subject.strip(),
            category=category,
            priority=priority,
            requester_id=requester_id,
            requester_name=requester_name,
            status=TicketStateMachine.initial_state(),
            created_at=now,
            updated_at=now,
            origin=origin,
            messages=messages,
        )
        created = await self._store.create_ticket(ticket)
        logger.info("Ticket %s created by requester %s via %s", created.id, requester_id, origin)
        return created

    # Reads ------------------------------------------------------------------

    async def get_snapshot(self, ticket_id: str) -> Ticket:
        ticket = await self._store.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(
        self, *, status: TicketStatus | None = None, category: str | None = None
    ) -> list[Ticket]:
        return await self._store.list_tickets(status=status, category=category)

    async def get_timeline(self, ticket_id: str) -> list[TimelineNode]:
        ticket = await self.get_snapshot(ticket_id)
        return reconcile_timeline(ticket, window=self._correlation_window)

    async def get_conversation(self, ticket_id: str) -> list[MessagePresentation]:
        ticket = await self.get_snapshot(ticket_id)
        return group_messages(ticket.messages, window=self._grouping_window)

    # Lifecycle --------------------------------------------------------------

    async def accept(self, ticket_id: str, *, admin_id: str, admin_name: str | None = None) -> Ticket:
        with tracer.start_as_current_span("tickets.accept"):
            current = await self.get_snapshot(ticket_id)
            if current.status != TicketStatus.PENDING:
                raise self._accept_failure(current, admin_id)

            updated = await self._store.accept_if_pending(
                ticket_id,
                admin_id=admin_id,
                admin_name=admin_name or admin_id,
                accepted_at=self._clock(),
            )
            if updated is None:
                # Lost the race: someone changed the ticket between our read and the update.
                raise self._accept_failure(await self.get_snapshot(ticket_id), admin_id)

        self._record_transition(LifecycleEvent.ACCEPT)
        logger.info("Ticket %s accepted by admin %s", ticket_id, admin_id)
        await self._publish(updated, UpdateType.ACCEPTED)
        return updated

    async def reject(
        self,
        ticket_id: str,
        *,
        admin_id: str,
        admin_name: str | None = None,
        reason: str | None = None,
    ) -> Ticket:
        def mutate(ticket: Ticket, now: datetime) -> Ticket:
            return replace(
                ticket,
                assigned_admin=admin_id,
                assigned_admin_name=admin_name or admin_id,
                rejection_reason=reason,
            )

        with tracer.start_as_current_span("tickets.reject"):
            updated = await self._transition(ticket_id, LifecycleEvent.REJECT, mutate)
        logger.info("Ticket %s rejected by admin %s", ticket_id, admin_id)
        await self._publish(updated, UpdateType.REJECTED)
        return updated

    async def resolve(
        self,
        ticket_id: str,
        *,
        admin_id: str,
        admin_name: str | None = None,
        resolution: str | None = None,
    ) -> Ticket:
        performer = _performer_name(admin_id, admin_name)

        def mutate(ticket: Ticket, now: datetime) -> Ticket:
            entry = StatusHistoryEntry(
                status=HistoryStatus.RESOLVED,
                performed_by=admin_id,
                performed_by_name=performer,
                timestamp=now,
                reason=resolution,
            )
            messages = ticket.messages
            if self._announce_transitions:
                notice = f"Ticket has been resolved: {resolution}" if resolution else "Ticket has been resolved"
                messages = (*messages, self._admin_notice(ticket, admin_id, performer, notice, now))
            return replace(
                ticket,
                resolution=resolution,
                resolved_at=now,
                messages=messages,
                status_history=(*ticket.status_history, entry),
            )

        with tracer.start_as_current_span("tickets.resolve"):
            updated = await self._transition(ticket_id, LifecycleEvent.RESOLVE, mutate)
        logger.info("Ticket %s resolved by admin %s", ticket_id, admin_id)
        await self._publish(updated, UpdateType.RESOLVED)
        return updated

    async def reopen(
        self,
        ticket_id: str,
        *,
        admin_id: str | None = None,
        admin_name: str | None = None,
        reassign: bool = False,
    ) -> Ticket:
        """Move a resolved ticket back to accepted.

        ``admin_id`` is recorded as the performer of the history entry. The assignee only
        changes when ``reassign`` is set and ``admin_id`` names someone else.
        """

        performer = _performer_name(admin_id, admin_name)

        def mutate(ticket: Ticket, now: datetime) -> Ticket:
            entry = StatusHistoryEntry(
                status=HistoryStatus.REOPENED,
                performed_by=admin_id,
                performed_by_name=performer,
                timestamp=now,
            )
            messages = ticket.messages
            if self._announce_transitions:
                sender = admin_id or ticket.assigned_admin or ""
                messages = (*messages, self._admin_notice(ticket, sender, performer, "Chat has been reopened", now))
            reassigned = reassign and admin_id is not None and admin_id != ticket.assigned_admin
            return replace(
                ticket,
                assigned_admin=admin_id if reassigned else ticket.assigned_admin,
                assigned_admin_name=performer if reassigned else ticket.assigned_admin_name,
                resolved_at=None,
                messages=messages,
                status_history=(*ticket.status_history, entry),
            )

        with tracer.start_as_current_span("tickets.reopen"):
            updated = await self._transition(ticket_id, LifecycleEvent.REOPEN, mutate)
        logger.info("Ticket %s reopened by %s", ticket_id, admin_id or "system")
        await self._publish(updated, UpdateType.REOPENED)
        return updated

    # Messages ---------------------------------------------------------------

    async def post_message(
        self,
        ticket_id: str,
        *,
        sender_type: SenderType,
        sender_id: str,
        text: str,
        sender_name: str | None = None,
    ) -> PostedMessage:
        body = (text or "").strip()
        if not body:
            raise EmptyMessageError("Message text is required")

        with tracer.start_as_current_span("tickets.post_message"):
            for _ in range(self._retries):
                ticket = await self.get_snapshot(ticket_id)
                if not TicketStateMachine.is_messageable(ticket.status):
                    raise TicketNotMessageableError(
                        f"Ticket {ticket_id} is {ticket.status.value}; only accepted or in-progress tickets accept messages"
                    )

                now = self._clock()
                if ticket.messages and now < ticket.messages[-1].timestamp:
                    now = ticket.messages[-1].timestamp
                message = Message(
                    id=uuid.uuid4().hex,
                    ticket_id=ticket_id,
                    sender_type=sender_type,
                    sender_id=sender_id,
                    sender_display_name=sender_name or sender_id,
                    text=body,
                    timestamp=now,
                )

                status = ticket.status
                promoted = sender_type == SenderType.ADMIN and TicketStateMachine.can_apply(
                    status, LifecycleEvent.FIRST_ADMIN_MESSAGE
                )
                if promoted:
                    status = TicketStateMachine.next_state(status, LifecycleEvent.FIRST_ADMIN_MESSAGE)

                candidate = replace(
                    ticket,
                    status=status,
                    messages=(*ticket.messages, message),
                    updated_at=now,
                )
                updated = await self._store.replace_ticket(candidate, expected_version=ticket.version)
                if updated is not None:
                    break
                logger.debug("Version conflict appending message to ticket %s; retrying", ticket_id)
            else:
                raise ConcurrentModificationError(f"Ticket {ticket_id} changed concurrently; message not stored")

        self._metrics.counter(TICKET_MESSAGES_TOTAL).inc(labels={"sender_type": sender_type.value})
        if promoted:
            self._record_transition(LifecycleEvent.FIRST_ADMIN_MESSAGE)
            logger.info("Ticket %s moved to in_progress after first reply from %s", ticket_id, sender_id)
        await self._publish(updated, UpdateType.MESSAGE_ADDED)
        return PostedMessage(message=message, ticket=updated)

    # Internals --------------------------------------------------------------

    async def _transition(
        self,
        ticket_id: str,
        event: LifecycleEvent,
        mutate: Callable[[Ticket, datetime], Ticket],
    ) -> Ticket:
        for _ in range(self._retries):
            ticket = await self.get_snapshot(ticket_id)
            if not TicketStateMachine.can_apply(ticket.status, event):
                raise InvalidTicketTransitionError(
                    f"Cannot {event.value} ticket {ticket_id} while it is {ticket.status.value}"
                )
            now = self._clock()
            if ticket.status_history and now < ticket.status_history[-1].timestamp:
                now = ticket.status_history[-1].timestamp
            if ticket.messages and now < ticket.messages[-1].timestamp:
                now = ticket.messages[-1].timestamp
            candidate = replace(
                mutate(ticket, now),
                status=TicketStateMachine.next_state(ticket.status, event),
                updated_at=now,
            )
            updated = await self._store.replace_ticket(candidate, expected_version=ticket.version)
            if updated is not None:
                self._record_transition(event)
                return updated
            logger.debug("Version conflict applying %s to ticket %s; retrying", event.value, ticket_id)
        raise ConcurrentModificationError(f"Ticket {ticket_id} changed concurrently; {event.value} not applied")

    def _accept_failure(self, ticket: Ticket, admin_id: str) -> InvalidTicketTransitionError:
        if ticket.status in (TicketStatus.RESOLVED, TicketStatus.REJECTED):
            return InvalidTicketTransitionError(
                f"Cannot accept ticket {ticket.id} while it is {ticket.status.value}"
            )
        self._metrics.counter(TICKET_ACCEPT_CONFLICTS_TOTAL).inc()
        logger.info(
            "Admin %s lost accept on ticket %s to %s", admin_id, ticket.id, ticket.assigned_admin
        )
        return AlreadyAcceptedError(
            f"Ticket {ticket.id} has already been accepted by {ticket.assigned_admin_name or ticket.assigned_admin}"
        )

    @staticmethod
    def _admin_notice(ticket: Ticket, admin_id: str, admin_name: str, text: str, now: datetime) -> Message:
        return Message(
            id=uuid.uuid4().hex,
            ticket_id=ticket.id,
            sender_type=SenderType.ADMIN,
            sender_id=admin_id,
            sender_display_name=admin_name,
            text=text,
            timestamp=now,
        )

    def _record_transition(self, event: LifecycleEvent) -> None:
        self._metrics.counter(TICKET_TRANSITIONS_TOTAL).inc(labels={"transition": event.value})

    async def _publish(self, ticket: Ticket, update_type: UpdateType) -> None:
        event = TicketUpdateEvent(ticket_id=ticket.id, update_type=update_type, snapshot=ticket)
        try:
            with self._metrics.time_distribution(TICKET_BROADCAST_DURATION_SECONDS):
                await self._broadcaster.publish(event)
        except Exception:
            self._metrics.counter(TICKET_BROADCAST_FAILURES_TOTAL).inc()
            logger.exception("Failed to broadcast %s for ticket %s", update_type.value, ticket.id)
