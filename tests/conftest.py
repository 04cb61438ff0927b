from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from supportdesk.metrics import MetricsRegistry, register_default_metrics
from supportdesk.tickets.events import TicketUpdateEvent
from supportdesk.tickets.models import Message, SenderType, Ticket
from supportdesk.tickets.repository import InMemoryTicketStore
from supportdesk.tickets.service import TicketService
from supportdesk.tickets.state import TicketStatus

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.start = start
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def at(self, seconds: float) -> datetime:
        self.now = self.start + timedelta(seconds=seconds)
        return self.now


class RecordingBroadcaster:
    def __init__(self) -> None:
        self.events: list[TicketUpdateEvent] = []

    async def publish(self, event: TicketUpdateEvent) -> None:
        self.events.append(event)

    @property
    def update_types(self) -> list[str]:
        return [event.update_type.value for event in self.events]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryTicketStore:
    return InMemoryTicketStore()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


@pytest.fixture
def service(store, broadcaster, clock, metrics) -> TicketService:
    return TicketService(store, broadcaster=broadcaster, clock=clock, metrics=metrics)


def make_ticket(
    *,
    ticket_id: str = "5f2b9c0e7a1d4c3b8e6f0a9d1c2b3a4e",
    status: TicketStatus = TicketStatus.PENDING,
    created_at: datetime = T0,
    messages: tuple[Message, ...] = (),
    **overrides,
) -> Ticket:
    assigned = None if status == TicketStatus.PENDING else "admin-1"
    ticket = Ticket(
        id=ticket_id,
        subject="Cannot withdraw funds",
        category="payment",
        priority="high",
        requester_id="user-1",
        requester_name="Carol",
        status=status,
        created_at=created_at,
        updated_at=created_at,
        assigned_admin=assigned,
        assigned_admin_name=None if assigned is None else "Alice",
        accepted_at=None if assigned is None else created_at,
        messages=messages,
    )
    return replace(ticket, **overrides) if overrides else ticket


def make_message(
    message_id: str,
    seconds: float,
    *,
    sender_type: SenderType = SenderType.ADMIN,
    text: str = "Hello",
    ticket_id: str = "5f2b9c0e7a1d4c3b8e6f0a9d1c2b3a4e",
    start: datetime = T0,
) -> Message:
    sender_id = "admin-1" if sender_type == SenderType.ADMIN else "user-1"
    return Message(
        id=message_id,
        ticket_id=ticket_id,
        sender_type=sender_type,
        sender_id=sender_id,
        sender_display_name="Alice" if sender_type == SenderType.ADMIN else "Carol",
        text=text,
        timestamp=start + timedelta(seconds=seconds),
    )
