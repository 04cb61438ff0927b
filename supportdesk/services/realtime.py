"""Realtime ticket notifications for connected admin websocket clients."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket
from pydantic import TypeAdapter

from supportdesk.metrics import MetricsRegistry, metrics_registry
from supportdesk.metrics.definitions import TICKET_BROADCAST_DELIVERIES_TOTAL
from supportdesk.tickets.events import TicketUpdateEvent
from supportdesk.tickets.models import Ticket

logger = logging.getLogger(__name__)

ADMIN_SCOPE = "admin"

_ticket_adapter: TypeAdapter[Ticket] = TypeAdapter(Ticket)


def serialize_ticket(ticket: Ticket) -> dict[str, Any]:
    """Return a JSON compatible snapshot of ``ticket``."""

    payload = _ticket_adapter.dump_python(ticket, mode="json")
    payload["reference"] = ticket.reference
    return payload


def build_payload(event: TicketUpdateEvent) -> dict[str, Any]:
    return {
        "type": "ticket_update",
        "scope": ADMIN_SCOPE,
        "ticket_id": event.ticket_id,
        "update_type": event.update_type.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "snapshot": serialize_ticket(event.snapshot),
    }


@dataclass(slots=True)
class BroadcastResult:
    """Summary of a broadcast operation."""

    attempted: int
    delivered: int
    dropped: int


class AdminBroadcaster:
    """Track admin websocket connections and fan ticket updates out to them.

    Delivery is at most once: subscribers that are not connected when an update is
    published never see it and are expected to re-fetch the ticket snapshot.
    """

    def __init__(self, *, metrics: MetricsRegistry | None = None) -> None:
        self._connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()
        self._metrics = metrics or metrics_registry

    @property
    def subscriber_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a websocket and track it for future broadcasts."""

        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        logger.debug("Admin subscriber connected (%d total)", len(self._connections))

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)

    async def publish(self, event: TicketUpdateEvent) -> None:
        result = await self.broadcast(event)
        if result.dropped:
            logger.warning(
                "Dropped %d of %d admin subscribers while announcing %s for ticket %s",
                result.dropped,
                result.attempted,
                event.update_type.value,
                event.ticket_id,
            )

    async def broadcast(self, event: TicketUpdateEvent) -> BroadcastResult:
        async with self._lock:
            # Snapshot so the lock is not held while sending.
            targets = list(self._connections)

        if not targets:
            return BroadcastResult(attempted=0, delivered=0, dropped=0)

        payload = build_payload(event)
        delivered = 0
        dropped = 0
        for websocket in targets:
            try:
                await websocket.send_json(payload)
                delivered += 1
            except Exception:
                dropped += 1
                logger.debug("Removing unreachable admin subscriber", exc_info=True)
                async with self._lock:
                    self._connections.discard(websocket)

        if delivered:
            self._metrics.counter(TICKET_BROADCAST_DELIVERIES_TOTAL).inc(delivered)
        return BroadcastResult(attempted=len(targets), delivered=delivered, dropped=dropped)
