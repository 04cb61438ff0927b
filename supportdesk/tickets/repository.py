from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, Sequence

import asyncpg

from .models import HistoryStatus, Message, SenderType, StatusHistoryEntry, Ticket
from .state import TicketStatus


class TicketStore(Protocol):
    """Persistence contract for the ticket aggregate.

    ``accept_if_pending`` must be a single indivisible test-and-set on ``status``.
    ``replace_ticket`` writes the whole aggregate only when the stored version still
    equals ``expected_version``; both return ``None`` when the condition fails.
    """

    async def ensure_schema(self) -> None:
        ...

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        ...

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ...

    async def list_tickets(
        self, *, status: TicketStatus | None = None, category: str | None = None
    ) -> list[Ticket]:
        ...

    async def accept_if_pending(
        self,
        ticket_id: str,
        *,
        admin_id: str,
        admin_name: str,
        accepted_at: datetime,
    ) -> Ticket | None:
        ...

    async def replace_ticket(self, ticket: Ticket, *, expected_version: int) -> Ticket | None:
        ...


class InMemoryTicketStore:
    """Process-local store used for development and tests."""

    def __init__(self) -> None:
        self._tickets: dict[str, Ticket] = {}
        self._lock = asyncio.Lock()

    async def ensure_schema(self) -> None:
        return None

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        async with self._lock:
            if ticket.id in self._tickets:
                raise ValueError(f"Ticket {ticket.id} already exists")
            self._tickets[ticket.id] = replace(ticket)
            return replace(ticket)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._lock:
            ticket = self._tickets.get(ticket_id)
            return None if ticket is None else replace(ticket)

    async def list_tickets(
        self, *, status: TicketStatus | None = None, category: str | None = None
    ) -> list[Ticket]:
        async with self._lock:
            tickets = [
                replace(ticket)
                for ticket in self._tickets.values()
                if (status is None or ticket.status == status)
                and (category is None or ticket.category == category)
            ]
        tickets.sort(key=lambda ticket: ticket.created_at, reverse=True)
        return tickets

    async def accept_if_pending(
        self,
        ticket_id: str,
        *,
        admin_id: str,
        admin_name: str,
        accepted_at: datetime,
    ) -> Ticket | None:
        async with self._lock:
            current = self._tickets.get(ticket_id)
            if current is None or current.status != TicketStatus.PENDING:
                return None
            updated = replace(
                current,
                status=TicketStatus.ACCEPTED,
                assigned_admin=admin_id,
                assigned_admin_name=admin_name,
                accepted_at=accepted_at,
                updated_at=accepted_at,
                version=current.version + 1,
            )
            self._tickets[ticket_id] = updated
            return replace(updated)

    async def replace_ticket(self, ticket: Ticket, *, expected_version: int) -> Ticket | None:
        async with self._lock:
            current = self._tickets.get(ticket.id)
            if current is None or current.version != expected_version:
                return None
            updated = replace(ticket, version=expected_version + 1)
            self._tickets[ticket.id] = updated
            return replace(updated)


_TICKET_COLUMNS = (
    "id, subject, category, priority, requester_id, requester_name, origin, status, "
    "assigned_admin, assigned_admin_name, accepted_at, resolved_at, resolution, "
    "rejection_reason, messages, status_history, version, created_at, updated_at"
)


class PostgresTicketStore:
    """asyncpg backed store keeping messages and history embedded in the ticket row."""

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS support_tickets (
        id TEXT PRIMARY KEY,
        subject TEXT NOT NULL,
        category TEXT NOT NULL,
        priority TEXT NOT NULL,
        requester_id TEXT NOT NULL,
        requester_name TEXT NOT NULL,
        origin TEXT NOT NULL DEFAULT 'web',
        status TEXT NOT NULL,
        assigned_admin TEXT NULL,
        assigned_admin_name TEXT NULL,
        accepted_at TIMESTAMPTZ NULL,
        resolved_at TIMESTAMPTZ NULL,
        resolution TEXT NULL,
        rejection_reason TEXT NULL,
        messages JSONB NOT NULL DEFAULT '[]'::jsonb,
        status_history JSONB NOT NULL DEFAULT '[]'::jsonb,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_STATUS_INDEX_SQL = """
    CREATE INDEX IF NOT EXISTS support_tickets_status_idx
    ON support_tickets (status, created_at DESC)
    """

    _INSERT_TICKET_SQL = f"""
    INSERT INTO support_tickets ({_TICKET_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15::jsonb, $16::jsonb, $17, $18, $19)
    RETURNING {_TICKET_COLUMNS}
    """

    _SELECT_TICKET_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM support_tickets
    WHERE id = $1
    """

    _LIST_TICKETS_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM support_tickets
    WHERE ($1::text IS NULL OR status = $1)
      AND ($2::text IS NULL OR category = $2)
    ORDER BY created_at DESC
    """

    _ACCEPT_IF_PENDING_SQL = f"""
    UPDATE support_tickets
    SET status = 'accepted',
        assigned_admin = $2,
        assigned_admin_name = $3,
        accepted_at = $4,
        updated_at = $4,
        version = version + 1
    WHERE id = $1 AND status = 'pending'
    RETURNING {_TICKET_COLUMNS}
    """

    _REPLACE_TICKET_SQL = f"""
    UPDATE support_tickets
    SET status = $3,
        assigned_admin = $4,
        assigned_admin_name = $5,
        accepted_at = $6,
        resolved_at = $7,
        resolution = $8,
        rejection_reason = $9,
        messages = $10::jsonb,
        status_history = $11::jsonb,
        updated_at = $12,
        version = $2 + 1
    WHERE id = $1 AND version = $2
    RETURNING {_TICKET_COLUMNS}
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_STATUS_INDEX_SQL)

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                self._INSERT_TICKET_SQL,
                ticket.id,
                ticket.subject,
                ticket.category,
                ticket.priority,
                ticket.requester_id,
                ticket.requester_name,
                ticket.origin,
                ticket.status.value,
                ticket.assigned_admin,
                ticket.assigned_admin_name,
                ticket.accepted_at,
                ticket.resolved_at,
                ticket.resolution,
                ticket.rejection_reason,
                _dump_messages(ticket.messages),
                _dump_history(ticket.status_history),
                ticket.version,
                ticket.created_at,
                ticket.updated_at,
            )
        if row is None:
            raise RuntimeError("Failed to insert ticket")
        return self._row_to_ticket(row)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def list_tickets(
        self, *, status: TicketStatus | None = None, category: str | None = None
    ) -> list[Ticket]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(
                self._LIST_TICKETS_SQL,
                None if status is None else status.value,
                category,
            )
        return [self._row_to_ticket(row) for row in rows]

    async def accept_if_pending(
        self,
        ticket_id: str,
        *,
        admin_id: str,
        admin_name: str,
        accepted_at: datetime,
    ) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                self._ACCEPT_IF_PENDING_SQL,
                ticket_id,
                admin_id,
                admin_name,
                accepted_at,
            )
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def replace_ticket(self, ticket: Ticket, *, expected_version: int) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                self._REPLACE_TICKET_SQL,
                ticket.id,
                expected_version,
                ticket.status.value,
                ticket.assigned_admin,
                ticket.assigned_admin_name,
                ticket.accepted_at,
                ticket.resolved_at,
                ticket.resolution,
                ticket.rejection_reason,
                _dump_messages(ticket.messages),
                _dump_history(ticket.status_history),
                ticket.updated_at,
            )
        if row is None:
            return None
        return self._row_to_ticket(row)

    @staticmethod
    def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
        return Ticket(
            id=str(row["id"]),
            subject=str(row["subject"]),
            category=str(row["category"]),
            priority=str(row["priority"]),
            requester_id=str(row["requester_id"]),
            requester_name=str(row["requester_name"]),
            origin=str(row["origin"]),
            status=TicketStatus(str(row["status"])),
            assigned_admin=_optional_str(row["assigned_admin"]),
            assigned_admin_name=_optional_str(row["assigned_admin_name"]),
            accepted_at=_optional_datetime(row["accepted_at"]),
            resolved_at=_optional_datetime(row["resolved_at"]),
            resolution=_optional_str(row["resolution"]),
            rejection_reason=_optional_str(row["rejection_reason"]),
            messages=tuple(_record_to_message(item) for item in _load_json(row["messages"])),
            status_history=tuple(_record_to_history(item) for item in _load_json(row["status_history"])),
            version=int(row["version"]),
            created_at=_ensure_datetime(row["created_at"]),
            updated_at=_ensure_datetime(row["updated_at"]),
        )


def _dump_messages(messages: Sequence[Message]) -> str:
    return json.dumps(
        [
            {
                "id": message.id,
                "ticket_id": message.ticket_id,
                "sender_type": message.sender_type.value,
                "sender_id": message.sender_id,
                "sender_display_name": message.sender_display_name,
                "text": message.text,
                "timestamp": message.timestamp.isoformat(),
            }
            for message in messages
        ]
    )


def _dump_history(entries: Sequence[StatusHistoryEntry]) -> str:
    return json.dumps(
        [
            {
                "status": entry.status.value,
                "performed_by": entry.performed_by,
                "performed_by_name": entry.performed_by_name,
                "timestamp": entry.timestamp.isoformat(),
                "reason": entry.reason,
            }
            for entry in entries
        ]
    )


def _load_json(value: Any) -> list[Mapping[str, Any]]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        value = json.loads(value)
    return list(value)


def _record_to_message(record: Mapping[str, Any]) -> Message:
    return Message(
        id=str(record["id"]),
        ticket_id=str(record["ticket_id"]),
        sender_type=SenderType(str(record["sender_type"])),
        sender_id=str(record["sender_id"]),
        sender_display_name=str(record.get("sender_display_name") or ""),
        text=str(record["text"]),
        timestamp=_ensure_datetime(record["timestamp"]),
    )


def _record_to_history(record: Mapping[str, Any]) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        status=HistoryStatus(str(record["status"])),
        performed_by=_optional_str(record.get("performed_by")),
        performed_by_name=str(record.get("performed_by_name") or ""),
        timestamp=_ensure_datetime(record["timestamp"]),
        reason=_optional_str(record.get("reason")),
    )


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _optional_datetime(value: Any) -> datetime | None:
    return None if value is None else _ensure_datetime(value)


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed
