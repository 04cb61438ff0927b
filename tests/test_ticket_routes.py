import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from conftest import T0, make_message, make_ticket
from supportdesk.api.routes import tickets as ticket_routes
from supportdesk.dependencies import tickets as ticket_deps
from supportdesk.dependencies.auth import Role, User
from supportdesk.main import create_app
from supportdesk.tickets.errors import (
    AlreadyAcceptedError,
    EmptyMessageError,
    InvalidTicketTransitionError,
    TicketNotFoundError,
    TicketNotMessageableError,
)
from supportdesk.tickets.grouping import group_messages
from supportdesk.tickets.models import SenderType
from supportdesk.tickets.repository import InMemoryTicketStore
from supportdesk.tickets.service import PostedMessage, TicketService
from supportdesk.tickets.state import TicketStatus
from supportdesk.tickets.timeline import reconcile_timeline

ADMIN = User("admin-1", "Alice", (Role.ADMIN, Role.VIEWER))
REQUESTER = User("user-1", "Carol", (Role.REQUESTER, Role.VIEWER))


@pytest.fixture
def ticket_client():
    app = create_app()
    service = AsyncMock()
    current = {"viewer": ADMIN}

    async def override_service():
        return service

    app.dependency_overrides[ticket_routes.get_ticket_service] = override_service
    app.dependency_overrides[ticket_deps.require_admin] = lambda: ADMIN
    app.dependency_overrides[ticket_deps.require_requester] = lambda: REQUESTER
    app.dependency_overrides[ticket_deps.require_viewer] = lambda: current["viewer"]

    client = TestClient(app)
    try:
        yield client, service, current
    finally:
        app.dependency_overrides.clear()


def test_create_ticket_endpoint_returns_created(ticket_client):
    client, service, _ = ticket_client
    ticket = make_ticket()
    service.create_ticket = AsyncMock(return_value=ticket)

    response = client.post(
        "/tickets", json={"subject": "Cannot withdraw funds", "category": "payment", "description": "Stuck"}
    )

    assert response.status_code == 201
    body = response.json()
    assert body["id"] == ticket.id
    assert body["reference"] == ticket.reference
    assert body["status"] == "pending"
    service.create_ticket.assert_awaited_with(
        requester_id="user-1",
        requester_name="Carol",
        subject="Cannot withdraw funds",
        category="payment",
        priority="medium",
        description="Stuck",
        origin="web",
    )


def test_list_tickets_endpoint_filters_by_status(ticket_client):
    client, service, _ = ticket_client
    service.list_tickets = AsyncMock(return_value=[make_ticket(status=TicketStatus.ACCEPTED)])

    response = client.get("/tickets", params={"status": "accepted", "category": "payment"})

    assert response.status_code == 200
    body = response.json()
    assert body[0]["status"] == "accepted"
    assert body[0]["assigned_admin"] == "admin-1"
    service.list_tickets.assert_awaited_with(status=TicketStatus.ACCEPTED, category="payment")


def test_accept_endpoint_returns_ticket(ticket_client):
    client, service, _ = ticket_client
    service.accept = AsyncMock(return_value=make_ticket(status=TicketStatus.ACCEPTED))

    response = client.post("/tickets/t1/accept")

    assert response.status_code == 200
    assert response.json()["assigned_admin_name"] == "Alice"
    service.accept.assert_awaited_with("t1", admin_id="admin-1", admin_name="Alice")


def test_accept_endpoint_reports_lost_race(ticket_client):
    client, service, _ = ticket_client
    service.accept = AsyncMock(side_effect=AlreadyAcceptedError("taken"))

    response = client.post("/tickets/t1/accept")

    assert response.status_code == 409
    assert response.json()["detail"] == "Ticket has already been accepted by another administrator"


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (TicketNotFoundError("missing"), 404),
        (InvalidTicketTransitionError("nope"), 409),
    ],
)
def test_resolve_endpoint_maps_service_errors(ticket_client, error, status_code):
    client, service, _ = ticket_client
    service.resolve = AsyncMock(side_effect=error)

    response = client.post("/tickets/t1/resolve", json={"resolution": "fixed"})

    assert response.status_code == status_code


def test_reject_endpoint_passes_reason(ticket_client):
    client, service, _ = ticket_client
    service.reject = AsyncMock(
        return_value=make_ticket(status=TicketStatus.REJECTED, rejection_reason="spam")
    )

    response = client.post("/tickets/t1/reject", json={"reason": "spam"})

    assert response.status_code == 200
    assert response.json()["rejection_reason"] == "spam"
    service.reject.assert_awaited_with("t1", admin_id="admin-1", admin_name="Alice", reason="spam")


def test_reopen_endpoint_always_passes_the_acting_admin(ticket_client):
    client, service, _ = ticket_client
    service.reopen = AsyncMock(return_value=make_ticket(status=TicketStatus.ACCEPTED))

    client.post("/tickets/t1/reopen", json={})
    service.reopen.assert_awaited_with("t1", admin_id="admin-1", admin_name="Alice", reassign=False)

    client.post("/tickets/t1/reopen", json={"reassign": True})
    service.reopen.assert_awaited_with("t1", admin_id="admin-1", admin_name="Alice", reassign=True)


async def _resolved_ticket(service: TicketService):
    ticket = await service.create_ticket(requester_id="user-1", requester_name="Carol", subject="Refund")
    await service.accept(ticket.id, admin_id="admin-1", admin_name="Alice")
    return await service.resolve(ticket.id, admin_id="admin-1", admin_name="Alice")


def test_reopen_history_names_the_calling_admin():
    app = create_app()
    service = TicketService(InMemoryTicketStore())
    app.state.ticket_service = service
    ticket = asyncio.run(_resolved_ticket(service))
    client = TestClient(app)

    response = client.post(
        f"/tickets/{ticket.id}/reopen", json={}, headers={"Authorization": "Bearer admin2-token"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "accepted"
    assert body["assigned_admin"] == "admin-1"
    assert body["status_history"][-1]["status"] == "reopened"
    assert body["status_history"][-1]["performed_by"] == "admin-2"
    assert body["status_history"][-1]["performed_by_name"] == "Bob"


@pytest.mark.parametrize("subject", ["", "   ", "\t\n"])
def test_create_ticket_rejects_blank_subject(ticket_client, subject):
    client, service, _ = ticket_client
    service.create_ticket = AsyncMock()

    response = client.post("/tickets", json={"subject": subject})

    assert response.status_code == 422
    service.create_ticket.assert_not_awaited()


def test_create_ticket_strips_subject(ticket_client):
    client, service, _ = ticket_client
    service.create_ticket = AsyncMock(return_value=make_ticket())

    client.post("/tickets", json={"subject": "  Refund  "})

    assert service.create_ticket.await_args.kwargs["subject"] == "Refund"


def test_admin_message_is_posted_as_admin(ticket_client):
    client, service, _ = ticket_client
    message = make_message("m1", 60, text="Hi")
    ticket = make_ticket(status=TicketStatus.IN_PROGRESS, messages=(message,))
    service.post_message = AsyncMock(return_value=PostedMessage(message=message, ticket=ticket))

    response = client.post("/tickets/t1/messages", json={"text": "Hi"})

    assert response.status_code == 201
    body = response.json()
    assert body["message"]["id"] == "m1"
    assert body["ticket"]["status"] == "in_progress"
    service.post_message.assert_awaited_with(
        "t1", sender_type=SenderType.ADMIN, sender_id="admin-1", sender_name="Alice", text="Hi"
    )


def test_requester_may_only_reply_to_own_ticket(ticket_client):
    client, service, current = ticket_client
    current["viewer"] = REQUESTER
    service.get_snapshot = AsyncMock(return_value=make_ticket(status=TicketStatus.ACCEPTED, requester_id="user-9"))
    service.post_message = AsyncMock()

    response = client.post("/tickets/t1/messages", json={"text": "Hello?"})

    assert response.status_code == 403
    service.post_message.assert_not_awaited()


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (EmptyMessageError("Message text is required"), 422),
        (TicketNotMessageableError("closed"), 409),
    ],
)
def test_message_endpoint_maps_service_errors(ticket_client, error, status_code):
    client, service, _ = ticket_client
    service.post_message = AsyncMock(side_effect=error)

    response = client.post("/tickets/t1/messages", json={"text": " "})

    assert response.status_code == status_code


def test_timeline_and_conversation_endpoints(ticket_client):
    client, service, _ = ticket_client
    messages = (
        make_message("m1", 0, sender_type=SenderType.REQUESTER, text="Help"),
        make_message("m2", 120, text="Hi"),
        make_message("m3", 180, text="Checking"),
    )
    ticket = make_ticket(status=TicketStatus.IN_PROGRESS, messages=messages)
    service.get_timeline = AsyncMock(return_value=reconcile_timeline(ticket))
    service.get_conversation = AsyncMock(return_value=group_messages(ticket.messages))

    timeline = client.get("/tickets/t1/timeline").json()
    conversation = client.get("/tickets/t1/messages").json()

    assert [node["kind"] for node in timeline] == ["submitted", "accepted"]
    assert timeline[0]["linked_message_id"] == "m1"
    assert timeline[1]["linked_message_id"] == "m2"
    assert [row["show_header"] for row in conversation] == [True, True, False]
    assert [row["show_timestamp"] for row in conversation] == [True, False, True]
    assert conversation[0]["show_date_separator"] is True


def test_ticket_routes_return_503_without_service():
    app = create_app()
    app.dependency_overrides[ticket_deps.require_viewer] = lambda: ADMIN

    response = TestClient(app).get("/tickets/t1")

    assert response.status_code == 503


def test_get_ticket_requires_credentials():
    app = create_app()
    app.state.ticket_service = AsyncMock()

    response = TestClient(app).get("/tickets/t1")

    assert response.status_code == 403


def test_ping_is_public():
    response = TestClient(create_app()).get("/ping")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_admin_ping_reports_subscribers():
    client = TestClient(create_app())

    response = client.get("/ping/admin", headers={"Authorization": "Bearer admin-token"})

    assert response.status_code == 200
    assert response.json()["user"] == "admin-1"


def test_created_at_is_serialised_as_iso(ticket_client):
    client, service, _ = ticket_client
    service.get_snapshot = AsyncMock(return_value=make_ticket())

    response = client.get("/tickets/t1")

    assert response.status_code == 200
    assert response.json()["created_at"].startswith(T0.strftime("%Y-%m-%dT%H:%M:%S"))
