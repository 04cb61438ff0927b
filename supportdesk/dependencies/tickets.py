from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from supportdesk.dependencies.auth import Role, User, role_required
from supportdesk.services.realtime import AdminBroadcaster
from supportdesk.tickets.service import TicketService

require_admin = role_required(Role.ADMIN)
require_requester = role_required(Role.REQUESTER)
require_viewer = role_required(Role.VIEWER)

AdminUser = Annotated[User, Depends(require_admin)]
RequesterUser = Annotated[User, Depends(require_requester)]
ViewerUser = Annotated[User, Depends(require_viewer)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


def get_broadcaster(app_state: object) -> AdminBroadcaster | None:
    return getattr(app_state, "broadcaster", None)
