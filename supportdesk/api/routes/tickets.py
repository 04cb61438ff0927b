from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from supportdesk.dependencies.auth import Role, User, resolve_user_from_token
from supportdesk.dependencies.tickets import (
    AdminUser,
    RequesterUser,
    ViewerUser,
    get_broadcaster,
    get_ticket_service,
)
from supportdesk.tickets.errors import (
    AlreadyAcceptedError,
    ConcurrentModificationError,
    EmptyMessageError,
    InvalidTicketTransitionError,
    TicketNotFoundError,
    TicketNotMessageableError,
    TicketServiceError,
)
from supportdesk.tickets.grouping import MessagePresentation
from supportdesk.tickets.models import HistoryStatus, SenderType, Ticket
from supportdesk.tickets.service import TicketService
from supportdesk.tickets.state import TicketStatus
from supportdesk.tickets.timeline import TimelineKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketCreateRequest(BaseModel):
    subject: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    category: str = Field(default="general", min_length=1, max_length=50)
    priority: str = Field(default="medium", min_length=1, max_length=20)
    description: str | None = Field(default=None)
    origin: str = Field(default="web", max_length=20)


class TicketRejectRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class TicketResolveRequest(BaseModel):
    resolution: str | None = Field(default=None, max_length=2000)


class TicketReopenRequest(BaseModel):
    reassign: bool = Field(default=False)


class MessageCreateRequest(BaseModel):
    text: str = Field(..., max_length=5000)


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    sender_type: SenderType
    sender_id: str
    sender_display_name: str
    text: str
    timestamp: datetime


class StatusHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: HistoryStatus
    performed_by: str | None
    performed_by_name: str
    timestamp: datetime
    reason: str | None


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    reference: str
    subject: str
    category: str
    priority: str
    origin: str
    status: TicketStatus
    requester_id: str
    requester_name: str
    assigned_admin: str | None
    assigned_admin_name: str | None
    accepted_at: datetime | None
    resolved_at: datetime | None
    resolution: str | None
    rejection_reason: str | None
    response_time: timedelta | None
    created_at: datetime
    updated_at: datetime
    messages: list[MessageResponse]
    status_history: list[StatusHistoryResponse]


class TimelineNodeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: TimelineKind
    title: str
    timestamp: datetime
    linked_message_id: str | None
    reason: str | None


class MessagePresentationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    message: MessageResponse
    grouped_with_previous: bool
    grouped_with_next: bool
    show_header: bool
    show_timestamp: bool
    show_date_separator: bool
    is_status_notice: bool


class PostedMessageResponse(BaseModel):
    message: MessageResponse
    ticket: TicketResponse


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def _raise_http(exc: TicketServiceError) -> NoReturn:
    if isinstance(exc, TicketNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, AlreadyAcceptedError):
        raise HTTPException(
            status_code=409, detail="Ticket has already been accepted by another administrator"
        ) from exc
    if isinstance(exc, EmptyMessageError):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    if isinstance(exc, (InvalidTicketTransitionError, TicketNotMessageableError, ConcurrentModificationError)):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    raise exc


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    user: RequesterUser,
) -> TicketResponse:
    ticket = await service.create_ticket(
        requester_id=user.user_id,
        requester_name=user.display_name,
        subject=payload.subject,
        category=payload.category,
        priority=payload.priority,
        description=payload.description,
        origin=payload.origin,
    )
    return _to_response(ticket)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    service: TicketServiceDep,
    _: ViewerUser,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    category: str | None = Query(default=None),
) -> list[TicketResponse]:
    tickets = await service.list_tickets(status=status_filter, category=category)
    return [_to_response(ticket) for ticket in tickets]


@router.websocket("/ws")
async def ticket_updates(websocket: WebSocket) -> None:
    broadcaster = get_broadcaster(websocket.app.state)
    try:
        user = resolve_user_from_token(websocket.query_params.get("token"))
    except HTTPException:
        user = None
    if broadcaster is None or user is None or not user.has_role(Role.ADMIN):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await broadcaster.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await broadcaster.disconnect(websocket)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, _: ViewerUser) -> TicketResponse:
    try:
        ticket = await service.get_snapshot(ticket_id)
    except TicketServiceError as exc:
        _raise_http(exc)
    return _to_response(ticket)


@router.get("/{ticket_id}/timeline", response_model=list[TimelineNodeResponse])
async def get_ticket_timeline(
    ticket_id: str, service: TicketServiceDep, _: ViewerUser
) -> list[TimelineNodeResponse]:
    try:
        nodes = await service.get_timeline(ticket_id)
    except TicketServiceError as exc:
        _raise_http(exc)
    return [TimelineNodeResponse.model_validate(node) for node in nodes]


@router.get("/{ticket_id}/messages", response_model=list[MessagePresentationResponse])
async def get_ticket_messages(
    ticket_id: str, service: TicketServiceDep, _: ViewerUser
) -> list[MessagePresentationResponse]:
    try:
        rows: list[MessagePresentation] = await service.get_conversation(ticket_id)
    except TicketServiceError as exc:
        _raise_http(exc)
    return [MessagePresentationResponse.model_validate(row) for row in rows]


@router.post("/{ticket_id}/accept", response_model=TicketResponse)
async def accept_ticket(ticket_id: str, service: TicketServiceDep, user: AdminUser) -> TicketResponse:
    try:
        ticket = await service.accept(ticket_id, admin_id=user.user_id, admin_name=user.display_name)
    except TicketServiceError as exc:
        _raise_http(exc)
    return _to_response(ticket)


@router.post("/{ticket_id}/reject", response_model=TicketResponse)
async def reject_ticket(
    ticket_id: str,
    payload: TicketRejectRequest,
    service: TicketServiceDep,
    user: AdminUser,
) -> TicketResponse:
    try:
        ticket = await service.reject(
            ticket_id, admin_id=user.user_id, admin_name=user.display_name, reason=payload.reason
        )
    except TicketServiceError as exc:
        _raise_http(exc)
    return _to_response(ticket)


@router.post("/{ticket_id}/resolve", response_model=TicketResponse)
async def resolve_ticket(
    ticket_id: str,
    payload: TicketResolveRequest,
    service: TicketServiceDep,
    user: AdminUser,
) -> TicketResponse:
    try:
        ticket = await service.resolve(
            ticket_id,
            admin_id=user.user_id,
            admin_name=user.display_name,
            resolution=payload.resolution,
        )
    except TicketServiceError as exc:
        _raise_http(exc)
    return _to_response(ticket)


@router.post("/{ticket_id}/reopen", response_model=TicketResponse)
async def reopen_ticket(
    ticket_id: str,
    payload: TicketReopenRequest,
    service: TicketServiceDep,
    user: AdminUser,
) -> TicketResponse:
    try:
        ticket = await service.reopen(
            ticket_id,
            admin_id=user.user_id,
            admin_name=user.display_name,
            reassign=payload.reassign,
        )
    except TicketServiceError as exc:
        _raise_http(exc)
    return _to_response(ticket)


@router.post(
    "/{ticket_id}/messages",
    response_model=PostedMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_ticket_message(
    ticket_id: str,
    payload: MessageCreateRequest,
    service: TicketServiceDep,
    user: ViewerUser,
) -> PostedMessageResponse:
    sender_type = _sender_type_for(user)
    try:
        if sender_type == SenderType.REQUESTER:
            snapshot = await service.get_snapshot(ticket_id)
            if snapshot.requester_id != user.user_id:
                raise HTTPException(status_code=403, detail="Only the requester may reply to this ticket")
        posted = await service.post_message(
            ticket_id,
            sender_type=sender_type,
            sender_id=user.user_id,
            sender_name=user.display_name,
            text=payload.text,
        )
    except TicketServiceError as exc:
        _raise_http(exc)
    return PostedMessageResponse(
        message=MessageResponse.model_validate(posted.message),
        ticket=_to_response(posted.ticket),
    )


def _sender_type_for(user: User) -> SenderType:
    if user.has_role(Role.ADMIN):
        return SenderType.ADMIN
    if user.has_role(Role.REQUESTER):
        return SenderType.REQUESTER
    raise HTTPException(status_code=403, detail="Insufficient permissions")
