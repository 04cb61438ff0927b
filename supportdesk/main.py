from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from supportdesk.api.routes import ping, tickets
from supportdesk.core.config import Settings, get_settings
from supportdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from supportdesk.services.postgres import PostgresConnectionManager
from supportdesk.services.realtime import AdminBroadcaster
from supportdesk.tickets.events import EventBroadcaster
from supportdesk.tickets.repository import InMemoryTicketStore, PostgresTicketStore, TicketStore
from supportdesk.tickets.service import TicketService


def build_ticket_service(
    settings: Settings, store: TicketStore, broadcaster: EventBroadcaster
) -> TicketService:
    return TicketService(
        store,
        broadcaster=broadcaster,
        announce_transitions=settings.announce_transitions,
        message_append_retries=settings.message_append_retries,
        correlation_window=timedelta(seconds=settings.correlation_window_seconds),
        grouping_window=timedelta(seconds=settings.grouping_window_seconds),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = logger
    app.state.tracer_provider = tracer_provider
    broadcaster = AdminBroadcaster()
    app.state.broadcaster = broadcaster
    app.state.ticket_service = None

    connection_manager: PostgresConnectionManager | None = None
    try:
        store: TicketStore
        if settings.store_backend == "postgres":
            connection_manager = PostgresConnectionManager(
                dsn=settings.postgres_dsn,
                min_size=settings.postgres_pool_min_size,
                max_size=settings.postgres_pool_max_size,
            )
            store = PostgresTicketStore(await connection_manager.get_pool())
        elif settings.store_backend == "memory":
            store = InMemoryTicketStore()
        else:
            raise ValueError(f"Unsupported store backend: {settings.store_backend}")

        service = build_ticket_service(settings, store, broadcaster)
        await service.ensure_schema()
        app.state.ticket_service = service
        logger.info("Ticket service ready (%s store)", settings.store_backend)
    except Exception:  # pragma: no cover - service initialisation best effort
        logger.exception("Ticket service initialisation failed; ticket routes will return 503")
    try:
        yield
    finally:
        if connection_manager is not None:
            await connection_manager.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    return app


app = create_app()
