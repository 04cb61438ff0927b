"""Logging and tracing setup run once from the application lifespan."""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from supportdesk.core.config import Settings

APP_LOGGER = "supportdesk"
TICKETS_LOGGER = "supportdesk.tickets"
REALTIME_LOGGER = "supportdesk.services.realtime"

_active_provider: TracerProvider | None = None


def _level(name: str | None, default: int = logging.INFO) -> int:
    if not name:
        return default
    value = logging.getLevelName(name.upper())
    return value if isinstance(value, int) else default


def build_logging_config(settings: Settings) -> dict[str, Any]:
    """dictConfig for the service.

    Lifecycle and message logs follow ``tickets_log_level``; websocket fan-out is noisy
    per connection and follows ``realtime_log_level``. Everything else uses ``log_level``.
    """

    app_level = _level(settings.log_level)
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": settings.log_format},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "console"},
        },
        "loggers": {
            APP_LOGGER: {"level": app_level},
            TICKETS_LOGGER: {"level": _level(settings.tickets_log_level, app_level)},
            REALTIME_LOGGER: {"level": _level(settings.realtime_log_level, app_level)},
        },
        "root": {"handlers": ["console"], "level": app_level},
    }


def configure_logging(settings: Settings) -> logging.Logger:
    dictConfig(build_logging_config(settings))
    return logging.getLogger(APP_LOGGER)


def _otlp_headers(raw: str | None) -> dict[str, str]:
    pairs = (item.split("=", 1) for item in (raw or "").split(",") if "=" in item)
    return {key.strip(): value.strip() for key, value in pairs}


def build_resource(settings: Settings) -> Resource:
    return Resource(
        attributes={
            "service.name": settings.otel_service_name,
            "deployment.environment": settings.environment,
            "supportdesk.store_backend": settings.store_backend,
        }
    )


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP exporting tracer provider when tracing is enabled.

    Returns ``None`` when tracing is off or a provider is already installed, so the
    lifespan only shuts down what it created.
    """

    global _active_provider

    if _active_provider is not None or not settings.otel_enabled:
        return None

    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        headers=_otlp_headers(settings.otel_exporter_otlp_headers) or None,
    )
    provider = TracerProvider(resource=build_resource(settings))
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _active_provider = provider
    logging.getLogger(APP_LOGGER).info(
        "Tracing enabled for %s (%s)", settings.otel_service_name, settings.environment
    )
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _active_provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _active_provider:
        _active_provider = None
