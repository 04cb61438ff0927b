"""Metric definitions used across the application."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


TICKET_TRANSITIONS_TOTAL = "ticket_transitions_total"
TICKET_ACCEPT_CONFLICTS_TOTAL = "ticket_accept_conflicts_total"
TICKET_MESSAGES_TOTAL = "ticket_messages_total"
TICKET_BROADCAST_DELIVERIES_TOTAL = "ticket_broadcast_deliveries_total"
TICKET_BROADCAST_FAILURES_TOTAL = "ticket_broadcast_failures_total"
TICKET_BROADCAST_DURATION_SECONDS = "ticket_broadcast_duration_seconds"

DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TICKET_TRANSITIONS_TOTAL,
        metric_type="counter",
        description="Committed ticket lifecycle transitions.",
        label_names=("transition",),
    ),
    MetricDefinition(
        name=TICKET_ACCEPT_CONFLICTS_TOTAL,
        metric_type="counter",
        description="Accept attempts rejected because the ticket was already claimed.",
    ),
    MetricDefinition(
        name=TICKET_MESSAGES_TOTAL,
        metric_type="counter",
        description="Chat messages appended to tickets.",
        label_names=("sender_type",),
    ),
    MetricDefinition(
        name=TICKET_BROADCAST_DELIVERIES_TOTAL,
        metric_type="counter",
        description="Ticket update notifications delivered to admin subscribers.",
    ),
    MetricDefinition(
        name=TICKET_BROADCAST_FAILURES_TOTAL,
        metric_type="counter",
        description="Ticket update notifications that failed to publish.",
    ),
    MetricDefinition(
        name=TICKET_BROADCAST_DURATION_SECONDS,
        metric_type="distribution",
        description="Time spent publishing a ticket update notification.",
    ),
)
