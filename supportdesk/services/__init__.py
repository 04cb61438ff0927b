"""Infrastructure adapters: database pool and realtime fan-out."""

from .postgres import PostgresConnectionManager
from .realtime import AdminBroadcaster, BroadcastResult

__all__ = ["AdminBroadcaster", "BroadcastResult", "PostgresConnectionManager"]
