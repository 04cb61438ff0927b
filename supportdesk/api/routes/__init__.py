"""Route modules exposed by the API package."""

from . import ping, tickets

__all__ = ["ping", "tickets"]
