"""API route modules."""

from carepath.api.routes import flags, health, notes, pending, rooms, submissions

__all__ = [
    "flags",
    "health",
    "notes",
    "pending",
    "rooms",
    "submissions",
]
