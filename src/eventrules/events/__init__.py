"""Event bus and event history."""

from .service import EventService

__all__ = ["EventService"]
