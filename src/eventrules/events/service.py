"""Event dispatch to listeners, with recording of persistent events."""

import contextvars
from typing import Optional, Protocol

import structlog

from ..core.config import EventsConfig
from ..conditions.model import Event
from ..rules.interfaces import EventListener


logger = structlog.get_logger()

# Nesting level of the send() call currently running in this task
_dispatch_depth: contextvars.ContextVar[int] = contextvars.ContextVar(
    "eventrules_dispatch_depth", default=0
)


class EventStore(Protocol):
    async def save_event(self, event: Event) -> None: ...

    async def has_event_already_been_raised(self, event: Event, session: bool) -> bool: ...


class EventService:
    """
    In-process event bus.

    Events sent while a listener is handling another event (``ruleFired``
    events in particular) are dispatched re-entrantly. Dispatch nested deeper
    than ``max_dispatch_depth`` is dropped, which bounds rule cycles.
    """

    def __init__(self, store: EventStore, config: Optional[EventsConfig] = None):
        self.store = store
        self.config = config or EventsConfig()
        self._listeners: list[EventListener] = []

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def send(self, event: Event) -> bool:
        """
        Dispatch ``event`` to every listener that can handle it.

        Returns True if any listener reported a change. Persistent events are
        recorded once dispatch is complete.
        """
        depth = _dispatch_depth.get()
        if depth >= self.config.max_dispatch_depth:
            logger.warning(
                "event_dispatch_depth_exceeded",
                event_type=event.event_type,
                depth=depth,
                max_depth=self.config.max_dispatch_depth,
            )
            return False

        changed = False
        token = _dispatch_depth.set(depth + 1)
        try:
            for listener in list(self._listeners):
                if not listener.can_handle(event):
                    continue
                try:
                    changed |= await listener.on_event(event)
                except Exception:
                    logger.exception(
                        "event_listener_error",
                        event_type=event.event_type,
                        listener=type(listener).__name__,
                    )
        finally:
            _dispatch_depth.reset(token)

        if event.persistent and self.config.record_events:
            await self.store.save_event(event)

        return changed

    async def has_event_already_been_raised(self, event: Event, session: bool) -> bool:
        return await self.store.has_event_already_been_raised(event, session)
