"""Contracts of the collaborators the rules service depends on."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..conditions.model import Action, Condition, Event, Rule


@runtime_checkable
class PersistenceService(Protocol):
    """Rule storage plus the condition pattern-match oracle."""

    async def test_match(self, condition: Condition, subject: Any) -> bool: ...

    async def get_all_rules(self) -> list[Rule]: ...

    async def load_rule(self, item_id: str) -> Optional[Rule]: ...

    async def save_rule(self, rule: Rule) -> None: ...

    async def remove_rule(self, item_id: str) -> bool: ...

    async def query_rules(self, field_name: str, value: Any) -> list[Rule]: ...


@runtime_checkable
class EventHistory(Protocol):
    """Answers whether an equivalent event was already recorded."""

    async def has_event_already_been_raised(self, event: Event, session: bool) -> bool: ...


@runtime_checkable
class ActionExecutor(Protocol):
    async def execute(self, action: Action, event: Event) -> bool: ...


@runtime_checkable
class EventBus(Protocol):
    async def send(self, event: Event) -> bool: ...


@runtime_checkable
class EventListener(Protocol):
    def can_handle(self, event: Event) -> bool: ...

    async def on_event(self, event: Event) -> bool: ...
