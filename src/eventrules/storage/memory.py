"""In-process rule and event store."""

import asyncio
from typing import Any, Optional

from ..conditions.evaluator import ConditionEvaluator
from ..conditions.model import Condition, Event, Rule


class MemoryStore:
    """
    Dict-backed persistence for rules and event history.

    Rules are stored as serialized dicts and rebuilt on every read, so
    callers always work on their own copy of the catalog.
    """

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None):
        self.evaluator = evaluator or ConditionEvaluator()
        self._rules: dict[str, dict[str, Any]] = {}
        self._events: list[dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Nothing to set up; present for parity with the SQLite store."""

    async def close(self) -> None:
        """Nothing to release."""

    # ==================== Rules ====================

    async def test_match(self, condition: Condition, subject: Any) -> bool:
        return self.evaluator.evaluate(condition, subject)

    async def get_all_rules(self) -> list[Rule]:
        return [Rule.from_dict(data) for data in list(self._rules.values())]

    async def load_rule(self, item_id: str) -> Optional[Rule]:
        data = self._rules.get(item_id)
        return Rule.from_dict(data) if data is not None else None

    async def save_rule(self, rule: Rule) -> None:
        async with self._lock:
            self._rules[rule.item_id] = rule.to_dict()

    async def remove_rule(self, item_id: str) -> bool:
        async with self._lock:
            return self._rules.pop(item_id, None) is not None

    async def query_rules(self, field_name: str, value: Any) -> list[Rule]:
        """Rules whose metadata field ``field_name`` equals ``value``."""
        return [
            Rule.from_dict(data)
            for data in list(self._rules.values())
            if data["metadata"].get(field_name) == value
        ]

    # ==================== Event History ====================

    async def save_event(self, event: Event) -> None:
        async with self._lock:
            self._events.append(event.to_dict())

    async def has_event_already_been_raised(self, event: Event, session: bool) -> bool:
        """True when an event of the same type and target was recorded for the profile (or session)."""
        owner_key, owner_id = ("session_id", event.session_id) if session else ("profile_id", event.profile_id)
        target = event.target.to_dict() if event.target else None
        for recorded in self._events:
            if (
                recorded["event_type"] == event.event_type
                and recorded[owner_key] == owner_id
                and _same_target(recorded["target"], target)
            ):
                return True
        return False

    async def count_events(self) -> int:
        return len(self._events)


def _same_target(a: Optional[dict[str, Any]], b: Optional[dict[str, Any]]) -> bool:
    if a is None or b is None:
        return a is b
    return a["item_id"] == b["item_id"] and a["item_type"] == b["item_type"]
