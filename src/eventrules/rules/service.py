"""Rules service - matches events against the rule catalog and fires actions."""

import asyncio
import contextlib
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Optional

import structlog

from ..core.config import EngineConfig
from ..core.errors import EngineError, RuleError
from ..conditions.model import Condition, Event, Item, Metadata, Rule, SYSTEM_SCOPE
from ..conditions.resolver import resolve_action_types, resolve_condition_type
from ..conditions.tags import (
    EVENT_CONDITION,
    MATCHING_PHASE_TAGS,
    PROFILE_CONDITION,
    SESSION_CONDITION,
    SOURCE_EVENT_PROPERTY_CONDITION,
    TRACKED_CONDITION,
    extract_condition_by_tag,
    extract_conditions_by_type,
)
from ..plugins.registry import DefinitionsService
from ..plugins.tracker import refresh_missing_plugins
from .interfaces import ActionExecutor, EventBus, EventHistory, PersistenceService


logger = structlog.get_logger()

RULE_FIRED_EVENT_TYPE = "ruleFired"


@dataclass
class MatchResult:
    """Rules matched for one event, plus the per-rule failures that were skipped."""
    rules: list[Rule]
    errors: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: float = 0


class RulesService:
    """
    Evaluates events against the rule catalog.

    Flow for each event:
    1. Snapshot the catalog
    2. Keep rules in the event's scope (or the system scope)
    3. Split each rule's condition into event, profile and session parts
    4. Test the parts in that order, stopping at the first miss
    5. Execute the actions of every matched rule and send a ``ruleFired`` event

    A rule that fails to evaluate is reported and left out of the result;
    the other rules are still evaluated.
    """

    def __init__(
        self,
        persistence: PersistenceService,
        definitions: DefinitionsService,
        event_history: EventHistory,
        action_executor: ActionExecutor,
        event_bus: EventBus,
        config: Optional[EngineConfig] = None,
    ):
        self.persistence = persistence
        self.definitions = definitions
        self.event_history = event_history
        self.action_executor = action_executor
        self.event_bus = event_bus
        self.config = config or EngineConfig()

        # Catalog writes are serialized per rule; a lock lives while it has users
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # ==================== Event Listener ====================

    def can_handle(self, event: Event) -> bool:
        return True

    async def on_event(self, event: Event) -> bool:
        """
        Fire every rule matching ``event``.

        Returns True if any executed action reported a change. A ``ruleFired``
        event is sent for each matched rule whether or not its actions
        changed anything.
        """
        rules = await self.get_matching_rules(event)

        changed = False
        for rule in rules:
            for action in rule.actions:
                changed |= await self.action_executor.execute(action, event)

            rule_fired = Event(
                event_type=RULE_FIRED_EVENT_TYPE,
                scope=event.scope,
                session=event.session,
                profile=event.profile,
                source=event.source,
                target=Item(rule.item_id, Rule.ITEM_TYPE),
                timestamp=event.timestamp,
                attributes=dict(event.attributes),
                persistent=False,
            )
            await self.event_bus.send(rule_fired)

        return changed

    # ==================== Matching ====================

    async def get_matching_rules(self, event: Event) -> list[Rule]:
        """Rules matching ``event``, in catalog order, each at most once."""
        result = await self.match_event(event)
        return result.rules

    async def match_event(self, event: Event) -> MatchResult:
        """Run the matching pipeline and report per-rule failures."""
        start_time = time.monotonic()
        matched: dict[str, Rule] = {}
        errors: list[dict[str, Any]] = []

        # Raise-once lookups, computed at most once per event
        raised_for_profile: Optional[bool] = None
        raised_for_session: Optional[bool] = None

        for rule in await self.persistence.get_all_rules():
            scope = rule.metadata.scope
            if scope != SYSTEM_SCOPE and scope != event.scope:
                continue
            if rule.item_id in matched or rule.condition is None:
                continue
            if self.config.matching.skip_unavailable_rules and not self._is_available(rule):
                continue

            try:
                resolve_condition_type(self.definitions, rule.condition)

                event_condition = extract_condition_by_tag(rule.condition, EVENT_CONDITION, rule.item_id)
                if event_condition is None:
                    continue

                if not await self.persistence.test_match(event_condition, event):
                    continue

                if rule.raise_event_only_once_for_profile:
                    if raised_for_profile is None:
                        raised_for_profile = await self.event_history.has_event_already_been_raised(event, False)
                    if raised_for_profile:
                        continue
                elif rule.raise_event_only_once_for_session:
                    if raised_for_session is None:
                        raised_for_session = await self.event_history.has_event_already_been_raised(event, True)
                    if raised_for_session:
                        continue

                profile_condition = extract_condition_by_tag(rule.condition, PROFILE_CONDITION, rule.item_id)
                if profile_condition is not None and not await self.persistence.test_match(profile_condition, event.profile):
                    continue

                session_condition = extract_condition_by_tag(rule.condition, SESSION_CONDITION, rule.item_id)
                if session_condition is not None and not await self.persistence.test_match(session_condition, event.session):
                    continue

            except EngineError as e:
                e.context["rule_id"] = e.context.get("rule_id") or rule.item_id
                logger.error("rule_match_error", rule_id=rule.item_id, error=e.message)
                errors.append(e.to_dict())
                continue
            except Exception as e:
                logger.exception("rule_match_error", rule_id=rule.item_id)
                errors.append(RuleError(f"Rule evaluation failed: {e}", rule_id=rule.item_id).to_dict())
                continue

            resolve_action_types(self.definitions, rule.actions)
            matched[rule.item_id] = rule

        duration_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "rules_matched",
            event_type=event.event_type,
            matched=len(matched),
            errors=len(errors),
            duration_ms=round(duration_ms, 3),
        )
        return MatchResult(rules=list(matched.values()), errors=errors, duration_ms=duration_ms)

    def _is_available(self, rule: Rule) -> bool:
        return rule.metadata.enabled and not rule.metadata.missing_plugins

    # ==================== Catalog ====================

    async def get_rule(self, scope: str, rule_id: str) -> Optional[Rule]:
        """Load a rule and resolve its condition and action types."""
        rule = await self.persistence.load_rule(Metadata.get_id_with_scope(scope, rule_id))
        if rule is not None:
            resolve_condition_type(self.definitions, rule.condition)
            resolve_action_types(self.definitions, rule.actions)
        return rule

    async def set_rule(self, rule: Rule) -> None:
        """
        Create or replace a rule.

        Every write resolves the rule again, so ``missing_plugins`` reflects
        the types registered at the time of the write.

        Raises:
            RuleError: the rule has no scope
            AmbiguousExtractionError: the condition cannot be split into
                matching phases (when ``validate_rules_on_save`` is set)
        """
        if not rule.metadata.scope:
            raise RuleError("Rule scope is required", rule_id=rule.metadata.id)

        async with self._lock_for(rule.item_id):
            refresh_missing_plugins(self.definitions, rule)
            await self._save_rule(rule)

    async def update_rule(self, item_id: str, updater: Callable[[Rule], bool]) -> bool:
        """
        Load, modify and save a rule while holding its lock.

        ``updater`` mutates the loaded rule and returns whether it should be
        saved. Returns True when the rule was saved.
        """
        async with self._lock_for(item_id):
            rule = await self.persistence.load_rule(item_id)
            if rule is None or not updater(rule):
                return False
            await self._save_rule(rule)
            return True

    async def remove_rule(self, scope: str, rule_id: str) -> bool:
        item_id = Metadata.get_id_with_scope(scope, rule_id)
        async with self._lock_for(item_id):
            removed = await self.persistence.remove_rule(item_id)
        if removed:
            logger.info("rule_removed", rule_id=item_id)
        return removed

    async def get_rule_metadatas(self, scope: Optional[str] = None) -> set[Metadata]:
        """Metadata of every rule, or of the rules of one scope."""
        if scope is None:
            rules = await self.persistence.get_all_rules()
        else:
            rules = await self.persistence.query_rules("scope", scope)
        return {rule.metadata for rule in rules}

    async def _save_rule(self, rule: Rule) -> None:
        condition = rule.condition
        if condition is not None and self._is_available(rule):
            resolve_condition_type(self.definitions, condition)
            if self.config.validate_rules_on_save:
                for tag in MATCHING_PHASE_TAGS + (TRACKED_CONDITION,):
                    extract_condition_by_tag(condition, tag, rule.item_id)

        await self.persistence.save_rule(rule)
        logger.info(
            "rule_saved",
            rule_id=rule.item_id,
            enabled=rule.metadata.enabled,
            missing_plugins=rule.metadata.missing_plugins,
        )

    @contextlib.asynccontextmanager
    async def _lock_for(self, item_id: str) -> AsyncIterator[None]:
        """Hold the write lock of ``item_id``; dropped once nobody holds or awaits it."""
        lock = self._locks.get(item_id)
        if lock is None:
            lock = self._locks[item_id] = asyncio.Lock()
        self._lock_users[item_id] = self._lock_users.get(item_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[item_id] -= 1
            if not self._lock_users[item_id]:
                del self._lock_users[item_id]
                del self._locks[item_id]

    # ==================== Tracked Conditions ====================

    async def get_tracked_conditions(self, item: Optional[Item]) -> set[Condition]:
        """
        Tracked sub-conditions of every rule that applies to ``item``.

        A rule with source event property conditions only contributes when
        an item is given and every one of those conditions matches it.
        """
        tracked: set[Condition] = set()
        for rule in await self.persistence.get_all_rules():
            if rule.condition is None:
                continue
            resolve_condition_type(self.definitions, rule.condition)

            try:
                tracked_condition = extract_condition_by_tag(rule.condition, TRACKED_CONDITION, rule.item_id)
                if tracked_condition is None:
                    continue

                source_conditions = extract_conditions_by_type(rule.condition, SOURCE_EVENT_PROPERTY_CONDITION)
                if source_conditions:
                    if item is None:
                        continue
                    matches = True
                    for source_condition in source_conditions:
                        if not await self.persistence.test_match(source_condition, item):
                            matches = False
                            break
                    if not matches:
                        continue
            except EngineError as e:
                logger.error("tracked_condition_error", rule_id=rule.item_id, error=e.message)
                continue

            tracked.add(tracked_condition)

        return tracked
