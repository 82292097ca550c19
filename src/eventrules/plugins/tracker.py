"""
Plugin availability tracking.

Rules reference condition and action types by id. When the module providing
a type stops, every rule referencing it is flagged ``missing_plugins`` and
stops matching; when types come back, flagged rules that now resolve fully
are enabled again.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

import structlog

from ..core.errors import EngineError
from ..conditions.model import Rule
from ..conditions.resolver import get_condition_type_ids, resolve_action_types, resolve_condition_type
from .registry import DefinitionsService

if TYPE_CHECKING:
    from ..rules.service import RulesService


logger = structlog.get_logger()


def refresh_missing_plugins(definitions: DefinitionsService, rule: Rule) -> bool:
    """
    Set the availability of a rule about to be written.

    The rule is flagged ``missing_plugins`` when any of its condition or
    action types cannot be resolved, and unflagged otherwise. Returns True
    when fully resolved.
    """
    resolved = resolve_condition_type(definitions, rule.condition)
    resolved = resolve_action_types(definitions, rule.actions) and resolved
    if not resolved and not rule.metadata.missing_plugins:
        logger.warning("rule_missing_plugins", rule_id=rule.item_id)
    rule.metadata.missing_plugins = not resolved
    return resolved


class PluginAvailabilityTracker:
    """Flips rules between enabled and missing-plugins as types come and go."""

    def __init__(self, rules_service: RulesService, definitions: DefinitionsService):
        self.rules_service = rules_service
        self.definitions = definitions

    async def on_module_started(self, module_id: str) -> int:
        """The module's types were registered; re-enable rules waiting on them."""
        condition_type_ids, action_type_ids = self.definitions.types_by_module(module_id)
        return await self.on_types_added(module_id, condition_type_ids, action_type_ids)

    async def on_module_stopping(self, module_id: str) -> int:
        """The module's types are about to go away; disable rules using them."""
        condition_type_ids, action_type_ids = self.definitions.types_by_module(module_id)
        return await self.on_types_removed(module_id, condition_type_ids, action_type_ids)

    async def on_types_added(
        self,
        module_id: str,
        condition_type_ids: Iterable[str],
        action_type_ids: Iterable[str],
    ) -> int:
        """Enable every flagged rule that now resolves fully. Returns the count."""
        added_conditions = set(condition_type_ids)
        added_actions = set(action_type_ids)
        if not added_conditions and not added_actions:
            return 0

        persistence = self.rules_service.persistence
        enabled = 0
        for rule in await persistence.query_rules("missing_plugins", True):
            try:
                if await self.rules_service.update_rule(rule.item_id, self._enable_if_resolved):
                    logger.info("rule_enabled", rule_id=rule.item_id, module_id=module_id)
                    enabled += 1
            except EngineError as e:
                logger.error("rule_enable_failed", rule_id=rule.item_id, module_id=module_id, error=e.message)
        return enabled

    async def on_types_removed(
        self,
        module_id: str,
        condition_type_ids: Iterable[str],
        action_type_ids: Iterable[str],
    ) -> int:
        """Disable every rule referencing a removed type. Returns the count."""
        removed_conditions = set(condition_type_ids)
        removed_actions = set(action_type_ids)
        if not removed_conditions and not removed_actions:
            return 0

        def disable_if_referenced(rule: Rule) -> bool:
            if rule.metadata.missing_plugins:
                return False
            conditions = set(get_condition_type_ids(rule.condition))
            actions = {action.action_type_id for action in rule.actions}
            if conditions.isdisjoint(removed_conditions) and actions.isdisjoint(removed_actions):
                return False
            rule.metadata.missing_plugins = True
            return True

        persistence = self.rules_service.persistence
        disabled = 0
        for rule in await persistence.get_all_rules():
            try:
                if await self.rules_service.update_rule(rule.item_id, disable_if_referenced):
                    logger.info("rule_disabled", rule_id=rule.item_id, module_id=module_id)
                    disabled += 1
            except EngineError as e:
                logger.error("rule_disable_failed", rule_id=rule.item_id, module_id=module_id, error=e.message)
        return disabled

    async def flag_unresolved_rules(self) -> int:
        """
        Flag every enabled rule that no longer resolves fully.

        Stored rules can reference modules that were not started this time,
        so this runs once the configured modules are up. Returns the count.
        """
        def flag_if_unresolved(rule: Rule) -> bool:
            if rule.metadata.missing_plugins:
                return False
            resolved = resolve_condition_type(self.definitions, rule.condition)
            resolved = resolve_action_types(self.definitions, rule.actions) and resolved
            if resolved:
                return False
            rule.metadata.missing_plugins = True
            return True

        persistence = self.rules_service.persistence
        flagged = 0
        for rule in await persistence.get_all_rules():
            try:
                if await self.rules_service.update_rule(rule.item_id, flag_if_unresolved):
                    logger.info("rule_disabled", rule_id=rule.item_id, reason="unresolved_types")
                    flagged += 1
            except EngineError as e:
                logger.error("rule_disable_failed", rule_id=rule.item_id, error=e.message)
        return flagged

    def _enable_if_resolved(self, rule: Rule) -> bool:
        if not rule.metadata.missing_plugins:
            return False
        resolved = resolve_condition_type(self.definitions, rule.condition)
        resolved = resolve_action_types(self.definitions, rule.actions) and resolved
        if not resolved:
            return False
        rule.metadata.missing_plugins = False
        return True
