"""Start and stop plugin modules, keeping the rule catalog consistent."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

import structlog

from ..core.errors import EngineError
from ..conditions.model import Rule
from .registry import DefinitionsService, PluginModule
from .tracker import PluginAvailabilityTracker

if TYPE_CHECKING:
    from ..core.config import ConfigLoader
    from ..rules.service import RulesService


logger = structlog.get_logger()


class ModuleLifecycle:
    """
    Drives type registration and rule availability for plugin modules.

    Starting a module registers its types, loads the rules it ships and then
    re-enables rules that were waiting on its types. Stopping a module
    disables the rules using its types before the types are removed.
    """

    def __init__(
        self,
        definitions: DefinitionsService,
        rules_service: RulesService,
        tracker: PluginAvailabilityTracker,
        config_loader: ConfigLoader,
    ):
        self.definitions = definitions
        self.rules_service = rules_service
        self.tracker = tracker
        self.config_loader = config_loader

    async def start_module(self, module: PluginModule) -> None:
        self.definitions.register_module(module)
        await self.load_predefined_rules(self._parse_module_rules(module), source=module.id)
        enabled = await self.tracker.on_module_started(module.id)
        logger.info("module_started", module_id=module.id, rules_enabled=enabled)

    async def stop_module(self, module_id: str) -> bool:
        if self.definitions.get_module(module_id) is None:
            return False
        disabled = await self.tracker.on_module_stopping(module_id)
        self.definitions.unregister_module(module_id)
        logger.info("module_stopped", module_id=module_id, rules_disabled=disabled)
        return True

    async def load_predefined_rules(self, rules: Iterable[Rule], source: str) -> int:
        """
        Save predefined rules that are not in the catalog yet.

        Existing rules are left untouched so edits made at runtime survive a
        restart. A rule that cannot be saved is logged and skipped.
        """
        loaded = 0
        for rule in rules:
            try:
                if await self.rules_service.get_rule(rule.metadata.scope, rule.metadata.id) is not None:
                    continue
                await self.rules_service.set_rule(rule)
                loaded += 1
            except EngineError as e:
                logger.error("predefined_rule_load_error", source=source, rule_id=rule.item_id, error=e.message)
        if loaded:
            logger.info("predefined_rules_loaded", source=source, count=loaded)
        return loaded

    def _parse_module_rules(self, module: PluginModule) -> list[Rule]:
        rules = []
        for data in module.rules:
            try:
                rules.append(self.config_loader.parse_rule(data, source=module.id))
            except EngineError as e:
                logger.error("predefined_rule_invalid", module_id=module.id, error=e.message)
        return rules
