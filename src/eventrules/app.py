"""
Application container.

Wires the store, type registry, event bus, action dispatcher, rules service
and plugin lifecycle together from an ``EngineConfig``.
"""

import os
from pathlib import Path
from typing import Optional

import structlog
from dotenv import load_dotenv

from .core.config import ConfigLoader, EngineConfig
from .core.logging import configure_logging
from .conditions.evaluator import ConditionEvaluator
from .conditions.model import Event
from .events.service import EventService
from .plugins.lifecycle import ModuleLifecycle
from .plugins.registry import CORE_MODULE, DefinitionsService
from .plugins.tracker import PluginAvailabilityTracker
from .rules.actions import ActionExecutorDispatcher
from .rules.service import RulesService
from .storage import create_store


logger = structlog.get_logger()


class Application:
    """Main application container."""

    def __init__(self, config: Optional[EngineConfig] = None, config_loader: Optional[ConfigLoader] = None):
        self.config = config or EngineConfig()
        self.config_loader = config_loader or ConfigLoader()

        self.evaluator = ConditionEvaluator()
        self.store = create_store(self.config.storage.backend, self.config.storage.db_path, self.evaluator)
        self.definitions = DefinitionsService()
        self.event_service = EventService(self.store, self.config.events)
        self.actions = ActionExecutorDispatcher()
        self.rules_service = RulesService(
            persistence=self.store,
            definitions=self.definitions,
            event_history=self.event_service,
            action_executor=self.actions,
            event_bus=self.event_service,
            config=self.config,
        )
        self.tracker = PluginAvailabilityTracker(self.rules_service, self.definitions)
        self.lifecycle = ModuleLifecycle(
            self.definitions, self.rules_service, self.tracker, self.config_loader
        )
        self.event_service.add_listener(self.rules_service)
        self._started = False

    @classmethod
    def from_env(cls) -> "Application":
        """Build from ``EVENTRULES_CONFIG`` (a YAML/JSON file), if it exists."""
        load_dotenv()
        config_path = os.getenv("EVENTRULES_CONFIG", "./config/engine.yaml")
        loader = ConfigLoader(str(Path(config_path).parent))

        if os.path.exists(config_path):
            config = loader.load_engine_config(config_path)
        else:
            logger.info("engine_config_not_found", path=config_path)
            config = EngineConfig()

        data_dir = os.getenv("EVENTRULES_DATA_DIR")
        if data_dir:
            config.storage.db_path = str(Path(data_dir) / "eventrules.db")

        return cls(config, loader)

    async def start(self) -> None:
        """Open the store, start the built-in and configured modules, load rules."""
        logger.info("application_starting", name=self.config.name, config_hash=self.config.config_hash())

        await self.store.initialize()
        await self.lifecycle.start_module(CORE_MODULE)

        for module in self.config_loader.load_modules(self.config.modules_directory):
            await self.lifecycle.start_module(module)

        # Stored rules may reference modules that are gone since the last run
        await self.tracker.flag_unresolved_rules()

        rules = self.config_loader.load_rules(self.config.rules_directory)
        await self.lifecycle.load_predefined_rules(rules, source=self.config.rules_directory)

        self._started = True
        logger.info("application_started", modules=self.definitions.list_modules())

    async def stop(self) -> None:
        """Close the store."""
        if not self._started:
            return
        await self.store.close()
        self._started = False
        logger.info("application_stopped")

    async def send(self, event: Event) -> bool:
        """Send an event through the bus; True if any rule action changed state."""
        return await self.event_service.send(event)


async def create_app(config: Optional[EngineConfig] = None) -> Application:
    """Configure logging, build and start an application."""
    configure_logging()
    app = Application(config)
    await app.start()
    return app
