"""Plugin modules: type registry, availability tracking and lifecycle."""

from .registry import CORE_MODULE, DefinitionsService, PluginModule
from .tracker import PluginAvailabilityTracker, refresh_missing_plugins
from .lifecycle import ModuleLifecycle

__all__ = [
    "CORE_MODULE",
    "DefinitionsService",
    "PluginModule",
    "PluginAvailabilityTracker",
    "refresh_missing_plugins",
    "ModuleLifecycle",
]
