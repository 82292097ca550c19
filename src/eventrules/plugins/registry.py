"""Registry of condition and action types contributed by plugin modules."""

from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from ..core.errors import ConfigError
from ..conditions.model import ActionType, ConditionType, TypeResolution


logger = structlog.get_logger()


@dataclass
class PluginModule:
    """A unit of types (and predefined rules) that starts and stops together."""
    id: str
    condition_types: list[ConditionType] = field(default_factory=list)
    action_types: list[ActionType] = field(default_factory=list)
    rules: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PluginModule":
        return cls(
            id=data["id"],
            condition_types=[ConditionType.from_dict(c) for c in data.get("condition_types", [])],
            action_types=[ActionType.from_dict(a) for a in data.get("action_types", [])],
            rules=list(data.get("rules", [])),
        )


CORE_MODULE = PluginModule(
    id="core",
    condition_types=[
        ConditionType("booleanCondition", evaluator="boolean"),
        ConditionType("matchAllCondition", evaluator="matchAll"),
        ConditionType("eventTypeCondition", frozenset({"eventCondition"}), "eventType"),
        ConditionType("eventPropertyCondition", frozenset({"eventCondition"}), "property"),
        ConditionType("profilePropertyCondition", frozenset({"profileCondition"}), "property"),
        ConditionType("sessionPropertyCondition", frozenset({"sessionCondition"}), "property"),
        ConditionType(
            "sourceEventPropertyCondition",
            frozenset({"sourceEventPropertyCondition"}),
            "property",
        ),
    ],
    action_types=[
        ActionType("setPropertyAction", executor="setProperty"),
        ActionType("noopAction", executor="noop"),
    ],
)


class DefinitionsService:
    """
    Live registry of condition and action types.

    Maps are replaced rather than mutated on every change, so a reader
    holding a reference keeps a consistent snapshot.
    """

    def __init__(self):
        self._condition_types: dict[str, ConditionType] = {}
        self._action_types: dict[str, ActionType] = {}
        self._modules: dict[str, PluginModule] = {}

    def register_module(self, module: PluginModule) -> None:
        """Make every type of ``module`` available."""
        if module.id in self._modules:
            raise ConfigError(f"Module already registered: {module.id}")

        condition_types = dict(self._condition_types)
        for condition_type in module.condition_types:
            condition_types[condition_type.id] = condition_type

        action_types = dict(self._action_types)
        for action_type in module.action_types:
            action_types[action_type.id] = action_type

        modules = dict(self._modules)
        modules[module.id] = module

        self._condition_types = condition_types
        self._action_types = action_types
        self._modules = modules

        logger.info(
            "module_registered",
            module_id=module.id,
            condition_types=len(module.condition_types),
            action_types=len(module.action_types),
        )

    def unregister_module(self, module_id: str) -> Optional[PluginModule]:
        """Remove the types of ``module_id``; returns the module if it was known."""
        module = self._modules.get(module_id)
        if module is None:
            return None

        removed_conditions = {c.id for c in module.condition_types}
        removed_actions = {a.id for a in module.action_types}
        self._condition_types = {
            k: v for k, v in self._condition_types.items() if k not in removed_conditions
        }
        self._action_types = {
            k: v for k, v in self._action_types.items() if k not in removed_actions
        }
        self._modules = {k: v for k, v in self._modules.items() if k != module_id}

        logger.info("module_unregistered", module_id=module_id)
        return module

    def get_module(self, module_id: str) -> Optional[PluginModule]:
        return self._modules.get(module_id)

    def list_modules(self) -> list[str]:
        return list(self._modules.keys())

    def types_by_module(self, module_id: str) -> tuple[list[str], list[str]]:
        """Condition type ids and action type ids contributed by a module."""
        module = self._modules.get(module_id)
        if module is None:
            return [], []
        return (
            [c.id for c in module.condition_types],
            [a.id for a in module.action_types],
        )

    def get_condition_type(self, type_id: str) -> Optional[ConditionType]:
        return self._condition_types.get(type_id)

    def get_action_type(self, type_id: str) -> Optional[ActionType]:
        return self._action_types.get(type_id)

    def resolve_condition_type(self, type_id: str) -> TypeResolution:
        return TypeResolution(type_id, self._condition_types.get(type_id))

    def resolve_action_type(self, type_id: str) -> TypeResolution:
        return TypeResolution(type_id, self._action_types.get(type_id))
