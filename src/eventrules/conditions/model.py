"""Data model for rules, condition trees, actions and events."""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Optional, Union


SUB_CONDITIONS = "subConditions"
OPERATOR = "operator"
SYSTEM_SCOPE = "systemscope"


@dataclass(frozen=True)
class ConditionType:
    """A condition type descriptor, as registered by a plugin module."""
    id: str
    tags: frozenset[str] = frozenset()
    evaluator: Optional[str] = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConditionType":
        return cls(
            id=data["id"],
            tags=frozenset(data.get("tags", [])),
            evaluator=data.get("evaluator"),
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class ActionType:
    """An action type descriptor, as registered by a plugin module."""
    id: str
    executor: Optional[str] = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionType":
        return cls(
            id=data["id"],
            executor=data.get("executor"),
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class TypeResolution:
    """Outcome of looking a type id up in the registry."""
    type_id: str
    descriptor: Optional[Union[ConditionType, ActionType]] = None

    @property
    def resolved(self) -> bool:
        return self.descriptor is not None


@dataclass(eq=False)
class Condition:
    """
    A node of a condition tree.

    A node is composite when its parameters carry ``subConditions`` (an
    ordered list of child conditions) and a leaf otherwise. Nodes compare
    by identity.
    """
    condition_type_id: str
    parameter_values: dict[str, Any] = field(default_factory=dict)
    condition_type: Optional[ConditionType] = None

    @property
    def is_composite(self) -> bool:
        return SUB_CONDITIONS in self.parameter_values

    @property
    def sub_conditions(self) -> list["Condition"]:
        return self.parameter_values.get(SUB_CONDITIONS) or []

    @property
    def operator(self) -> Optional[str]:
        return self.parameter_values.get(OPERATOR)

    def to_dict(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        for key, value in self.parameter_values.items():
            if key == SUB_CONDITIONS:
                params[key] = [c.to_dict() for c in value]
            else:
                params[key] = copy.deepcopy(value)
        return {"type": self.condition_type_id, "parameter_values": params}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Condition":
        params: dict[str, Any] = {}
        for key, value in (data.get("parameter_values") or {}).items():
            if key == SUB_CONDITIONS:
                params[key] = [cls.from_dict(c) for c in value]
            else:
                params[key] = copy.deepcopy(value)
        return cls(condition_type_id=data["type"], parameter_values=params)


@dataclass(eq=False)
class Action:
    """An action to run when a rule fires."""
    action_type_id: str
    parameter_values: dict[str, Any] = field(default_factory=dict)
    action_type: Optional[ActionType] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.action_type_id,
            "parameter_values": copy.deepcopy(self.parameter_values),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Action":
        return cls(
            action_type_id=data["type"],
            parameter_values=copy.deepcopy(data.get("parameter_values") or {}),
        )


@dataclass(eq=False)
class Metadata:
    """Identity and lifecycle flags of a rule. Equal when scope and id are."""
    id: str
    scope: Optional[str] = None
    name: str = ""
    description: str = ""
    tags: list[str] = field(default_factory=list)
    enabled: bool = True
    missing_plugins: bool = False

    @staticmethod
    def get_id_with_scope(scope: Optional[str], item_id: str) -> str:
        return f"{scope}_{item_id}"

    @property
    def id_with_scope(self) -> str:
        return self.get_id_with_scope(self.scope, self.id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Metadata):
            return NotImplemented
        return (self.scope, self.id) == (other.scope, other.id)

    def __hash__(self) -> int:
        return hash((self.scope, self.id))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "scope": self.scope,
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
            "enabled": self.enabled,
            "missing_plugins": self.missing_plugins,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Metadata":
        return cls(
            id=data["id"],
            scope=data.get("scope"),
            name=data.get("name", data["id"]),
            description=data.get("description", ""),
            tags=list(data.get("tags", [])),
            enabled=data.get("enabled", True),
            missing_plugins=data.get("missing_plugins", False),
        )


@dataclass(eq=False)
class Rule:
    """A condition tree plus the ordered actions it triggers."""
    metadata: Metadata
    condition: Optional[Condition] = None
    actions: list[Action] = field(default_factory=list)
    raise_event_only_once_for_profile: bool = False
    raise_event_only_once_for_session: bool = False

    ITEM_TYPE: ClassVar[str] = "rule"

    @property
    def item_id(self) -> str:
        return self.metadata.id_with_scope

    @property
    def scope(self) -> Optional[str]:
        return self.metadata.scope

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "condition": self.condition.to_dict() if self.condition else None,
            "actions": [a.to_dict() for a in self.actions],
            "raise_event_only_once_for_profile": self.raise_event_only_once_for_profile,
            "raise_event_only_once_for_session": self.raise_event_only_once_for_session,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Rule":
        condition = data.get("condition")
        return cls(
            metadata=Metadata.from_dict(data["metadata"]),
            condition=Condition.from_dict(condition) if condition else None,
            actions=[Action.from_dict(a) for a in data.get("actions", [])],
            raise_event_only_once_for_profile=data.get("raise_event_only_once_for_profile", False),
            raise_event_only_once_for_session=data.get("raise_event_only_once_for_session", False),
        )


@dataclass(eq=False)
class Item:
    """Anything a condition can be tested against."""
    item_id: str
    item_type: str = "item"
    scope: Optional[str] = None
    properties: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "item_type": self.item_type,
            "scope": self.scope,
            "properties": copy.deepcopy(self.properties),
        }


@dataclass(eq=False)
class Profile(Item):
    item_type: str = "profile"


@dataclass(eq=False)
class Session(Item):
    item_type: str = "session"
    profile: Optional[Profile] = None

    @property
    def profile_id(self) -> Optional[str]:
        return self.profile.item_id if self.profile else None


@dataclass(eq=False)
class Event:
    """An incoming behavioral event."""
    event_type: str
    scope: Optional[str] = None
    session: Optional[Session] = None
    profile: Optional[Profile] = None
    source: Optional[Item] = None
    target: Optional[Item] = None
    timestamp: datetime = field(default_factory=datetime.now)
    attributes: dict[str, Any] = field(default_factory=dict)
    properties: dict[str, Any] = field(default_factory=dict)
    persistent: bool = True
    item_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    ITEM_TYPE: ClassVar[str] = "event"

    @property
    def profile_id(self) -> Optional[str]:
        return self.profile.item_id if self.profile else None

    @property
    def session_id(self) -> Optional[str]:
        return self.session.item_id if self.session else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "event_type": self.event_type,
            "scope": self.scope,
            "profile_id": self.profile_id,
            "session_id": self.session_id,
            "source": self.source.to_dict() if self.source else None,
            "target": self.target.to_dict() if self.target else None,
            "timestamp": self.timestamp.isoformat(),
            "attributes": copy.deepcopy(self.attributes),
            "properties": copy.deepcopy(self.properties),
            "persistent": self.persistent,
        }
